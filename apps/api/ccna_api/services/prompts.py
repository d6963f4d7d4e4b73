from __future__ import annotations

TUTOR_PROMPT_TEMPLATE = """You are a CCNA tutor. Write in a friendly, human tone (not robotic).
Return STRICT JSON ONLY (no markdown, no backticks).

Schema:
{{
  "title": string,
  "simpleExplanation": string,
  "realWorldExample": string,
  "keyCommands": string[],
  "commonMistakes": string[],
  "quickCheck": string[]
}}

Rules:
- Keep it complete but not overly long.
- If key commands are not relevant, return [].
- quickCheck should be 2-4 short items a learner can self-test.

CONCEPT: {concept}
{context_block}
JSON:"""

CONTINUE_INSTRUCTION = (
    "Your previous answer was cut off. Continue exactly where it stopped. "
    "Do not repeat anything you already wrote and do not start over."
)


def truncate_context(context: str | None, max_chars: int = 800) -> str:
    text = (context or "").strip()
    if len(text) <= max_chars:
        return text
    return text[: max(max_chars - 1, 0)].rstrip() + "…"


def build_tutor_prompt(concept: str, context: str | None = None, max_context_chars: int = 800) -> str:
    answer_context = truncate_context(context, max_context_chars)
    context_block = f"\nANSWER CONTEXT:\n{answer_context}\n" if answer_context else ""
    return TUTOR_PROMPT_TEMPLATE.format(concept=concept.strip(), context_block=context_block)


def user_turn(text: str) -> dict:
    return {"role": "user", "parts": [{"text": text}]}


def model_turn(text: str) -> dict:
    return {"role": "model", "parts": [{"text": text}]}


def prompt_contents(prompt: str) -> list[dict]:
    return [user_turn(prompt)]


def continuation_contents(prompt: str, text_so_far: str) -> list[dict]:
    return [user_turn(prompt), model_turn(text_so_far), user_turn(CONTINUE_INSTRUCTION)]
