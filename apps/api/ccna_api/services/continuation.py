from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from ccna_api.core.errors import GenerationFailed, GenerationTimeout
from ccna_api.services.gemini_client import TRUNCATED_FINISH_REASON, GenerationResponse
from ccna_api.services.prompts import continuation_contents, prompt_contents


class TextGenerator(Protocol):
    async def generate(
        self,
        contents: list[dict],
        max_output_tokens: int | None = None,
        temperature: float | None = None,
    ) -> GenerationResponse: ...


@dataclass
class ContinuationLimits:
    max_continuations: int = 3
    max_output_chars: int = 12000


@dataclass
class GenerationOutcome:
    text: str
    finish_reason: str | None = None
    continuations: int = 0
    stop_reason: str = "complete"

    @property
    def truncated(self) -> bool:
        return self.finish_reason == TRUNCATED_FINISH_REASON


def continuation_delta(text_so_far: str, chunk: str) -> str:
    """Text to append for a continuation ``chunk``: leading whitespace trimmed, at most one separator."""
    stripped = chunk.lstrip()
    if not stripped or not text_so_far or text_so_far[-1].isspace():
        return stripped
    leading = chunk[: len(chunk) - len(stripped)]
    if "\n" in leading:
        return "\n" + stripped
    if leading:
        return " " + stripped
    return stripped


async def continue_truncated(
    generator: TextGenerator,
    prompt: str,
    outcome: GenerationOutcome,
    limits: ContinuationLimits,
    max_output_tokens: int | None = None,
    temperature: float | None = None,
) -> AsyncIterator[str]:
    """Extend a truncated ``outcome`` in place, yielding each appended delta."""
    while outcome.truncated:
        if outcome.continuations >= limits.max_continuations:
            outcome.stop_reason = "max_continuations"
            break
        if len(outcome.text) >= limits.max_output_chars:
            outcome.stop_reason = "max_output_chars"
            break

        try:
            response = await generator.generate(
                continuation_contents(prompt, outcome.text),
                max_output_tokens=max_output_tokens,
                temperature=temperature,
            )
        except (GenerationFailed, GenerationTimeout) as exc:
            logger.warning("Continuation {} failed, keeping partial text: {}", outcome.continuations + 1, exc)
            outcome.stop_reason = "continuation_failed"
            break

        outcome.continuations += 1
        delta = continuation_delta(outcome.text, response.text)
        if not delta:
            outcome.stop_reason = "empty_continuation"
            break

        room = limits.max_output_chars - len(outcome.text)
        delta = delta[:room]
        outcome.text += delta
        outcome.finish_reason = response.finish_reason
        yield delta
    else:
        outcome.stop_reason = "complete"

    if outcome.continuations:
        logger.info(
            "Generation used {} continuation(s), stopped: {}, {} chars",
            outcome.continuations,
            outcome.stop_reason,
            len(outcome.text),
        )


async def generate_with_continuation(
    generator: TextGenerator,
    prompt: str,
    limits: ContinuationLimits | None = None,
    max_output_tokens: int | None = None,
    temperature: float | None = None,
) -> GenerationOutcome:
    limits = limits or ContinuationLimits()
    response = await generator.generate(
        prompt_contents(prompt),
        max_output_tokens=max_output_tokens,
        temperature=temperature,
    )
    outcome = GenerationOutcome(
        text=response.text[: limits.max_output_chars],
        finish_reason=response.finish_reason,
    )
    async for _ in continue_truncated(generator, prompt, outcome, limits, max_output_tokens, temperature):
        pass
    return outcome
