"""Coerce whatever Gemini sent back into a complete TutorResult.

The model is asked for strict JSON but does not always comply: sometimes the
JSON arrives clean, sometimes inside a code fence or after a line of prose,
sometimes stuffed into the ``simpleExplanation`` field of an otherwise valid
object, sometimes as heading-delimited prose, sometimes cut off. The layers
below are tried in order and the first one that produces something wins:

1. a well-formed object,
2. an embedded ``{...}`` block carrying enough real content,
3. "Simple explanation:" style headings,
4. the raw text as the simple explanation.

``normalize_tutor_result`` never raises.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator, Mapping
from typing import Any

from loguru import logger

from ccna_api.core.errors import MalformedOutput
from ccna_api.schemas.tutor import TutorResult

MIN_EXPLANATION_CHARS = 40
MAX_TITLE_CHARS = 120

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "title": ("title",),
    "simple_explanation": ("simpleExplanation", "simple_explanation"),
    "real_world_example": ("realWorldExample", "real_world_example"),
    "key_commands": ("keyCommands", "key_commands"),
    "common_mistakes": ("commonMistakes", "common_mistakes"),
    "quick_check": ("quickCheck", "quick_check"),
}
TEXT_FIELDS = ("title", "simple_explanation", "real_world_example")
LIST_FIELDS = ("key_commands", "common_mistakes", "quick_check")
CONTENT_FIELDS = ("real_world_example",) + LIST_FIELDS

CODE_FENCE_RE = re.compile(r"```[A-Za-z0-9_+-]*")
HEADING_MARKER_RE = re.compile(r"^[ \t]*#{1,6}[ \t]*", re.MULTILINE)
BULLET_RE = re.compile(r"^\s*(?:[-*•·]|\d+[.)])\s+")
INLINE_BULLET_RE = re.compile(r"[•·]")
JSON_BLOB_RE = re.compile(r'"simple_?explanation"\s*:', re.IGNORECASE)

SECTION_HEADING_RE = re.compile(
    r"^[ \t]*[#*_>]*[ \t]*"
    r"(?P<label>simple[ \t]+explanation"
    r"|real[ \t-]*world[ \t]+examples?"
    r"|key[ \t]+commands?"
    r"|common[ \t]+mistakes?"
    r"|quick[ \t-]*checks?)"
    r"[ \t]*[*_]*[ \t]*(?::[ \t]*[*_]*|$)",
    re.IGNORECASE | re.MULTILINE,
)
SECTION_KEYS = {
    "simple": "simple_explanation",
    "real": "real_world_example",
    "key": "key_commands",
    "common": "common_mistakes",
    "quick": "quick_check",
}


def section_key(label: str) -> str:
    compact = re.sub(r"[\s_-]+", "", label.lower())
    return next(key for prefix, key in SECTION_KEYS.items() if compact.startswith(prefix))


def strip_code_fences(text: str) -> str:
    return CODE_FENCE_RE.sub("", text)


def clean_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        value = "\n".join(_item_text(item) for item in value if item is not None)
    elif isinstance(value, Mapping):
        value = _item_text(value)
    text = strip_code_fences(str(value))
    text = HEADING_MARKER_RE.sub("", text)
    return text.strip()


def _item_text(item: Any) -> str:
    # {"command": "show ip ospf neighbor", "purpose": "..."} reads fine flattened.
    if isinstance(item, Mapping):
        return " - ".join(str(v).strip() for v in item.values() if v not in (None, ""))
    return str(item)


def to_string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = (BULLET_RE.sub("", clean_text(_item_text(item))) for item in value if item is not None)
        return [item.strip() for item in items if item.strip()]

    pieces = []
    for line in clean_text(value).splitlines():
        for piece in INLINE_BULLET_RE.split(line):
            piece = BULLET_RE.sub("", piece).strip()
            if piece:
                pieces.append(piece)
    return pieces


def _field(obj: Mapping, name: str) -> Any:
    for alias in FIELD_ALIASES[name]:
        if alias in obj:
            return obj[alias]
    return None


def _pick_fields(obj: Mapping) -> dict[str, Any]:
    return {name: _field(obj, name) for name in FIELD_ALIASES if _field(obj, name) is not None}


def looks_like_json_blob(text: Any) -> bool:
    if not isinstance(text, str):
        return False
    return "{" in text and bool(JSON_BLOB_RE.search(text))


def _matching_brace(text: str, start: int) -> int | None:
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return None


def iter_json_blocks(text: str) -> Iterator[str]:
    """Yield every balanced ``{...}`` substring in order of its opening brace."""
    for start, char in enumerate(text):
        if char != "{":
            continue
        end = _matching_brace(text, start)
        if end is not None:
            yield text[start : end + 1]


def has_enough_data(obj: Mapping) -> bool:
    explanation = _field(obj, "simple_explanation")
    if not isinstance(explanation, str) or len(explanation.strip()) <= MIN_EXPLANATION_CHARS:
        return False
    if isinstance(_field(obj, "real_world_example"), str):
        return True
    return any(isinstance(_field(obj, name), list) for name in LIST_FIELDS)


def extract_embedded_json(text: str) -> dict | None:
    for block in iter_json_blocks(text):
        try:
            parsed = json.loads(block)
        except ValueError:
            continue
        if isinstance(parsed, dict) and has_enough_data(parsed):
            return parsed
    return None


def parse_headings(text: str) -> dict[str, Any]:
    matches = list(SECTION_HEADING_RE.finditer(text))
    if not matches:
        raise MalformedOutput("no section headings found")

    sections: dict[str, Any] = {}
    preamble = clean_text(text[: matches[0].start()])
    if preamble and "\n" not in preamble and len(preamble) <= MAX_TITLE_CHARS:
        sections["title"] = re.sub(r"^title\s*:\s*", "", preamble, flags=re.IGNORECASE)

    for position, match in enumerate(matches):
        end = matches[position + 1].start() if position + 1 < len(matches) else len(text)
        key = section_key(match.group("label"))
        body = text[match.end() : end].strip()
        if key in sections and body:
            sections[key] = f"{sections[key]}\n{body}"
        elif body or key not in sections:
            sections[key] = body
    return sections


def _is_well_formed(obj: Mapping) -> bool:
    explanation = _field(obj, "simple_explanation")
    if not isinstance(explanation, str) or looks_like_json_blob(explanation):
        return False
    # A bare explanation that still carries "Key commands:" style headings needs splitting.
    if not any(_field(obj, name) for name in CONTENT_FIELDS) and SECTION_HEADING_RE.search(explanation):
        return False
    for name in TEXT_FIELDS:
        value = _field(obj, name)
        if value is not None and (not isinstance(value, str) or looks_like_json_blob(value)):
            return False
    for name in LIST_FIELDS:
        value = _field(obj, name)
        if value is not None and not isinstance(value, (list, str)):
            return False
    return True


def _candidate_strings(obj: Mapping) -> Iterator[str]:
    for value in (
        _field(obj, "simple_explanation"),
        _field(obj, "title"),
        obj.get("raw"),
        obj.get("text"),
    ):
        if isinstance(value, str) and "{" in value:
            yield value


def _coerce_mapping(obj: Mapping) -> dict[str, Any]:
    if _is_well_formed(obj):
        return _pick_fields(obj)

    for candidate in _candidate_strings(obj):
        embedded = extract_embedded_json(candidate)
        if embedded is None:
            continue
        merged = {
            name: value
            for name, value in _pick_fields(obj).items()
            if not looks_like_json_blob(value)
        }
        merged.update(_pick_fields(embedded))
        return merged

    fields = _pick_fields(obj)
    explanation = fields.get("simple_explanation")
    if isinstance(explanation, str) and not any(fields.get(name) for name in CONTENT_FIELDS):
        try:
            sections = parse_headings(explanation)
        except MalformedOutput:
            sections = None
        if sections is not None:
            return {**fields, "simple_explanation": sections.pop("simple_explanation", ""), **sections}
    if fields:
        return fields

    for key in ("text", "raw", "output"):
        if isinstance(obj.get(key), str):
            return _coerce_text(obj[key])
    return {"simple_explanation": _raw_text(dict(obj))} if obj else {}


def _coerce_text(text: str) -> dict[str, Any]:
    stripped = strip_code_fences(text).strip()
    if not stripped:
        return {}

    if stripped.startswith("{"):
        try:
            parsed = json.loads(stripped)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            fields = _coerce_mapping(parsed)
            if fields:
                return fields

    embedded = extract_embedded_json(text)
    if embedded is not None:
        return _pick_fields(embedded)

    try:
        return parse_headings(stripped)
    except MalformedOutput:
        return {"simple_explanation": stripped}


def _raw_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        return raw.decode("utf-8", errors="replace")
    try:
        return json.dumps(raw, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(raw)


def _coerce(raw: Any) -> dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return _coerce_mapping(raw)
    return _coerce_text(_raw_text(raw))


def normalize_tutor_result(raw: Any, title: str = "") -> TutorResult:
    """Map a raw Gemini payload (text or object) onto the six-field TutorResult."""
    try:
        return _build(_coerce(raw), title)
    except Exception as exc:  # any parser surprise degrades to the raw-text fallback
        logger.warning("Tutor output normalization fell back to raw text: {}", exc)
        return TutorResult(title=str(title or "").strip(), simple_explanation=clean_text(_raw_text(raw)))


def _build(fields: Mapping[str, Any], title: str) -> TutorResult:
    return TutorResult(
        title=clean_text(fields.get("title")) or clean_text(title),
        simple_explanation=clean_text(fields.get("simple_explanation")),
        real_world_example=clean_text(fields.get("real_world_example")),
        key_commands=to_string_list(fields.get("key_commands")),
        common_mistakes=to_string_list(fields.get("common_mistakes")),
        quick_check=to_string_list(fields.get("quick_check")),
    )
