"""Turn free-form model output into a field map, repairing truncated JSON."""

import json
import logging
import re

from docengine.agents.models import ExtractionResult

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_CLOSERS = {"{": "}", "[": "]"}


# ── Scanner ──────────────────────────────────────────────────────────


def _scan(text: str) -> tuple[list[str], bool, int]:
    """Walk JSON-ish text: open brackets, whether a string is open, and the
    position of the last comma outside strings."""
    stack: list[str] = []
    in_string = False
    escaped = False
    last_comma = -1
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in ("}", "]"):
            if stack:
                stack.pop()
        elif ch == ",":
            last_comma = i
    return stack, in_string, last_comma


# ── Candidate Location ───────────────────────────────────────────────


def find_json_candidate(text: str) -> str:
    """Locate the JSON object in a response.

    1. The body of a fenced code block.
    2. The span from the first ``{`` to the last ``}``; when that span is
       unbalanced the object was cut off, so everything from the first ``{``.
    """
    match = _FENCE_RE.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()

    start = text.find("{")
    if start == -1:
        return text.strip()
    end = text.rfind("}")
    if end > start:
        span = text[start : end + 1]
        stack, in_string, _ = _scan(span)
        if not stack and not in_string:
            return span
    return text[start:].strip().removesuffix("```").rstrip()


# ── Repair ───────────────────────────────────────────────────────────


def repair_truncated_json(candidate: str) -> str:
    """Drop a trailing incomplete property and close open brackets.

    Unless the text already ends on a closed value, everything after the
    last comma outside a string is discarded. Open ``{``/``[`` are then
    closed in reverse order and trailing commas removed.
    """
    text = candidate.rstrip()
    stack, in_string, last_comma = _scan(text)

    if in_string or not text.endswith(("}", "]")):
        if last_comma != -1:
            text = text[:last_comma].rstrip()
            stack, in_string, _ = _scan(text)
        if in_string:
            text += '"'

    text += "".join(_CLOSERS[ch] for ch in reversed(stack))
    return _TRAILING_COMMA_RE.sub(r"\1", text)


# ── Public API ───────────────────────────────────────────────────────


def parse_extraction_response(text: str) -> ExtractionResult:
    """Parse model output into fields; never raises.

    Unusable output becomes ``{"raw_text": text}`` with ``parse_error`` set.
    """
    candidate = find_json_candidate(text)

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as exc:
        logger.warning("JSON parse failed (%s), attempting repair", exc)
        try:
            parsed = json.loads(repair_truncated_json(candidate))
        except json.JSONDecodeError as repair_exc:
            logger.error("JSON repair failed: %s", repair_exc)
            return ExtractionResult(fields={"raw_text": text}, parse_error=True)
        logger.info("Recovered truncated JSON")

    if not isinstance(parsed, dict):
        logger.error("Model returned %s instead of a JSON object", type(parsed).__name__)
        return ExtractionResult(fields={"raw_text": text}, parse_error=True)

    return ExtractionResult(fields=parsed)
