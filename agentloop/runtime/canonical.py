"""
History canonicalization.

Every ModelResponse is passed through ``canonicalize`` before it is appended
to history, so persisted history can always be replayed to any provider:
tool-call arguments are JSON objects and empty text parts are gone.
"""

import json
import re
from typing import Any

from agentloop.domain.messages import ModelResponse, TextPart, ToolCallPart
from agentloop.utils.logging import get_logger

logger = get_logger(__name__)

PARSE_FAILED = "parse_failed"

_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_UNQUOTED_KEY = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)(\s*):")
_STRING_LITERAL = re.compile(r'("(?:[^"\\]|\\.)*")')


def _close_unbalanced(text: str) -> str:
    """Close an unterminated string, then open braces/brackets innermost first."""
    closers: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            closers.append("}")
        elif ch == "[":
            closers.append("]")
        elif ch in "}]" and closers and closers[-1] == ch:
            closers.pop()

    if in_string:
        text += '"'
    return text + "".join(reversed(closers))


def _outside_strings(text: str, repair) -> str:
    """Apply ``repair`` to the text between string literals only."""
    pieces = _STRING_LITERAL.split(text)
    return "".join(piece if i % 2 else repair(piece) for i, piece in enumerate(pieces))


def _fix_syntax(segment: str) -> str:
    segment = _TRAILING_COMMA.sub(r"\1", segment)
    return _UNQUOTED_KEY.sub(r'\1"\2"\3:', segment)


def repair_json(raw: str) -> Any | None:
    """
    Parse a JSON string, repairing common model mistakes.

    A truncated fragment is first closed as-is. Otherwise repairs, in order:
    single quotes (only when the text has no double quotes), unclosed
    strings, braces and brackets, then trailing commas and unquoted keys
    outside string literals.

    Returns:
        The parsed value, or None when the text cannot be salvaged.
    """
    text = raw.strip()
    try:
        return json.loads(text)
    except ValueError:
        pass

    closed = _close_unbalanced(text)
    try:
        return json.loads(closed)
    except ValueError:
        pass

    repaired = text
    if "'" in repaired and '"' not in repaired:
        repaired = repaired.replace("'", '"')
    repaired = _outside_strings(_close_unbalanced(repaired), _fix_syntax)

    try:
        return json.loads(repaired)
    except ValueError:
        return None


def canonicalize_args(args: dict[str, Any] | str | None) -> dict[str, Any]:
    """
    Turn raw tool-call arguments into a JSON object.

    - dict: returned unchanged
    - empty string / None: ``{}``
    - string: parsed (with repair); non-object values are wrapped as
      ``{"_value": v}``
    - unsalvageable string: ``{"_raw": s, "_error": "parse_failed"}``
    """
    if isinstance(args, dict):
        return args
    if args is None or not args.strip():
        return {}

    value = repair_json(args)
    if value is None:
        logger.warning("tool_args_parse_failed", raw_args=args[:200])
        return {"_raw": args, "_error": PARSE_FAILED}
    if isinstance(value, dict):
        return value
    return {"_value": value}


def canonicalize(response: ModelResponse) -> ModelResponse:
    """
    Return the canonical form of a response. Idempotent.
    """
    parts = []
    changed = False

    for part in response.parts:
        if isinstance(part, TextPart) and not part.content:
            changed = True
            continue
        if isinstance(part, ToolCallPart) and not isinstance(part.args, dict):
            part = part.model_copy(update={"args": canonicalize_args(part.args)})
            changed = True
        parts.append(part)

    if not changed:
        return response
    return response.model_copy(update={"parts": parts})


__all__ = ["repair_json", "canonicalize_args", "canonicalize", "PARSE_FAILED"]
