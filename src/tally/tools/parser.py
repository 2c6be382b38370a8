"""
tools/parser.py — Lenient Tool-Call Parser

Recovers a {tool, arguments} intent from free-form model output.

Precedence:
    1. First fenced code block (``` or ```json), interior taken as candidate
    2. Otherwise the substring from the first "{" to the last "}"
    3. No candidate → None

The candidate is decoded as-is first. If that fails it is cleaned (control
characters except \\n \\r \\t removed, /* block */ and // line comments
removed) and decoded again. Accepted shapes:

    {"tool": "name", "arguments": {...}}
    {"tool": "name", "args": {...}}
    {"tool": "name", "arguments": "{\\"a\\": 1}"}     # JSON-encoded string
    {"function": {"name": "name", "arguments": "..."}}

A decode failure means "plain answer", not an error: parse_tool_call never raises.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from tally.observability.logger import get_logger
from tally.tools.types import ParsedToolCall

log = get_logger(__name__)

_FENCED_BLOCK = re.compile(r"```[ \t]*(?:[A-Za-z0-9_+-]+)?[ \t]*\r?\n?([\s\S]*?)```")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]+")
_BLOCK_COMMENT = re.compile(r"/\*[\s\S]*?\*/")
# "//" preceded by ":" or "\" is left alone so URLs survive
_LINE_COMMENT = re.compile(r"(^|[^\\:])//.*$", re.MULTILINE)


def parse_tool_call(text: Optional[str]) -> Optional[ParsedToolCall]:
    """Return the tool call embedded in text, or None if there is none."""
    if not text:
        return None

    candidate = _extract_candidate(text)
    if not candidate:
        return None

    try:
        parsed = _loads(candidate)
    except json.JSONDecodeError as e:
        log.debug("parser.decode_failed", error=str(e), candidate=candidate[:120])
        return None

    return _normalise(parsed)


def clean_json_text(candidate: str) -> str:
    """Strip control characters and comment-like noise from near-JSON."""
    cleaned = candidate.strip()
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    cleaned = _BLOCK_COMMENT.sub("", cleaned)
    cleaned = _LINE_COMMENT.sub(r"\1", cleaned)
    return cleaned.strip()


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _loads(text: str) -> Any:
    """Decode as-is, falling back to the cleaned text."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return json.loads(clean_json_text(text))


def _extract_candidate(text: str) -> str:
    match = _FENCED_BLOCK.search(text)
    if match:
        return match.group(1).strip()

    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        return text[first:last + 1]
    return ""


def _normalise(parsed: Any) -> Optional[ParsedToolCall]:
    if not isinstance(parsed, dict):
        return None

    name = parsed.get("tool")
    if isinstance(name, str) and name:
        raw_args = parsed.get("arguments")
        if raw_args is None:
            raw_args = parsed.get("args")
    else:
        function = parsed.get("function")
        if not isinstance(function, dict):
            return None
        name = function.get("name")
        if not isinstance(name, str) or not name:
            return None
        raw_args = function.get("arguments")

    args = _decode_args(raw_args)
    if args is None:
        log.debug("parser.bad_arguments", tool=name)
        return None
    return ParsedToolCall(name=name, args=args)


def _decode_args(raw: Any) -> Optional[dict[str, Any]]:
    """Arguments may be an object, a JSON-encoded object string, or absent."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = _loads(raw)
        except json.JSONDecodeError:
            return None
    return raw if isinstance(raw, dict) else None
