"""
tests/unit/test_parser.py — Lenient Tool-Call Parser Unit Tests

Run with:
    pytest tests/unit/test_parser.py -v
"""

from __future__ import annotations

import json

import pytest

from tally.tools.parser import clean_json_text, parse_tool_call
from tally.tools.types import ParsedToolCall


# ─────────────────────────────────────────────────────────────────────────────
# Accepted shapes
# ─────────────────────────────────────────────────────────────────────────────


class TestParseToolCall:
    def test_fenced_json_block_with_args(self):
        text = 'Sure!\n```json\n{"tool":"addTransaction","args":{"amount":50}}\n```'
        assert parse_tool_call(text) == ParsedToolCall(name="addTransaction", args={"amount": 50})

    def test_plain_text_is_none(self):
        assert parse_tool_call("no json here") is None

    def test_string_encoded_arguments(self):
        text = '{"tool": "x", "arguments": "{\\"a\\":1}"}'
        assert parse_tool_call(text) == ParsedToolCall(name="x", args={"a": 1})

    def test_fenced_block_without_language_tag(self):
        text = 'Calling now:\n```\n{"tool": "query_transactions", "arguments": {"month": "2024-05"}}\n```'
        call = parse_tool_call(text)
        assert call.name == "query_transactions"
        assert call.args == {"month": "2024-05"}

    def test_bare_json_surrounded_by_prose(self):
        text = 'I will record it. {"tool": "add", "arguments": {"amount": 12.5}} Done.'
        call = parse_tool_call(text)
        assert call.name == "add"
        assert call.args == {"amount": 12.5}

    def test_function_shape(self):
        text = '{"function": {"name": "lookup", "arguments": "{\\"id\\": 7}"}}'
        assert parse_tool_call(text) == ParsedToolCall(name="lookup", args={"id": 7})

    def test_missing_arguments_defaults_to_empty(self):
        assert parse_tool_call('{"tool": "list_tags"}') == ParsedToolCall(name="list_tags", args={})

    def test_arguments_preferred_over_args(self):
        call = parse_tool_call('{"tool": "t", "arguments": {"a": 1}, "args": {"b": 2}}')
        assert call.args == {"a": 1}

    def test_fenced_block_takes_precedence(self):
        text = '{"tool": "outer"}\n```json\n{"tool": "inner"}\n```'
        assert parse_tool_call(text).name == "inner"

    def test_comments_are_tolerated(self):
        text = """```json
{
  "tool": "add_transaction", // the tool
  /* amount in dollars */
  "arguments": {"amount": 50, "note": "see https://example.com"}
}
```"""
        call = parse_tool_call(text)
        assert call.name == "add_transaction"
        assert call.args == {"amount": 50, "note": "see https://example.com"}

    def test_double_slash_inside_string_value(self):
        text = '{"tool":"add_transaction","arguments":{"note":"split 50 // 50"}}'
        call = parse_tool_call(text)
        assert call.name == "add_transaction"
        assert call.args == {"note": "split 50 // 50"}

    def test_double_slash_inside_string_encoded_arguments(self):
        text = json.dumps({"tool": "add_transaction", "arguments": '{"note": "a // b"}'})
        assert parse_tool_call(text).args == {"note": "a // b"}


# ─────────────────────────────────────────────────────────────────────────────
# Rejections: never raise, always None
# ─────────────────────────────────────────────────────────────────────────────


class TestParseToolCallRejects:
    @pytest.mark.parametrize("text", [
        "",
        None,
        "{not json at all}",
        "```python\nprint('hi')\n```",
        '{"answer": 42}',
        '{"tool": ""}',
        '{"tool": 5}',
        '["tool", "x"]',
        '{"tool": "x", "arguments": [1, 2]}',
        '{"tool": "x", "arguments": "not json"}',
        '{"function": "x"}',
        "} backwards {",
    ])
    def test_returns_none(self, text):
        assert parse_tool_call(text) is None


# ─────────────────────────────────────────────────────────────────────────────
# Cleaning
# ─────────────────────────────────────────────────────────────────────────────


class TestCleanJsonText:
    def test_strips_control_characters_but_keeps_whitespace(self):
        cleaned = clean_json_text('{"a":\x00 1,\n\t"b":\x07 2}')
        assert "\x00" not in cleaned and "\x07" not in cleaned
        assert "\n" in cleaned and "\t" in cleaned

    def test_strips_block_comment(self):
        assert clean_json_text('{"a": /* note */ 1}') == '{"a":  1}'

    def test_keeps_url_slashes(self):
        assert clean_json_text('{"u": "http://x.y"}') == '{"u": "http://x.y"}'

    def test_strips_line_comment(self):
        assert clean_json_text('{"a": 1} // trailing') == '{"a": 1}'
