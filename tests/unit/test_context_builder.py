"""
tests/unit/test_context_builder.py — System Prompt Assembly Tests
"""

from __future__ import annotations

import json

from tally.agent.context_builder import build_system_prompt, build_tool_catalog
from tally.tools.types import ToolDefinition


def _tool() -> ToolDefinition:
    return ToolDefinition(
        id="add_transaction",
        name="add_transaction",
        description="Record a transaction",
        parameters={
            "type": "object",
            "properties": {"amount": {"type": "number"}},
            "required": ["amount"],
        },
        handler=lambda args, context: "ok",
    )


class TestContextBuilder:
    def test_no_tools_returns_base_prompt(self):
        assert build_system_prompt("You are helpful.", []) == "You are helpful."

    def test_catalog_entries(self):
        (entry,) = build_tool_catalog([_tool()])
        assert entry == {
            "name": "add_transaction",
            "description": "Record a transaction",
            "parameters": {
                "type": "object",
                "properties": {"amount": {"type": "number"}},
                "required": ["amount"],
            },
        }

    def test_prompt_has_instructions_and_catalog(self):
        prompt = build_system_prompt("You are helpful.", [_tool()])
        assert prompt.startswith("You are helpful.")
        assert "### Tool Usage Instructions" in prompt
        catalog_text = prompt.split("### Available Tools\n", 1)[1]
        assert json.loads(catalog_text)[0]["name"] == "add_transaction"
