"""
agent/context_builder.py — System Prompt Assembly

The model endpoint is driven through plain text, not native function
calling, so each agent's tool table is rendered into its system prompt:

  [agent system prompt]
  ### Tool Usage Instructions   (only when the agent has tools)
  [format example]
  ### Available Tools
  [JSON catalog: name, description, parameters]
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from tally.tools.types import ToolDefinition

_TOOL_INSTRUCTIONS = """

### Tool Usage Instructions
You have access to the following tools.
To call a tool, you MUST respond with a JSON object.
The JSON should be wrapped in a markdown code block, BUT if you forget the block, valid JSON is also accepted.

Format:
```json
{
  "tool": "tool_name",
  "arguments": {
    "arg1": "value1"
  }
}
```

### Available Tools
"""


def build_tool_catalog(tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
    return [tool.to_catalog_entry() for tool in tools]


def build_system_prompt(base_prompt: str, tools: Sequence[ToolDefinition]) -> str:
    """Append the tool catalog to base_prompt. Returned unchanged when tools is empty."""
    if not tools:
        return base_prompt
    catalog = json.dumps(build_tool_catalog(tools), indent=2, ensure_ascii=False)
    return base_prompt + _TOOL_INSTRUCTIONS + catalog + "\n"
