"""
exceptions.py — Tally Unified Error Hierarchy

All tally-specific exceptions live here. Every layer raises typed
subclasses of TallyError, never bare Exception.

Import from here, not from individual modules:
    from tally.exceptions import SessionNotFoundError, LLMConnectionError

Hierarchy:
    TallyError
    ├── ConfigurationError
    │   ├── SessionNotFoundError
    │   └── AgentNotFoundError
    ├── AgentError
    │   ├── StepLimitExceededError
    │   └── StreamCancelledError
    ├── ToolError
    │   ├── ToolNotFoundError
    │   ├── ToolDisabledError
    │   ├── ToolValidationError
    │   └── ToolTimeoutError
    └── LLMError
        ├── LLMConnectionError
        ├── LLMTimeoutError
        ├── LLMRateLimitError
        ├── LLMAuthenticationError
        └── LLMInvalidRequestError
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class TallyError(Exception):
    """Base class for all tally exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Configuration: fail fast, never retried
# ─────────────────────────────────────────────────────────────────────────────

class ConfigurationError(TallyError):
    """Missing credential or a caller referenced something that does not exist."""


class SessionNotFoundError(ConfigurationError):
    """The session id passed by the caller is not in the SessionStore."""

    def __init__(self, session_id: str, message: str = "") -> None:
        self.session_id = session_id
        super().__init__(message or f"Session '{session_id}' not found")


class AgentNotFoundError(ConfigurationError):
    """The agent id is not registered in the Registry."""

    def __init__(self, agent_id: str, message: str = "") -> None:
        self.agent_id = agent_id
        super().__init__(message or f"Agent '{agent_id}' not found")


# ─────────────────────────────────────────────────────────────────────────────
# Agent loop
# ─────────────────────────────────────────────────────────────────────────────

class AgentError(TallyError):
    """Base for orchestration loop errors."""


class StepLimitExceededError(AgentError):
    """The run hit max_steps without reaching a plain answer."""

    def __init__(self, session_id: str, max_steps: int) -> None:
        self.session_id = session_id
        self.max_steps = max_steps
        super().__init__(
            f"Reached maximum steps ({max_steps}) for session '{session_id}' "
            f"without a final answer."
        )


class StreamCancelledError(AgentError):
    """The in-flight model call was cancelled by the caller."""


# ─────────────────────────────────────────────────────────────────────────────
# Tools
# ─────────────────────────────────────────────────────────────────────────────

class ToolError(TallyError):
    """Base for tool lookup and execution errors."""


class ToolNotFoundError(ToolError):
    """The model asked for a tool the current agent cannot use."""

    def __init__(self, tool_name: str, message: str = "") -> None:
        self.tool_name = tool_name
        super().__init__(message or f'Tool "{tool_name}" not found in available tools list.')


class ToolDisabledError(ToolError):
    """The tool is registered but has been disabled."""

    def __init__(self, tool_name: str, message: str = "") -> None:
        self.tool_name = tool_name
        super().__init__(message or f'Tool "{tool_name}" is disabled.')


class ToolValidationError(ToolError):
    """Tool arguments failed schema validation."""

    def __init__(self, tool_name: str, detail: str) -> None:
        self.tool_name = tool_name
        self.detail = detail
        super().__init__(f"Invalid parameters: {detail}")


class ToolTimeoutError(ToolError):
    """Tool handler exceeded the configured timeout."""

    def __init__(self, tool_name: str, timeout_seconds: float) -> None:
        self.tool_name = tool_name
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Tool '{tool_name}' timed out after {timeout_seconds:g}s")


# ─────────────────────────────────────────────────────────────────────────────
# LLM layer
# ─────────────────────────────────────────────────────────────────────────────

class LLMError(TallyError):
    """Base exception for all model endpoint errors."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMConnectionError(LLMError):
    """Endpoint unreachable, connection dropped, or 5xx."""


class LLMTimeoutError(LLMError):
    """No termination sentinel arrived within the configured timeout."""


class LLMRateLimitError(LLMError):
    """Rate limit hit; retry with exponential backoff."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message, status_code)
        self.retry_after = retry_after


class LLMAuthenticationError(LLMError):
    """Credential rejected by the endpoint (401/403)."""


class LLMInvalidRequestError(LLMError):
    """Bad request: invalid parameters or unknown model."""


__all__ = [
    "TallyError",
    # Configuration
    "ConfigurationError",
    "SessionNotFoundError",
    "AgentNotFoundError",
    # Agent
    "AgentError",
    "StepLimitExceededError",
    "StreamCancelledError",
    # Tools
    "ToolError",
    "ToolNotFoundError",
    "ToolDisabledError",
    "ToolValidationError",
    "ToolTimeoutError",
    # LLM
    "LLMError",
    "LLMConnectionError",
    "LLMTimeoutError",
    "LLMRateLimitError",
    "LLMAuthenticationError",
    "LLMInvalidRequestError",
]
