"""
brain/ — Tally model endpoint layer
"""

from __future__ import annotations

from tally.brain.llm_client import BaseLLMClient, call_with_retry
from tally.brain.streaming_client import StreamingClient
from tally.brain.types import Message, Role

__all__ = [
    "BaseLLMClient",
    "StreamingClient",
    "call_with_retry",
    "Message",
    "Role",
]


def client_from_settings(settings) -> StreamingClient:
    """Create a StreamingClient from the tally Settings object."""
    llm = settings.llm
    return StreamingClient(
        api_key=settings.llm_api_key,
        base_url=llm.base_url,
        default_model=llm.default_model,
        timeout_seconds=llm.timeout_seconds,
        history_window=llm.history_window,
        max_attempts=llm.retry.max_attempts,
        base_delay=llm.retry.base_delay,
        max_delay=llm.retry.max_delay,
    )
