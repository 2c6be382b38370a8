"""
brain/llm_client.py — Abstract Chat Client + Retry

The orchestration engine talks to the model only through BaseLLMClient.
StreamingClient (brain/streaming_client.py) is the HTTP implementation;
tests substitute scripted fakes.

  - BaseLLMClient.stream()   incremental deltas, resolves with the full text
  - BaseLLMClient.complete() one complete answer (no deltas)
  - call_with_retry()        exponential backoff on transient errors
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from typing import Optional, TypeVar

from tally.brain.types import Message
from tally.exceptions import (
    LLMConnectionError,
    LLMRateLimitError,
    LLMTimeoutError,
)
from tally.observability.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")

DeltaCallback = Callable[[str], None]
ErrorCallback = Callable[[Exception], None]

# Errors that may fix themselves on a second attempt
RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    LLMConnectionError,
    LLMTimeoutError,
    LLMRateLimitError,
)


class BaseLLMClient(ABC):
    """
    Abstract base for chat-completion clients.

    Subclasses must implement:
      - stream()   -> forward each text fragment to on_delta, return the full text
      - complete() -> return one complete answer
    """

    @abstractmethod
    async def stream(
        self,
        history: Sequence[Message],
        system_prompt: str,
        model: str,
        temperature: float,
        on_delta: Optional[DeltaCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Stream one response. Raises StreamCancelledError if cancel_event fires."""
        ...

    @abstractmethod
    async def complete(
        self,
        history: Sequence[Message],
        system_prompt: str,
        model: str,
        temperature: float,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Return one complete, non-streamed response."""
        ...

    async def aclose(self) -> None:
        """Release network resources. Default: nothing to release."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


# ─────────────────────────────────────────────────────────────────────────────
# Retry logic
# ─────────────────────────────────────────────────────────────────────────────


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
) -> T:
    """
    Call fn() with exponential backoff on transient errors.

    Retries on:
      - LLMConnectionError  (network blip, 5xx)
      - LLMTimeoutError     (no answer in time)
      - LLMRateLimitError   (429)

    Does NOT retry authentication, invalid-request or any other error.

    The whole request is re-attempted; nothing is resumed.
    Backoff: min(base_delay * 2^attempt, max_delay). A Retry-After value on
    LLMRateLimitError is used instead when present.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    last_error: Exception | None = None

    for attempt in range(max_attempts):
        try:
            return await fn()
        except RETRYABLE_ERRORS as e:
            last_error = e
            if attempt == max_attempts - 1:
                break

            if isinstance(e, LLMRateLimitError) and e.retry_after:
                delay = min(e.retry_after, max_delay)
            else:
                delay = min(base_delay * (2 ** attempt), max_delay)

            log.warning(
                "llm.retrying",
                attempt=attempt + 1,
                max_attempts=max_attempts,
                delay_s=round(delay, 2),
                error=str(e),
                error_type=type(e).__name__,
            )
            await asyncio.sleep(delay)

    log.error("llm.retries_exhausted", max_attempts=max_attempts, error=str(last_error))
    raise last_error  # type: ignore[misc]
