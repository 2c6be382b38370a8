"""
brain/streaming_client.py — Chat-Completions Client (SSE streaming)

Talks to any OpenAI-compatible `/chat/completions` endpoint with httpx.

stream():
    POST {stream: true}, read `data:` frames until the `[DONE]` sentinel,
    forwarding every `choices[0].delta.content` fragment to on_delta.
    Undecodable frames are heartbeat noise and are skipped.
    If the transport fails after at least one fragment arrived, the partial
    text is returned as a success (an interrupted answer is still usable
    context). Timeout and explicit cancellation never salvage.

complete():
    POST {stream: false}, read `choices[0].message.content`, retried with
    exponential backoff on transient errors.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from typing import Any, Optional

import httpx

from tally.brain.llm_client import (
    BaseLLMClient,
    DeltaCallback,
    ErrorCallback,
    call_with_retry,
)
from tally.brain.types import Message
from tally.exceptions import (
    ConfigurationError,
    LLMAuthenticationError,
    LLMConnectionError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
    LLMTimeoutError,
    StreamCancelledError,
)
from tally.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_SECONDS = 600.0
DEFAULT_HISTORY_WINDOW = 10

_DONE_SENTINEL = "[DONE]"
_COMPLETIONS_PATH = "/chat/completions"


class StreamingClient(BaseLLMClient):
    """
    One request/response cycle per call against a chat-completions endpoint.

    The underlying httpx.AsyncClient is shared across calls; close it with
    aclose() or use the client as an async context manager.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        default_model: str = DEFAULT_MODEL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise ConfigurationError("LLM_API_KEY is required to reach the model endpoint")
        if history_window < 1:
            raise ConfigurationError("history_window must be >= 1")

        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.timeout_seconds = timeout_seconds
        self.history_window = history_window
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def __aenter__(self) -> "StreamingClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Public API ────────────────────────────────────────────────────────────

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
        payload = self.build_payload(
            history, system_prompt, model, temperature, max_tokens, stream=True
        )
        fragments: list[str] = []
        cancel_event = cancel_event or asyncio.Event()

        log.info(
            "stream.start",
            model=payload["model"],
            message_count=len(payload["messages"]),
            temperature=temperature,
        )

        reader = asyncio.ensure_future(self._read_stream(payload, fragments, on_delta))
        canceller = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {reader, canceller},
                timeout=self.timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            reader.cancel()
            raise
        finally:
            canceller.cancel()

        if reader in done:
            try:
                text = reader.result()
            except LLMError as e:
                if on_error:
                    on_error(e)
                raise
            log.info("stream.complete", chars=len(text), fragments=len(fragments))
            return text

        # Cancelled or timed out: drop the connection first
        reader.cancel()
        await asyncio.gather(reader, return_exceptions=True)

        if canceller in done:
            log.info("stream.cancelled", chars_discarded=sum(len(f) for f in fragments))
            raise StreamCancelledError("Request aborted")

        err = LLMTimeoutError(f"Request timeout after {self.timeout_seconds:g}s")
        log.error("stream.timeout", timeout_seconds=self.timeout_seconds)
        if on_error:
            on_error(err)
        raise err

    async def complete(
        self,
        history: Sequence[Message],
        system_prompt: str,
        model: str,
        temperature: float,
        max_tokens: Optional[int] = None,
    ) -> str:
        payload = self.build_payload(
            history, system_prompt, model, temperature, max_tokens, stream=False
        )

        async def _attempt() -> str:
            try:
                response = await self._client.post(_COMPLETIONS_PATH, json=payload)
            except httpx.TimeoutException as e:
                raise LLMTimeoutError(f"Request timed out: {e}") from e
            except httpx.RequestError as e:
                raise LLMConnectionError(f"Connection failed: {e}") from e

            if response.status_code != 200:
                raise _status_error(response.status_code, response.text, response.headers)

            try:
                content = response.json()["choices"][0]["message"]["content"]
            except (ValueError, KeyError, IndexError, TypeError) as e:
                raise LLMError(f"Malformed completion response: {e}",
                               status_code=response.status_code) from e
            return content or ""

        log.info("complete.start", model=payload["model"],
                 message_count=len(payload["messages"]))
        text = await call_with_retry(
            _attempt,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )
        log.info("complete.done", chars=len(text))
        return text

    # ── Payload ───────────────────────────────────────────────────────────────

    def build_payload(
        self,
        history: Sequence[Message],
        system_prompt: str,
        model: Optional[str],
        temperature: float,
        max_tokens: Optional[int],
        stream: bool,
    ) -> dict[str, Any]:
        """System prompt first, then the most recent history_window messages."""
        window = list(history)[-self.history_window:]
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(m.to_wire() for m in window)

        payload: dict[str, Any] = {
            "model": model or self.default_model,
            "messages": messages,
            "stream": stream,
            "temperature": temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        return payload

    # ── Private helpers ───────────────────────────────────────────────────────

    async def _read_stream(
        self,
        payload: dict[str, Any],
        fragments: list[str],
        on_delta: Optional[DeltaCallback],
    ) -> str:
        try:
            async with self._client.stream(
                "POST",
                _COMPLETIONS_PATH,
                json=payload,
                headers={"Accept": "text/event-stream"},
            ) as response:
                if response.status_code != 200:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise _status_error(response.status_code, body, response.headers)

                async for line in response.aiter_lines():
                    data = _sse_data(line)
                    if data is None:
                        continue
                    if data == _DONE_SENTINEL:
                        return "".join(fragments)
                    delta = _extract_delta(data)
                    if delta:
                        fragments.append(delta)
                        if on_delta:
                            on_delta(delta)
        except httpx.RequestError as e:
            return _salvage(fragments, e)

        return _salvage(fragments, LLMConnectionError("Stream closed before [DONE]"))


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _salvage(fragments: list[str], error: Exception) -> str:
    """Partial-success policy: keep what arrived, fail only if nothing did."""
    if fragments:
        text = "".join(fragments)
        log.warning(
            "stream.partial_salvage",
            chars=len(text),
            error=str(error),
            error_type=type(error).__name__,
        )
        return text
    log.error("stream.connection_error", error=str(error), error_type=type(error).__name__)
    if isinstance(error, LLMConnectionError):
        raise error
    raise LLMConnectionError(f"Stream connection error: {error}") from error


def _sse_data(line: str) -> Optional[str]:
    """Return the payload of a `data:` line, or None for anything else."""
    if not line.startswith("data:"):
        return None
    return line[5:].strip()


def _extract_delta(data: str) -> Optional[str]:
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        log.debug("stream.unparseable_frame", frame=data[:80])
        return None
    try:
        delta = chunk["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    return delta if isinstance(delta, str) else None


def _status_error(status: int, body: str, headers: httpx.Headers) -> LLMError:
    """Map a non-200 status to the matching LLMError subclass."""
    message = f"API Error: {status} - {body[:500]}"
    if status in (401, 403):
        return LLMAuthenticationError(message, status_code=status)
    if status == 429:
        retry_after: Optional[float] = None
        raw = headers.get("retry-after")
        if raw:
            try:
                retry_after = float(raw)
            except ValueError:
                retry_after = None
        return LLMRateLimitError(message, status_code=status, retry_after=retry_after)
    if status in (400, 404, 422):
        return LLMInvalidRequestError(message, status_code=status)
    return LLMConnectionError(message, status_code=status)
