"""
Retry wrapper for transports with exponential backoff.

Wraps any transport to add retry logic for transient errors:
- 404: Model not ready
- 429: Throttled
- 5xx: Server errors
- no status: connection failure / timeout

Non-retried errors (permanent):
- 400, 401, 403 and any other 4xx

Streams are only retried before the first chunk arrives. Once chunks have
been handed to the caller a retry would duplicate text, so the error
propagates instead.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from bedrockchat.backends.base import BaseTransport
from bedrockchat.errors import TransportError
from bedrockchat.registry import Subtype
from bedrockchat.storage.models import ConversationTurn

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS = (404, 429, 500, 501, 502, 503, 504)


class RetryableTransportWrapper(BaseTransport):
    """Wraps any transport with exponential backoff retry logic."""

    def __init__(
        self,
        transport: BaseTransport,
        max_retries: int = 2,
        backoff_base: float = 1.5,
        backoff_max: float = 10.0,
    ):
        self.transport = transport
        self.name = transport.name
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max

    def _is_retryable(self, error: TransportError) -> bool:
        return error.status_code is None or error.status_code in RETRYABLE_STATUS

    def _backoff_seconds(self, attempt: int) -> float:
        """Calculate backoff time for attempt N (exponential)."""
        delay = self.backoff_base ** attempt
        return min(delay, self.backoff_max)

    async def _call(self, label: str, model_id: str, fn: Callable[[], Awaitable[T]]) -> T:
        for attempt in range(self.max_retries):
            try:
                return await fn()
            except TransportError as e:
                if not self._is_retryable(e):
                    logger.debug(
                        "Transport '%s' non-retryable %s for '%s': %s",
                        self.name, e.status_code, model_id, e,
                    )
                    raise
                backoff = self._backoff_seconds(attempt + 1)
                logger.warning(
                    "Transport '%s' transient %s for '%s', retry in %.1fs (%d/%d)",
                    self.name, e.status_code or "error", model_id, backoff,
                    attempt + 1, self.max_retries,
                )
                await asyncio.sleep(backoff)

        # Last attempt, any error propagates
        try:
            return await fn()
        except TransportError as e:
            if self.max_retries and self._is_retryable(e):
                logger.error(
                    "Transport '%s' exhausted retries for %s '%s' (last: %s)",
                    self.name, label, model_id, e,
                )
            raise

    async def _stream(
        self, model_id: str, open_stream: Callable[[], AsyncIterator[bytes]],
    ) -> AsyncIterator[bytes]:
        for attempt in range(self.max_retries + 1):
            yielded = False
            try:
                async for chunk in open_stream():
                    yielded = True
                    yield chunk
                return
            except TransportError as e:
                if yielded or not self._is_retryable(e) or attempt >= self.max_retries:
                    logger.error(
                        "Transport '%s' stream failed for '%s' after %d attempt(s): %s",
                        self.name, model_id, attempt + 1, e,
                    )
                    raise
                backoff = self._backoff_seconds(attempt + 1)
                logger.warning(
                    "Transport '%s' stream error for '%s', retry in %.1fs: %s",
                    self.name, model_id, backoff, e,
                )
                await asyncio.sleep(backoff)

    async def invoke_conversational(self, model_id: str, turns: list[ConversationTurn]) -> bytes:
        return await self._call(
            "conversational", model_id,
            lambda: self.transport.invoke_conversational(model_id, turns),
        )

    def invoke_conversational_stream(self, model_id: str, turns: list[ConversationTurn]) -> AsyncIterator[bytes]:
        return self._stream(model_id, lambda: self.transport.invoke_conversational_stream(model_id, turns))

    async def invoke_completion(self, model_id: str, prompt: str) -> bytes:
        return await self._call(
            "completion", model_id,
            lambda: self.transport.invoke_completion(model_id, prompt),
        )

    def invoke_completion_stream(self, model_id: str, prompt: str) -> AsyncIterator[bytes]:
        return self._stream(model_id, lambda: self.transport.invoke_completion_stream(model_id, prompt))

    async def invoke_image_generation(self, model_id: str, prompt: str) -> bytes:
        return await self._call(
            "image", model_id,
            lambda: self.transport.invoke_image_generation(model_id, prompt),
        )

    def classify_model_type(self, model_id: str) -> Subtype:
        """Delegate to wrapped transport."""
        return self.transport.classify_model_type(model_id)
