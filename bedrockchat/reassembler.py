"""
Stream reassembler — left-to-right fold of raw chunks into text events.

Chunks are consumed strictly in arrival order, one at a time. A chunk that
fails to parse is logged and skipped; the stream carries on. Only non-empty
TextDelta and Done events are yielded. Everything the reassembler yields is
also accumulated so the caller can read ``final_text`` once the stream ends.
"""

from __future__ import annotations

import logging
from typing import AsyncIterable, AsyncIterator

from bedrockchat.decoders import Done, StreamEvent, TextDelta, Unrecognized, decode_chunk
from bedrockchat.errors import PartialStreamError
from bedrockchat.registry import Subtype

logger = logging.getLogger(__name__)


class StreamReassembler:
    """Folds a chunk stream for one response. Single use."""

    def __init__(self, subtype: Subtype):
        self.subtype = subtype
        self._parts: list[str] = []
        self.chunks_seen = 0
        self.chunks_skipped = 0
        self.done: Done | None = None

    @property
    def started(self) -> bool:
        """True once at least one non-empty text delta was emitted."""
        return bool(self._parts)

    @property
    def final_text(self) -> str:
        return "".join(self._parts).strip()

    async def events(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
        async for chunk in chunks:
            self.chunks_seen += 1
            try:
                event = decode_chunk(chunk, self.subtype)
            except PartialStreamError as e:
                self.chunks_skipped += 1
                logger.warning(
                    "Skipping undecodable %s chunk #%d: %s",
                    self.subtype.value, self.chunks_seen, e,
                )
                continue

            if isinstance(event, TextDelta):
                if not event.text:
                    continue
                self._parts.append(event.text)
                yield event
            elif isinstance(event, Done):
                self.done = event
                logger.debug(
                    "Stream finished: stop_reason=%s output_tokens=%s",
                    event.stop_reason, event.output_tokens,
                )
                yield event
            elif isinstance(event, Unrecognized):
                logger.debug("Unhandled %s stream event: %r", self.subtype.value, event.raw)


async def reassemble(chunks: AsyncIterable[bytes], subtype: Subtype) -> tuple[list[StreamEvent], str]:
    """Drain a whole stream. Returns (events, final_text)."""
    reassembler = StreamReassembler(subtype)
    events = [event async for event in reassembler.events(chunks)]
    return events, reassembler.final_text
