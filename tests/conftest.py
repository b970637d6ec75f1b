"""
Shared fixtures: an in-memory transport double and a wired orchestrator.
"""

import asyncio
import json

import pytest

from bedrockchat.backends.base import BaseTransport
from bedrockchat.errors import TransportError
from bedrockchat.images import LocalImageWriter
from bedrockchat.orchestrator import TurnOrchestrator
from bedrockchat.settings import InMemorySettingsStore
from bedrockchat.storage.conversation_store import ConversationStore
from bedrockchat.titler import DEFAULT_TITLE_MODEL, ConversationTitler

CLAUDE3 = "anthropic.claude-3-sonnet-20240229-v1:0"
TITAN = "amazon.titan-text-express-v1"
LLAMA3 = "meta.llama3-8b-instruct-v1:0"
JAMBA = "ai21.jamba-instruct-v1:0"
TITAN_EMBED = "amazon.titan-embed-text-v1"
TITAN_IMAGE = "amazon.titan-image-generator-v1"


def as_bytes(obj) -> bytes:
    return json.dumps(obj).encode()


def claude_text(text: str) -> bytes:
    return as_bytes({"content": [{"type": "text", "text": text}]})


def claude_delta(text: str) -> bytes:
    return as_bytes({"type": "content_block_delta", "delta": {"type": "text_delta", "text": text}})


class FakeTransport(BaseTransport):
    """
    Records every call. ``payload``/``chunks``/``image`` are what the next
    call returns; ``error`` is raised instead when set. When ``gate`` is set,
    the stream waits on it after yielding ``pause_after`` chunks.
    """

    name = "fake"

    def __init__(self, payload=b"{}", chunks=None, image=b"", error=None,
                 title_payload=None, title_error=None):
        self.payload = payload
        self.chunks = list(chunks or [])
        self.image = image
        self.error = error
        self.title_payload = title_payload or claude_text("Friendly Chat")
        self.title_error = title_error
        self.gate: asyncio.Event | None = None
        self.pause_after = 1
        self.calls: list[tuple] = []

    async def invoke_conversational(self, model_id, turns):
        self.calls.append(("conversational", model_id, list(turns)))
        if model_id == DEFAULT_TITLE_MODEL:
            if self.title_error:
                raise self.title_error
            return self.title_payload
        if self.error:
            raise self.error
        return self.payload

    async def _stream(self):
        for i, chunk in enumerate(self.chunks):
            if self.gate is not None and i == self.pause_after:
                await self.gate.wait()
            yield chunk
        if self.error:
            raise self.error

    def invoke_conversational_stream(self, model_id, turns):
        self.calls.append(("conversational_stream", model_id, list(turns)))
        return self._stream()

    async def invoke_completion(self, model_id, prompt):
        self.calls.append(("completion", model_id, prompt))
        if self.error:
            raise self.error
        return self.payload

    def invoke_completion_stream(self, model_id, prompt):
        self.calls.append(("completion_stream", model_id, prompt))
        return self._stream()

    async def invoke_image_generation(self, model_id, prompt):
        self.calls.append(("image", model_id, prompt))
        if self.error:
            raise self.error
        return self.image

    def main_calls(self):
        """Calls excluding the title summarization."""
        return [c for c in self.calls if c[1] != DEFAULT_TITLE_MODEL]


@pytest.fixture
def store():
    return ConversationStore(wait_attempts=3, wait_interval=0)


@pytest.fixture
def settings():
    return InMemorySettingsStore()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def orchestrator(store, transport, settings, tmp_path):
    return TurnOrchestrator(
        store,
        transport,
        settings=settings,
        image_writer=LocalImageWriter(tmp_path / "images"),
    )


@pytest.fixture
def transport_error():
    return TransportError("HTTP 503: unavailable", status_code=503)


@pytest.fixture
def titled_orchestrator(store, transport, settings, tmp_path):
    titler = ConversationTitler(transport, store, settings=settings)
    return TurnOrchestrator(
        store,
        transport,
        settings=settings,
        image_writer=LocalImageWriter(tmp_path / "images"),
        titler=titler,
    )
