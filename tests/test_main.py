"""
Tests for wiring the chat core from config.
"""

import copy

import pytest

from bedrockchat.backends import RetryableTransportWrapper
from bedrockchat.config import DEFAULTS
from bedrockchat.main import build_core, build_transport
from bedrockchat.storage.models import Author

from conftest import TITAN, FakeTransport, as_bytes


@pytest.fixture
def cfg(tmp_path):
    c = copy.deepcopy(DEFAULTS)
    c["settings"]["path"] = str(tmp_path / "runtime.yaml")
    c["storage"]["sqlite_path"] = str(tmp_path / "conversations.db")
    c["images"]["directory"] = str(tmp_path / "images")
    c["wiretap"] = {"enabled": True, "path": str(tmp_path / "wire.jsonl")}
    return c


def test_build_transport_wraps_gateway(cfg):
    transport = build_transport(cfg)
    assert isinstance(transport, RetryableTransportWrapper)
    assert transport.transport.url == "http://localhost:8000"


@pytest.mark.asyncio
async def test_conversation_survives_restart(cfg, tmp_path):
    """A conversation sent through one core is reloaded by the next."""
    transport = FakeTransport(payload=as_bytes({"results": [{"outputText": "pong"}]}))
    core = build_core(cfg, transport=transport)
    core.open_conversation("c1", model_id=TITAN)

    await core.orchestrator.send_message("c1", "ping")
    await core.aclose()

    assert (tmp_path / "wire.jsonl").exists()

    reopened = build_core(cfg, transport=FakeTransport())
    state = reopened.open_conversation("c1")
    assert state.model_id == TITAN
    assert [(m.author, m.text) for m in state.messages] == [
        (Author.USER, "ping"),
        (Author.ASSISTANT, "pong"),
    ]
    assert state.flat_history == "\nHuman: ping\nAssistant: pong\n"
    await reopened.aclose()


def test_new_conversation_uses_stored_title(cfg):
    core = build_core(cfg, transport=FakeTransport())
    core.settings.set_title("c9", "Saved Title")
    assert core.open_conversation("c9", model_id=TITAN).title == "Saved Title"
