"""
Tests for the in-memory conversation store.
"""

import threading

import pytest

from bedrockchat.errors import ConversationNotFound
from bedrockchat.storage import conversation_store as cs
from bedrockchat.storage.conversation_store import ConversationStore
from bedrockchat.storage.models import ConversationState, ConversationTurn, Message, TextBlock


@pytest.fixture
def store():
    return ConversationStore(wait_attempts=3, wait_interval=0)


def test_create_is_idempotent(store):
    first = store.create("c1", model_id="m1", title="One")
    second = store.create("c1", model_id="other")
    assert first is second
    assert second.model_id == "m1"
    assert store.ids() == ["c1"]


def test_unknown_conversation_raises(store):
    with pytest.raises(ConversationNotFound):
        store.get_messages("nope")
    with pytest.raises(ConversationNotFound):
        store.set_loading("nope", True)
    assert store.get_state("nope") is None


def test_append_text_grows_message(store):
    store.create("c1")
    msg = Message(text="He")
    store.append_message("c1", msg)
    store.append_text("c1", msg.id, "llo")
    assert store.get_messages("c1")[0].text == "Hello"


def test_append_text_missing_message(store):
    store.create("c1")
    with pytest.raises(KeyError):
        store.append_text("c1", "missing", "x")


def test_history_and_turns(store):
    store.create("c1")
    store.set_flat_history("c1", "\nHuman: hi")
    store.append_turn("c1", ConversationTurn(role="user", content=[TextBlock("hi")]))
    assert store.get_flat_history("c1") == "\nHuman: hi"
    assert store.get_turns("c1")[0].role == "user"


def test_listeners_see_every_mutation(store):
    events = []
    store.add_listener(events.append)

    store.create("c1")
    store.append_message("c1", Message(text="x"))
    store.set_loading("c1", True)
    store.set_title("c1", "Title")
    store.remove("c1")

    assert [e.kind for e in events] == [
        cs.STATE_ADDED, cs.MESSAGE_APPENDED, cs.LOADING_CHANGED,
        cs.TITLE_CHANGED, cs.STATE_REMOVED,
    ]
    assert all(e.conversation_id == "c1" for e in events)


def test_broken_listener_is_isolated(store):
    """A listener that raises does not stop other listeners or the write."""
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    store.add_listener(broken)
    store.add_listener(seen.append)
    store.create("c1")
    store.append_message("c1", Message(text="still here"))

    assert len(seen) == 2
    assert store.get_messages("c1")[0].text == "still here"

    store.remove_listener(broken)
    store.set_title("c1", "t")
    assert len(seen) == 3


def test_put_replaces_state(store):
    store.create("c1", title="old")
    store.put(ConversationState(id="c1", title="loaded"))
    assert store.get_state("c1").title == "loaded"


@pytest.mark.asyncio
async def test_wait_for_state_found(store):
    store.create("c1")
    state = await store.wait_for_state("c1")
    assert state.id == "c1"


@pytest.mark.asyncio
async def test_wait_for_state_gives_up(store):
    with pytest.raises(ConversationNotFound):
        await store.wait_for_state("ghost")


def test_concurrent_appends_are_not_lost(store):
    store.create("c1")

    def worker():
        for _ in range(200):
            store.append_message("c1", Message(text="x"))

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store.get_messages("c1")) == 800
