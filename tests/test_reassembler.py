"""
Tests for the stream reassembler.
"""

import json

import pytest

from bedrockchat.decoders import Done, TextDelta
from bedrockchat.reassembler import StreamReassembler, reassemble
from bedrockchat.registry import Subtype


async def _chunks(*items):
    for item in items:
        yield item


def _delta(text):
    return json.dumps({"type": "content_block_delta",
                       "delta": {"type": "text_delta", "text": text}}).encode()


@pytest.mark.asyncio
async def test_deltas_fold_in_order():
    events, text = await reassemble(_chunks(_delta("He"), _delta("llo")), Subtype.CLAUDE3)
    assert events == [TextDelta("He"), TextDelta("llo")]
    assert text == "Hello"


@pytest.mark.asyncio
async def test_malformed_chunk_is_skipped():
    reassembler = StreamReassembler(Subtype.CLAUDE3)
    events = [e async for e in reassembler.events(_chunks(_delta("A"), b"garbage", _delta("B")))]

    assert events == [TextDelta("A"), TextDelta("B")]
    assert reassembler.final_text == "AB"
    assert reassembler.chunks_seen == 3
    assert reassembler.chunks_skipped == 1


@pytest.mark.asyncio
async def test_empty_deltas_and_unrecognized_are_dropped():
    chunks = _chunks(
        json.dumps({"type": "message_start"}).encode(),
        _delta(""),
        _delta(" hi "),
        json.dumps({"type": "message_stop"}).encode(),
    )
    reassembler = StreamReassembler(Subtype.CLAUDE3)
    events = [e async for e in reassembler.events(chunks)]

    assert events == [TextDelta(" hi "), Done()]
    assert reassembler.started
    assert reassembler.final_text == "hi"
    assert reassembler.done == Done()


@pytest.mark.asyncio
async def test_empty_stream():
    reassembler = StreamReassembler(Subtype.LLAMA3)
    events = [e async for e in reassembler.events(_chunks())]
    assert events == []
    assert not reassembler.started
    assert reassembler.final_text == ""


@pytest.mark.asyncio
async def test_wrong_shape_chunks_are_skipped():
    """Valid JSON with the wrong structure is skipped like unparseable bytes."""
    bad_delta = json.dumps({"delta": "oops"}).encode()
    bad_text = json.dumps({"type": "content_block_delta",
                           "delta": {"type": "text_delta", "text": 5}}).encode()
    reassembler = StreamReassembler(Subtype.CLAUDE3)
    events = [e async for e in reassembler.events(_chunks(_delta("A"), bad_delta, bad_text, _delta("B")))]

    assert events == [TextDelta("A"), TextDelta("B")]
    assert reassembler.final_text == "AB"
    assert reassembler.chunks_skipped == 2
