"""
Tests for response decoders.
"""

import base64
import json

import pytest

from bedrockchat.decoders import (
    NO_RESPONSE_TEXT,
    DecodedImage,
    DecodedText,
    DecodeFailure,
    Done,
    TextDelta,
    Unrecognized,
    decode_chunk,
    decode_complete,
    format_vector,
    supports_streaming,
)
from bedrockchat.errors import PartialStreamError
from bedrockchat.registry import Subtype


def _json(obj) -> bytes:
    return json.dumps(obj).encode()


# ---------------------------------------------------------------------------
# Complete payloads
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("subtype, payload, expected", [
    (Subtype.CLAUDE3, {"content": [{"type": "text", "text": " hi \n"}]}, "hi"),
    (Subtype.LEGACY_CHAT, {"completion": "hello"}, "hello"),
    (Subtype.TITAN, {"results": [{"outputText": "\nParis"}]}, "Paris"),
    (Subtype.LLAMA3, {"generation": "yo"}, "yo"),
    (Subtype.MISTRAL, {"outputs": [{"text": "bonjour"}]}, "bonjour"),
    (Subtype.AI21, {"completions": [{"data": {"text": " j2 "}}]}, "j2"),
    (Subtype.COHERE_COMMAND, {"generations": [{"text": "cmd"}]}, "cmd"),
    (Subtype.JAMBA_INSTRUCT, {"choices": [{"message": {"content": " jam "}}]}, "jam"),
])
def test_decode_text_models(subtype, payload, expected):
    assert decode_complete(_json(payload), subtype) == DecodedText(expected)


def test_titan_embedding_as_csv():
    result = decode_complete(_json({"embedding": [0.1, 0.2, 0.3]}), Subtype.TITAN_EMBED)
    assert result == DecodedText("0.1,0.2,0.3")


def test_cohere_embedding_first_vector():
    result = decode_complete(_json({"embeddings": [[1.5, -2.0], [9.9]]}), Subtype.COHERE_EMBED)
    assert result == DecodedText("1.5,-2.0")


def test_format_vector_empty():
    assert format_vector([]) == ""


def test_jamba_without_choices_is_error_text():
    result = decode_complete(_json({"choices": []}), Subtype.JAMBA_INSTRUCT)
    assert result == DecodedText(NO_RESPONSE_TEXT, is_error=True)


def test_titan_image_decodes_bytes():
    png = b"\x89PNG\r\n"
    payload = _json({"images": [base64.b64encode(png).decode()]})
    assert decode_complete(payload, Subtype.TITAN_IMAGE) == DecodedImage(png)


def test_stable_diffusion_decodes_bytes():
    payload = _json({"artifacts": [{"base64": base64.b64encode(b"img").decode()}]})
    assert decode_complete(payload, Subtype.STABLE_DIFFUSION) == DecodedImage(b"img")


def test_unknown_subtype_is_failure():
    result = decode_complete(_json({"x": 1}), Subtype.UNKNOWN)
    assert isinstance(result, DecodeFailure)
    assert "unknown" in result.reason


def test_malformed_payloads_never_raise():
    """Wrong shape, bad JSON and non-objects all come back as DecodeFailure."""
    assert isinstance(decode_complete(b"not json", Subtype.TITAN), DecodeFailure)
    assert isinstance(decode_complete(b"[1, 2]", Subtype.TITAN), DecodeFailure)
    assert isinstance(decode_complete(_json({"results": []}), Subtype.TITAN), DecodeFailure)
    assert isinstance(decode_complete(_json({"content": []}), Subtype.CLAUDE3), DecodeFailure)
    assert isinstance(decode_complete(_json({"images": ["@@@"]}), Subtype.TITAN_IMAGE), DecodeFailure)


# ---------------------------------------------------------------------------
# Streamed chunks
# ---------------------------------------------------------------------------

def test_claude3_text_delta():
    chunk = _json({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "He"}})
    assert decode_chunk(chunk, Subtype.CLAUDE3) == TextDelta("He")


def test_claude3_message_delta_is_done():
    chunk = _json({"type": "message_delta", "delta": {"stop_reason": "end_turn"},
                   "usage": {"output_tokens": 12}})
    assert decode_chunk(chunk, Subtype.CLAUDE3) == Done(stop_reason="end_turn", output_tokens=12)


def test_claude3_other_events_unrecognized():
    chunk = _json({"type": "message_start", "message": {}})
    assert isinstance(decode_chunk(chunk, Subtype.CLAUDE3), Unrecognized)


def test_completion_chunks():
    assert decode_chunk(_json({"completion": "a"}), Subtype.LEGACY_CHAT) == TextDelta("a")
    assert decode_chunk(_json({"outputText": "b"}), Subtype.TITAN) == TextDelta("b")
    assert decode_chunk(_json({"generation": "c"}), Subtype.LLAMA2) == TextDelta("c")
    done = decode_chunk(_json({"generation": "", "stop_reason": "stop"}), Subtype.LLAMA3)
    assert isinstance(done, Done)
    assert done.stop_reason == "stop"


def test_bad_chunk_raises_partial_stream_error():
    with pytest.raises(PartialStreamError):
        decode_chunk(b"{truncated", Subtype.CLAUDE3)


def test_supports_streaming():
    assert supports_streaming(Subtype.CLAUDE3)
    assert supports_streaming(Subtype.LLAMA3)
    assert not supports_streaming(Subtype.JAMBA_INSTRUCT)
    assert not supports_streaming(Subtype.TITAN_EMBED)


@pytest.mark.parametrize("chunk", [
    {"delta": "oops"},
    {"type": "content_block_delta", "delta": {"type": "text_delta", "text": 5}},
    {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": "n/a"},
])
def test_wrong_shape_claude3_chunk_raises_partial_stream_error(chunk):
    with pytest.raises(PartialStreamError):
        decode_chunk(_json(chunk), Subtype.CLAUDE3)
