"""
Response decoders — one pure function per model subtype.

decode_complete() turns a whole response payload into DecodedText,
DecodedImage or DecodeFailure. decode_chunk() applies the same field paths
to one streamed chunk and returns a StreamEvent.

Field paths per subtype:
    claude3          content[0].text            (stream: delta.text on text_delta)
    legacy_chat      completion
    titan            results[0].outputText      (stream: outputText)
    llama2/3,mistral generation, else outputs[0].text
    ai21             completions[0].data.text
    cohere_command   generations[0].text
    cohere_embed     embeddings (first vector) joined with ","
    titan_embed      embedding joined with ","
    jamba_instruct   choices[0].message.content, or an error text when empty
    titan_image      images[0] (base64)
    stable_diffusion artifacts[0].base64
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

from bedrockchat.errors import DecodeError, PartialStreamError
from bedrockchat.registry import Subtype

logger = logging.getLogger(__name__)

NO_RESPONSE_TEXT = "No response from the model."
UNDECODABLE_TEXT = "Error: Unable to decode response."


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DecodedText:
    value: str
    is_error: bool = False


@dataclass(frozen=True)
class DecodedImage:
    data: bytes


@dataclass(frozen=True)
class DecodeFailure:
    reason: str


DecodeResult = DecodedText | DecodedImage | DecodeFailure


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class Done:
    stop_reason: str | None = None
    output_tokens: int | None = None


@dataclass(frozen=True)
class Unrecognized:
    raw: Any


StreamEvent = TextDelta | Done | Unrecognized


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def parse_payload(payload: bytes | str | dict) -> dict:
    """Parse a JSON object payload. Raises DecodeError on anything else."""
    if isinstance(payload, dict):
        return payload
    try:
        data = json.loads(payload)
    except (TypeError, ValueError, UnicodeDecodeError) as e:
        raise DecodeError(f"Payload is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise DecodeError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def format_vector(values: list) -> str:
    """Render a numeric vector as comma-separated decimals."""
    return ",".join(str(v) for v in values)


def _llama_text(data: dict) -> str | None:
    generation = data.get("generation")
    if isinstance(generation, str):
        return generation
    outputs = data.get("outputs")
    if isinstance(outputs, list) and outputs and isinstance(outputs[0], dict):
        text = outputs[0].get("text")
        if isinstance(text, str):
            return text
    return None


# ---------------------------------------------------------------------------
# Complete payloads
# ---------------------------------------------------------------------------

def _claude3(data: dict) -> DecodeResult:
    for block in data.get("content", []):
        if block.get("type", "text") == "text" and "text" in block:
            return DecodedText(block["text"].strip())
    return DecodeFailure("No text content block in response")


def _legacy_chat(data: dict) -> DecodeResult:
    return DecodedText(data["completion"].strip())


def _titan(data: dict) -> DecodeResult:
    return DecodedText(data["results"][0]["outputText"].strip())


def _llama(data: dict) -> DecodeResult:
    text = _llama_text(data)
    if text is None:
        return DecodeFailure("Neither 'generation' nor 'outputs[0].text' present")
    return DecodedText(text)


def _ai21(data: dict) -> DecodeResult:
    return DecodedText(data["completions"][0]["data"]["text"].strip())


def _cohere_command(data: dict) -> DecodeResult:
    return DecodedText(data["generations"][0]["text"])


def _cohere_embed(data: dict) -> DecodeResult:
    embeddings = data["embeddings"]
    # One input text in, one vector out; tolerate a flat list too
    if embeddings and isinstance(embeddings[0], list):
        embeddings = embeddings[0]
    return DecodedText(format_vector(embeddings))


def _titan_embed(data: dict) -> DecodeResult:
    return DecodedText(format_vector(data["embedding"]))


def _jamba(data: dict) -> DecodeResult:
    choices = data.get("choices") or []
    if not choices:
        return DecodedText(NO_RESPONSE_TEXT, is_error=True)
    return DecodedText(choices[0]["message"]["content"].strip())


def _titan_image(data: dict) -> DecodeResult:
    return DecodedImage(base64.b64decode(data["images"][0], validate=True))


def _stable_diffusion(data: dict) -> DecodeResult:
    return DecodedImage(base64.b64decode(data["artifacts"][0]["base64"], validate=True))


COMPLETE_DECODERS: dict[Subtype, Callable[[dict], DecodeResult]] = {
    Subtype.CLAUDE3: _claude3,
    Subtype.LEGACY_CHAT: _legacy_chat,
    Subtype.TITAN: _titan,
    Subtype.LLAMA2: _llama,
    Subtype.LLAMA3: _llama,
    Subtype.MISTRAL: _llama,
    Subtype.AI21: _ai21,
    Subtype.COHERE_COMMAND: _cohere_command,
    Subtype.COHERE_EMBED: _cohere_embed,
    Subtype.TITAN_EMBED: _titan_embed,
    Subtype.JAMBA_INSTRUCT: _jamba,
    Subtype.TITAN_IMAGE: _titan_image,
    Subtype.STABLE_DIFFUSION: _stable_diffusion,
}


def decode_complete(payload: bytes | str | dict, subtype: Subtype) -> DecodeResult:
    """Decode one complete response payload. Never raises."""
    decoder = COMPLETE_DECODERS.get(subtype)
    if decoder is None:
        return DecodeFailure(f"No decoder for model type '{subtype.value}'")
    try:
        return decoder(parse_payload(payload))
    except DecodeError as e:
        return DecodeFailure(str(e))
    except (KeyError, IndexError, TypeError, AttributeError, binascii.Error) as e:
        logger.debug("Payload for %s did not match expected shape: %r", subtype.value, e)
        return DecodeFailure(f"Unexpected {subtype.value} response shape: {e!r}")


# ---------------------------------------------------------------------------
# Streamed chunks
# ---------------------------------------------------------------------------

def _claude3_chunk(data: dict) -> StreamEvent:
    delta = data.get("delta") or {}
    if not isinstance(delta, dict):
        raise PartialStreamError(f"delta is {type(delta).__name__}, not an object")
    delta_type = delta.get("type")
    if delta_type == "text_delta":
        text = delta.get("text", "")
        if not isinstance(text, str):
            raise PartialStreamError(f"text_delta carries {type(text).__name__}, not text")
        return TextDelta(text)
    if data.get("type") == "message_delta" or delta_type == "message_delta" or "stop_reason" in delta:
        usage = data.get("usage") or delta.get("usage") or {}
        return Done(stop_reason=delta.get("stop_reason"), output_tokens=usage.get("output_tokens"))
    if data.get("type") == "message_stop":
        return Done()
    return Unrecognized(data)


def _completion_chunk(field_reader: Callable[[dict], str | None]) -> Callable[[dict], StreamEvent]:
    def decode(data: dict) -> StreamEvent:
        text = field_reader(data)
        if text:
            return TextDelta(text)
        stop_reason = data.get("stop_reason") or data.get("completionReason")
        if stop_reason:
            return Done(stop_reason=stop_reason, output_tokens=data.get("generation_token_count"))
        if text is not None:
            return TextDelta("")
        return Unrecognized(data)
    return decode


def _get_str(key: str) -> Callable[[dict], str | None]:
    def read(data: dict) -> str | None:
        value = data.get(key)
        return value if isinstance(value, str) else None
    return read


CHUNK_DECODERS: dict[Subtype, Callable[[dict], StreamEvent]] = {
    Subtype.CLAUDE3: _claude3_chunk,
    Subtype.LEGACY_CHAT: _completion_chunk(_get_str("completion")),
    Subtype.TITAN: _completion_chunk(_get_str("outputText")),
    Subtype.LLAMA2: _completion_chunk(_llama_text),
    Subtype.LLAMA3: _completion_chunk(_llama_text),
    Subtype.MISTRAL: _completion_chunk(_llama_text),
}


def decode_chunk(payload: bytes | str | dict, subtype: Subtype) -> StreamEvent:
    """
    Decode one streamed chunk.
    Raises PartialStreamError when the chunk is not a JSON object or does
    not have the shape its subtype streams.
    """
    try:
        data = parse_payload(payload)
    except DecodeError as e:
        raise PartialStreamError(str(e)) from e
    decoder = CHUNK_DECODERS.get(subtype)
    if decoder is None:
        return Unrecognized(data)
    try:
        return decoder(data)
    except (KeyError, IndexError, TypeError, AttributeError) as e:
        raise PartialStreamError(f"Unexpected {subtype.value} chunk shape: {e!r}") from e


def supports_streaming(subtype: Subtype) -> bool:
    return subtype in CHUNK_DECODERS
