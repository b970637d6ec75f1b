"""
Gateway transport — Bedrock runtime access through an HTTP gateway.

The gateway exposes Bedrock-runtime-shaped routes and handles AWS auth:
    POST {url}/model/{model_id}/invoke
    POST {url}/model/{model_id}/invoke-with-response-stream

The streaming route answers with one chunk per line. A line shaped like an
event-stream payload part ({"bytes": "<base64>"}) is unwrapped first.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from typing import AsyncIterator
from urllib.parse import quote

import httpx

from bedrockchat.backends.base import BaseTransport
from bedrockchat.decoders import DecodedImage, decode_complete
from bedrockchat.errors import DecodeError, TransportError
from bedrockchat.registry import Subtype, classify
from bedrockchat.storage.models import ConversationTurn

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "bedrock-2023-05-31"


def build_completion_body(subtype: Subtype, prompt: str, max_tokens: int = 4096) -> dict:
    """Request body for a flat-prompt model."""
    if subtype is Subtype.TITAN:
        return {
            "inputText": prompt,
            "textGenerationConfig": {"maxTokenCount": max_tokens, "temperature": 0.7},
        }
    if subtype is Subtype.LEGACY_CHAT:
        return {"prompt": prompt, "max_tokens_to_sample": max_tokens}
    if subtype in (Subtype.LLAMA2, Subtype.LLAMA3):
        return {"prompt": prompt, "max_gen_len": min(max_tokens, 2048)}
    if subtype is Subtype.MISTRAL:
        return {"prompt": prompt, "max_tokens": max_tokens}
    if subtype is Subtype.AI21:
        return {"prompt": prompt, "maxTokens": max_tokens}
    if subtype is Subtype.COHERE_COMMAND:
        return {"prompt": prompt, "max_tokens": max_tokens}
    if subtype is Subtype.COHERE_EMBED:
        return {"texts": [prompt], "input_type": "search_document"}
    if subtype is Subtype.TITAN_EMBED:
        return {"inputText": prompt}
    if subtype is Subtype.JAMBA_INSTRUCT:
        return {"messages": [{"role": "user", "content": prompt}], "max_tokens": max_tokens}
    return {"prompt": prompt}


def build_image_body(subtype: Subtype, prompt: str) -> dict:
    if subtype is Subtype.TITAN_IMAGE:
        return {
            "taskType": "TEXT_IMAGE",
            "textToImageParams": {"text": prompt},
            "imageGenerationConfig": {"numberOfImages": 1, "height": 1024, "width": 1024},
        }
    return {"text_prompts": [{"text": prompt}], "cfg_scale": 10, "steps": 50}


def build_conversational_body(turns: list[ConversationTurn], max_tokens: int = 4096) -> dict:
    return {
        "anthropic_version": ANTHROPIC_VERSION,
        "max_tokens": max_tokens,
        "messages": [t.to_wire() for t in turns],
    }


def unwrap_chunk_line(line: str) -> bytes:
    """Turn one streamed line into a chunk payload."""
    stripped = line.strip()
    if stripped.startswith("{") and '"bytes"' in stripped:
        try:
            envelope = json.loads(stripped)
            if isinstance(envelope, dict) and set(envelope) == {"bytes"}:
                return base64.b64decode(envelope["bytes"], validate=True)
        except (ValueError, binascii.Error):
            pass  # not an envelope after all, hand it over as-is
    return stripped.encode("utf-8")


class GatewayTransport(BaseTransport):
    """Transport for a Bedrock runtime HTTP gateway."""

    def __init__(
        self,
        url: str,
        timeout: int = 120,
        max_tokens: int = 4096,
        name: str = "gateway",
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.name = name
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.max_tokens = max_tokens
        self._http_transport = http_transport

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout if timeout is None else timeout,
            transport=self._http_transport,
        )

    def _route(self, model_id: str, stream: bool = False) -> str:
        action = "invoke-with-response-stream" if stream else "invoke"
        return f"{self.url}/model/{quote(model_id, safe='')}/{action}"

    async def _post(self, model_id: str, body: dict) -> bytes:
        t0 = time.monotonic()
        try:
            async with self._client() as client:
                resp = await client.post(self._route(model_id), json=body)
        except httpx.TimeoutException as e:
            latency = (time.monotonic() - t0) * 1000
            logger.warning("Gateway '%s' timed out after %.0fms for '%s'", self.name, latency, model_id)
            raise TransportError(f"Timeout after {self.timeout}s") from e
        except httpx.HTTPError as e:
            logger.warning("Gateway '%s' request failed for '%s': %s", self.name, model_id, e)
            raise TransportError(str(e)) from e

        latency = (time.monotonic() - t0) * 1000
        if resp.status_code >= 400:
            raise TransportError(
                f"HTTP {resp.status_code}: {resp.text[:200]}", status_code=resp.status_code,
            )
        logger.debug("Gateway '%s' served '%s' in %.0fms", self.name, model_id, latency)
        return resp.content

    async def _stream(self, model_id: str, body: dict) -> AsyncIterator[bytes]:
        try:
            async with self._client() as client:
                async with client.stream("POST", self._route(model_id, stream=True), json=body) as resp:
                    if resp.status_code >= 400:
                        detail = (await resp.aread()).decode("utf-8", "replace")[:200]
                        raise TransportError(
                            f"HTTP {resp.status_code}: {detail}", status_code=resp.status_code,
                        )
                    async for line in resp.aiter_lines():
                        if line.strip():
                            yield unwrap_chunk_line(line)
        except httpx.TimeoutException as e:
            logger.warning("Gateway '%s' stream timed out for '%s'", self.name, model_id)
            raise TransportError(f"Timeout after {self.timeout}s") from e
        except httpx.HTTPError as e:
            logger.warning("Gateway '%s' stream failed for '%s': %s", self.name, model_id, e)
            raise TransportError(str(e)) from e

    async def invoke_conversational(self, model_id: str, turns: list[ConversationTurn]) -> bytes:
        return await self._post(model_id, build_conversational_body(turns, self.max_tokens))

    def invoke_conversational_stream(self, model_id: str, turns: list[ConversationTurn]) -> AsyncIterator[bytes]:
        return self._stream(model_id, build_conversational_body(turns, self.max_tokens))

    async def invoke_completion(self, model_id: str, prompt: str) -> bytes:
        subtype = classify(model_id).subtype
        return await self._post(model_id, build_completion_body(subtype, prompt, self.max_tokens))

    def invoke_completion_stream(self, model_id: str, prompt: str) -> AsyncIterator[bytes]:
        subtype = classify(model_id).subtype
        return self._stream(model_id, build_completion_body(subtype, prompt, self.max_tokens))

    async def invoke_image_generation(self, model_id: str, prompt: str) -> bytes:
        subtype = classify(model_id).subtype
        payload = await self._post(model_id, build_image_body(subtype, prompt))
        result = decode_complete(payload, subtype)
        if not isinstance(result, DecodedImage):
            raise DecodeError(getattr(result, "reason", "no image in response"))
        return result.data
