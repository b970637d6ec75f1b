"""
Image helpers: attachment encoding for outbound requests and writing
generated images to disk for the local image server.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from urllib.parse import quote

logger = logging.getLogger(__name__)

MEDIA_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
}


@dataclass(frozen=True)
class EncodedImage:
    base64_data: str
    media_type: str


def encode_image(data: bytes, extension: str) -> EncodedImage | None:
    """Base64-encode an image. Returns None for empty data or unsupported formats."""
    media_type = MEDIA_TYPES.get(extension.lower().lstrip("."))
    if media_type is None:
        logger.warning("Unsupported image extension '%s', dropping attachment", extension)
        return None
    if not data:
        logger.warning("Empty %s attachment, dropping", extension)
        return None
    return EncodedImage(base64.b64encode(data).decode("ascii"), media_type)


class PendingAttachments:
    """Images queued for the next send of one conversation."""

    def __init__(self):
        self._images: list[EncodedImage] = []

    def add(self, data: bytes, extension: str) -> bool:
        encoded = encode_image(data, extension)
        if encoded is None:
            return False
        self._images.append(encoded)
        return True

    def drain(self) -> list[EncodedImage]:
        images, self._images = self._images, []
        return images

    def clear(self):
        self._images.clear()

    def __len__(self) -> int:
        return len(self._images)


def timestamp_file_name(now: datetime | None = None) -> str:
    """e.g. '2024-06-28 at 3.04.05 PM.png'"""
    now = now or datetime.now()
    hour = now.strftime("%I").lstrip("0") or "12"
    return f"{now:%Y-%m-%d} at {hour}.{now:%M.%S} {now:%p}.png"


def markdown_image(locator: str) -> str:
    return f"![]({locator})"


class LocalImageWriter:
    """
    Writes generated images into a directory served by a local HTTP server.
    write() returns the URL the server will expose the file under.
    """

    def __init__(self, directory: str | Path, served_url: str = "http://localhost:8080"):
        self.directory = Path(directory).expanduser()
        self.served_url = served_url.rstrip("/")

    def write(self, data: bytes, suggested_file_name: str | None = None) -> str:
        file_name = suggested_file_name or timestamp_file_name()
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / file_name
        path.write_bytes(data)
        logger.info("Wrote generated image to %s (%d bytes)", path, len(data))
        return f"{self.served_url}/{quote(file_name)}"
