"""
Tests for attachment encoding and generated image output.
"""

import base64
from datetime import datetime

from bedrockchat.images import (
    LocalImageWriter,
    PendingAttachments,
    encode_image,
    markdown_image,
    timestamp_file_name,
)


def test_encode_image_media_types():
    assert encode_image(b"x", "PNG").media_type == "image/png"
    assert encode_image(b"x", ".jpg").media_type == "image/jpeg"
    assert encode_image(b"x", "webp").media_type == "image/webp"
    assert encode_image(b"x", "gif").base64_data == base64.b64encode(b"x").decode()


def test_encode_image_rejects_unsupported_and_empty():
    assert encode_image(b"x", "bmp") is None
    assert encode_image(b"", "png") is None


def test_pending_attachments_drain():
    pending = PendingAttachments()
    assert pending.add(b"a", "png")
    assert not pending.add(b"b", "tiff")
    assert len(pending) == 1

    drained = pending.drain()
    assert len(drained) == 1
    assert len(pending) == 0
    assert pending.drain() == []


def test_timestamp_file_name():
    assert timestamp_file_name(datetime(2024, 6, 28, 15, 4, 5)) == "2024-06-28 at 3.04.05 PM.png"
    assert timestamp_file_name(datetime(2024, 1, 2, 0, 30, 0)) == "2024-01-02 at 12.30.00 AM.png"


def test_writer_returns_served_url(tmp_path):
    writer = LocalImageWriter(tmp_path / "out", served_url="http://localhost:9000/")
    url = writer.write(b"data", "a b.png")

    assert url == "http://localhost:9000/a%20b.png"
    assert (tmp_path / "out" / "a b.png").read_bytes() == b"data"
    assert markdown_image(url) == "![](http://localhost:9000/a%20b.png)"
