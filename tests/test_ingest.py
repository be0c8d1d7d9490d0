"""Tests for image ingestion."""

from __future__ import annotations

import base64

import pytest

from mycolens.core.ingest import ImageIngestor, InputSource, RawFile, encode_data_uri, first_file
from mycolens.errors import ErrorKind, InvalidInputError

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


def _raw(content_type: str | None = "image/png", data: bytes = PNG_BYTES, name: str = "cap.png") -> RawFile:
    return RawFile(filename=name, content_type=content_type, data=data)


class TestValidate:
    def test_accepts_any_image_subtype(self) -> None:
        ingestor = ImageIngestor()
        for content_type in ("image/png", "image/jpeg", "image/webp", "IMAGE/GIF"):
            ingestor.validate(_raw(content_type))

    @pytest.mark.parametrize("content_type", ["text/plain", "application/pdf", "", None, "imagex/png"])
    def test_rejects_non_images(self, content_type: str | None) -> None:
        with pytest.raises(InvalidInputError) as excinfo:
            ImageIngestor().validate(_raw(content_type))
        assert excinfo.value.kind is ErrorKind.INVALID_INPUT

    def test_message_depends_on_entry_point(self) -> None:
        ingestor = ImageIngestor()
        with pytest.raises(InvalidInputError, match="Please select an image file"):
            ingestor.validate(_raw("text/plain"), InputSource.SELECTION)
        with pytest.raises(InvalidInputError, match="Please drop an image file"):
            ingestor.validate(_raw("text/plain"), InputSource.DROP)

    def test_rejects_oversized_file(self) -> None:
        ingestor = ImageIngestor(max_file_size=4)
        with pytest.raises(InvalidInputError, match="byte limit"):
            ingestor.validate(_raw(data=b"12345"))


class TestIngest:
    async def test_produces_data_uri(self) -> None:
        handle = await ImageIngestor().ingest(_raw("Image/PNG"))

        assert handle.mime_type == "image/png"
        assert handle.data == PNG_BYTES
        assert handle.filename == "cap.png"
        assert handle.size == len(PNG_BYTES)
        prefix, payload = handle.data_uri.split(",", 1)
        assert prefix == "data:image/png;base64"
        assert base64.b64decode(payload) == PNG_BYTES


def test_encode_data_uri() -> None:
    assert encode_data_uri(b"abc", "image/gif") == "data:image/gif;base64,YWJj"


def test_first_file() -> None:
    assert first_file([]) is None
    raw = _raw()
    assert first_file([raw]) is raw
    assert first_file([raw, _raw("text/plain", name="second.txt")]) is raw
