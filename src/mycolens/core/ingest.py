"""Image ingestion: validate a user-supplied file and decode it into an ImageHandle."""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from mycolens.errors import InvalidInputError

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

IMAGE_MIME_PREFIX = "image/"


class InputSource(StrEnum):
    SELECTION = "selection"
    DROP = "drop"


@dataclass(frozen=True)
class RawFile:
    """A file blob as delivered by a file picker or a drop event."""

    filename: str
    content_type: str | None
    data: bytes


@dataclass(frozen=True)
class ImageHandle:
    """A decoded image owned by one classification request."""

    mime_type: str
    data: bytes
    data_uri: str
    filename: str = ""

    @property
    def size(self) -> int:
        return len(self.data)


class ImageIngestor:
    """Turns raw files into ImageHandles.

    The ingestor never touches request state; the orchestrator decides what
    to do with the handle it returns.
    """

    def __init__(self, max_file_size: int | None = None) -> None:
        self._max_file_size = max_file_size

    def validate(self, raw_file: RawFile, source: InputSource = InputSource.SELECTION) -> None:
        """Reject anything that is not an image within the size limit.

        Raises:
            InvalidInputError: If the MIME type is not ``image/*`` or the file is too large.
        """
        content_type = (raw_file.content_type or "").strip().lower()
        if not content_type.startswith(IMAGE_MIME_PREFIX):
            verb = "drop" if source is InputSource.DROP else "select"
            raise InvalidInputError(f"Please {verb} an image file")
        if self._max_file_size is not None and len(raw_file.data) > self._max_file_size:
            raise InvalidInputError(f"Image is larger than the {self._max_file_size} byte limit")

    async def ingest(self, raw_file: RawFile, source: InputSource = InputSource.SELECTION) -> ImageHandle:
        """Validate and decode a raw file into an ImageHandle."""
        self.validate(raw_file, source)
        mime_type = raw_file.content_type.strip().lower()  # type: ignore[union-attr]
        data_uri = await asyncio.to_thread(encode_data_uri, raw_file.data, mime_type)
        logger.debug("Ingested %s (%s, %d bytes)", raw_file.filename, mime_type, len(raw_file.data))
        return ImageHandle(
            mime_type=mime_type,
            data=raw_file.data,
            data_uri=data_uri,
            filename=raw_file.filename,
        )


def encode_data_uri(data: bytes, mime_type: str) -> str:
    """Encode raw bytes as a base64 ``data:`` URI."""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def first_file(files: Sequence[RawFile]) -> RawFile | None:
    """Return the first file of an input event, or None when the event is empty."""
    return files[0] if files else None
