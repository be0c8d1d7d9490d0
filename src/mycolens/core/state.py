"""Request state for the classification state machine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mycolens.core.ingest import ImageHandle
    from mycolens.core.presenter import ClassificationResult
    from mycolens.errors import ClassificationError


class RequestStatus(StrEnum):
    IDLE = "idle"
    INGESTING = "ingesting"
    LOADING_MODEL = "loading_model"
    INFERRING = "inferring"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RequestStatus.SUCCEEDED, RequestStatus.FAILED)

    @property
    def in_flight(self) -> bool:
        return self in (RequestStatus.INGESTING, RequestStatus.LOADING_MODEL, RequestStatus.INFERRING)


@dataclass(frozen=True)
class RequestState:
    """Snapshot of the current request.

    ``results`` is only populated for SUCCEEDED and ``error`` only for FAILED.
    ``request_id`` is 0 before the first request.
    """

    status: RequestStatus = RequestStatus.IDLE
    request_id: int = 0
    image: ImageHandle | None = None
    results: tuple[ClassificationResult, ...] = ()
    error: ClassificationError | None = None

    @classmethod
    def idle(cls) -> RequestState:
        return cls()

    @classmethod
    def ingesting(cls, request_id: int) -> RequestState:
        return cls(RequestStatus.INGESTING, request_id)

    @classmethod
    def loading_model(cls, request_id: int, image: ImageHandle) -> RequestState:
        return cls(RequestStatus.LOADING_MODEL, request_id, image)

    @classmethod
    def inferring(cls, request_id: int, image: ImageHandle) -> RequestState:
        return cls(RequestStatus.INFERRING, request_id, image)

    @classmethod
    def succeeded(
        cls, request_id: int, image: ImageHandle, results: tuple[ClassificationResult, ...]
    ) -> RequestState:
        return cls(RequestStatus.SUCCEEDED, request_id, image, results=results)

    @classmethod
    def failed(cls, request_id: int, image: ImageHandle | None, error: ClassificationError) -> RequestState:
        return cls(RequestStatus.FAILED, request_id, image, error=error)
