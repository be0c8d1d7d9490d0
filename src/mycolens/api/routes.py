"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from mycolens.api.deps import (
    get_app_settings,
    get_inference_pool,
    get_ingestor,
    get_notifier,
    get_provider,
    get_session,
    get_session_notifier,
    verify_api_key,
)
from mycolens.api.schemas import (
    ClassifyImageResponse,
    ErrorInfo,
    ErrorResponse,
    HealthResponse,
    ImageTag,
    ModelInfo,
    ModelsResponse,
    NotificationSchema,
    SessionStateResponse,
    StatusViewSchema,
    SubmitResponse,
)
from mycolens.config import Settings
from mycolens.core.ingest import ImageIngestor, InputSource, RawFile
from mycolens.core.notify import LoggingNotifier
from mycolens.core.orchestrator import ClassificationOrchestrator
from mycolens.core.presenter import status_view
from mycolens.core.provider import ModelProvider
from mycolens.core.state import RequestStatus
from mycolens.errors import ErrorKind, InvalidInputError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from mycolens.core.presenter import ClassificationResult
    from mycolens.core.state import RequestState
    from mycolens.ml.inference import InferencePool

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.INVALID_INPUT: status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    ErrorKind.MODEL_LOAD: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.INFERENCE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.MALFORMED_RESULT: status.HTTP_502_BAD_GATEWAY,
}

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    code: {"model": ErrorResponse} for code in sorted(set(_ERROR_STATUS.values()))
}


async def _read_upload(file: UploadFile) -> RawFile:
    data = await file.read()
    return RawFile(filename=file.filename or "", content_type=file.content_type, data=data)


def _tags(results: Iterable[ClassificationResult]) -> list[ImageTag]:
    return [ImageTag(label=r.label, score=r.score, display=r.display_score) for r in results]


def _error_exception(kind: ErrorKind, message: str) -> HTTPException:
    return HTTPException(status_code=_ERROR_STATUS[kind], detail=message)


def _state_response(state: RequestState, notifier: LoggingNotifier) -> SessionStateResponse:
    view = status_view(state)
    return SessionStateResponse(
        request_id=state.request_id,
        status=state.status.value,
        filename=state.image.filename if state.image is not None else None,
        results=_tags(state.results),
        error=ErrorInfo(kind=state.error.kind.value, message=state.error.message) if state.error else None,
        view=StatusViewSchema(headline=view.headline, detail=view.detail, busy=view.busy),
        notifications=[
            NotificationSchema(title=n.title, description=n.description, severity=n.severity.value)
            for n in notifier.recent
        ],
    )


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses=_ERROR_RESPONSES,
    summary="Classify an image and wait for the ranked labels",
)
async def classify_image(
    file: UploadFile,
    provider: Annotated[ModelProvider, Depends(get_provider)],
    ingestor: Annotated[ImageIngestor, Depends(get_ingestor)],
    notifier: Annotated[LoggingNotifier, Depends(get_notifier)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> ClassifyImageResponse:
    """Run one request through a dedicated orchestrator sharing the process-wide model."""
    raw_file = await _read_upload(file)
    orchestrator = ClassificationOrchestrator(provider, ingestor=ingestor, notifier=notifier)
    try:
        await orchestrator.submit(raw_file)
    except InvalidInputError as exc:
        raise _error_exception(exc.kind, exc.message) from exc

    state = orchestrator.state
    if state.status is RequestStatus.FAILED and state.error is not None:
        raise _error_exception(state.error.kind, state.error.message)
    return ClassifyImageResponse(model=settings.model_repo, results=_tags(state.results))


@router.post(
    "/session/image",
    response_model=SubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": ErrorResponse}},
    summary="Submit an image to the session in the background",
)
async def submit_session_image(
    file: UploadFile,
    session: Annotated[ClassificationOrchestrator, Depends(get_session)],
    source: InputSource = InputSource.SELECTION,
) -> SubmitResponse:
    """Start classifying an image; a newer submission supersedes this one."""
    raw_file = await _read_upload(file)
    try:
        request_id = session.submit_nowait(raw_file, source)
    except InvalidInputError as exc:
        raise _error_exception(exc.kind, exc.message) from exc
    return SubmitResponse(request_id=request_id, status=session.state.status.value)


@router.get(
    "/session",
    response_model=SessionStateResponse,
    summary="Current session request state",
)
async def session_state(
    session: Annotated[ClassificationOrchestrator, Depends(get_session)],
    notifier: Annotated[LoggingNotifier, Depends(get_session_notifier)],
) -> SessionStateResponse:
    """Return the state of the latest session request."""
    return _state_response(session.state, notifier)


@router.delete(
    "/session",
    response_model=SessionStateResponse,
    summary="Reset the session to idle",
)
async def reset_session(
    session: Annotated[ClassificationOrchestrator, Depends(get_session)],
    notifier: Annotated[LoggingNotifier, Depends(get_session_notifier)],
) -> SessionStateResponse:
    """Abandon the in-flight request, if any, and return to idle."""
    session.reset()
    return _state_response(session.state, notifier)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_app_settings(request)
    provider = get_provider(request)
    pool: InferencePool = get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        model_loaded=provider.is_loaded,
        model_loading=provider.is_loading,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List the configured model",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return the configured classification model and its load status."""
    settings = get_app_settings(request)
    provider = get_provider(request)
    if provider.is_loaded:
        model_status = "active"
    elif provider.is_loading:
        model_status = "loading"
    else:
        model_status = "available"

    return ModelsResponse(
        models=[
            ModelInfo(
                name=settings.model_repo,
                status=model_status,
                load_attempts=provider.load_attempts,
            )
        ]
    )
