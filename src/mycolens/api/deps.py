"""Request dependencies: app-state accessors and API key authentication."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from mycolens.config import Settings
    from mycolens.core.ingest import ImageIngestor
    from mycolens.core.notify import LoggingNotifier
    from mycolens.core.orchestrator import ClassificationOrchestrator
    from mycolens.core.provider import ModelProvider
    from mycolens.ml.inference import InferencePool

_bearer_scheme = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def get_provider(request: Request) -> ModelProvider:
    provider: ModelProvider = request.app.state.model_provider
    return provider


def get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def get_ingestor(request: Request) -> ImageIngestor:
    ingestor: ImageIngestor = request.app.state.ingestor
    return ingestor


def get_notifier(request: Request) -> LoggingNotifier:
    notifier: LoggingNotifier = request.app.state.notifier
    return notifier


def get_session(request: Request) -> ClassificationOrchestrator:
    session: ClassificationOrchestrator = request.app.state.session
    return session


def get_session_notifier(request: Request) -> LoggingNotifier:
    notifier: LoggingNotifier = request.app.state.session_notifier
    return notifier


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Require 'Authorization: Bearer <key>' when MYCOLENS_API_KEY is set.

    Without a configured key every request passes.
    """
    expected = get_app_settings(request).api_key
    if expected is None:
        return

    supplied = credentials.credentials if credentials is not None else ""
    if not secrets.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
