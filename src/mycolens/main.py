"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mycolens.api.routes import router
from mycolens.config import Settings, get_settings
from mycolens.core.ingest import ImageIngestor
from mycolens.core.notify import LoggingNotifier
from mycolens.core.orchestrator import ClassificationOrchestrator
from mycolens.core.provider import ModelProvider
from mycolens.ml.inference import InferencePool
from mycolens.ml.model_manager import HubModelLoader

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Wire the process-wide provider, the session orchestrator and their collaborators."""
    inference_pool = InferencePool(settings)
    provider = ModelProvider(HubModelLoader(settings, inference_pool))
    ingestor = ImageIngestor(max_file_size=settings.max_file_size)
    notifier = LoggingNotifier()
    session_notifier = LoggingNotifier()

    app.state.settings = settings
    app.state.inference_pool = inference_pool
    app.state.model_provider = provider
    app.state.ingestor = ingestor
    app.state.notifier = notifier
    app.state.session_notifier = session_notifier
    app.state.session = ClassificationOrchestrator(provider, ingestor=ingestor, notifier=session_notifier)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting MycoLens (device=%s, max_concurrent=%s, model=%s)",
        settings.device,
        settings.max_concurrent,
        settings.model_repo,
    )

    init_state(app, settings)

    logger.info("MycoLens ready; model loads on first request")
    yield

    logger.info("Shutting down MycoLens")
    app.state.inference_pool.shutdown()
    logger.info("MycoLens shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="MycoLens",
        description="Mushroom image classification with a lazily loaded on-device model",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("mycolens.main:app", host=settings.host, port=settings.port)
