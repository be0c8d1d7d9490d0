"""Tests for the MycoLens HTTP API."""

from __future__ import annotations

import io
import os
from typing import TYPE_CHECKING
from unittest.mock import patch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import httpx
import pytest
from fastapi import FastAPI, status

from mycolens.config import get_settings
from mycolens.core.orchestrator import ClassificationOrchestrator
from mycolens.core.provider import ModelProvider
from mycolens.main import create_app, init_state
from mycolens.ml.inference import InferencePool
from mycolens.ml.model_manager import HubModelLoader

from fakes import CountingLoader, FakeClassifier, wait_until

JPEG = ("cap.jpg", b"\xff\xd8fake image data", "image/jpeg")
TEXT = ("notes.txt", b"not an image", "text/plain")


def _init_app_state(app: FastAPI, model: FakeClassifier | None = None, failures: int = 0, **env: str) -> None:
    """Manually initialize app state (ASGITransport does not trigger lifespan).

    The real hub loader is swapped for a counting loader around a fake model.
    """
    with patch.dict(os.environ, env):
        settings = get_settings()
    init_state(app, settings)
    provider = ModelProvider(CountingLoader(model or FakeClassifier(), failures=failures))  # type: ignore[arg-type]
    app.state.model_provider = provider
    app.state.session = ClassificationOrchestrator(
        provider, ingestor=app.state.ingestor, notifier=app.state.session_notifier
    )


async def _make_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    pool: InferencePool = app.state.inference_pool
    pool.shutdown()


@pytest.fixture()
def app() -> FastAPI:
    """Create a fresh app instance with default settings."""
    application = create_app()
    _init_app_state(application)
    return application


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client for testing the app."""
    async for ac in _make_client(app):
        yield ac


class TestAppWiring:
    def test_init_state_uses_hub_loader(self) -> None:
        application = create_app()
        init_state(application, get_settings())
        provider: ModelProvider = application.state.model_provider
        assert isinstance(provider._loader, HubModelLoader)
        assert provider.is_loaded is False
        application.state.inference_pool.shutdown()


class TestHealthEndpoint:
    async def test_health_returns_ok(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "ok"
        assert data["gpu"] is False
        assert data["model_loaded"] is False
        assert data["model_loading"] is False
        assert isinstance(data["concurrent_requests"], int)
        assert isinstance(data["queue_depth"], int)

    async def test_health_gpu_true_when_cuda(self) -> None:
        cuda_app = create_app()
        _init_app_state(cuda_app, MYCOLENS_DEVICE="cuda")
        async for ac in _make_client(cuda_app):
            response = await ac.get("/api/v1/health")
            assert response.status_code == status.HTTP_200_OK
            assert response.json()["gpu"] is True


class TestClassifyImageEndpoint:
    async def test_classify_image_returns_ranked_results(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/classify-image", files={"file": JPEG})

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["model"] == "Xenova/vit-base-patch16-224"
        assert data["results"] == [
            {"label": "Amanita", "score": 0.92, "display": "92.0%"},
            {"label": "Boletus", "score": 0.05, "display": "5.0%"},
        ]

    async def test_non_image_is_rejected(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/classify-image", files={"file": TEXT})
        assert response.status_code == status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
        assert response.json()["detail"] == "Please select an image file"

    async def test_model_load_failure_returns_503(self) -> None:
        app = create_app()
        _init_app_state(app, failures=1)
        async for ac in _make_client(app):
            response = await ac.post("/api/v1/classify-image", files={"file": JPEG})
            assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
            assert response.json()["detail"] == "network unreachable"

            retry = await ac.post("/api/v1/classify-image", files={"file": JPEG})
            assert retry.status_code == status.HTTP_200_OK

    async def test_malformed_output_returns_502(self) -> None:
        app = create_app()
        _init_app_state(app, model=FakeClassifier(default=[{"label": "Amanita", "score": 1.5}]))
        async for ac in _make_client(app):
            response = await ac.post("/api/v1/classify-image", files={"file": JPEG})
            assert response.status_code == status.HTTP_502_BAD_GATEWAY
            assert "outside [0, 1]" in response.json()["detail"]

    async def test_inference_failure_returns_502(self) -> None:
        app = create_app()
        _init_app_state(app, model=FakeClassifier(error=RuntimeError("session crashed")))
        async for ac in _make_client(app):
            response = await ac.post("/api/v1/classify-image", files={"file": JPEG})
            assert response.status_code == status.HTTP_502_BAD_GATEWAY
            assert response.json()["detail"] == "session crashed"


class TestSessionEndpoints:
    async def test_session_starts_idle(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/session")
        data = response.json()
        assert data["status"] == "idle"
        assert data["request_id"] == 0
        assert data["view"]["headline"] == "Drop your mushroom image here"
        assert data["notifications"] == []

    async def test_submit_then_poll_until_succeeded(self, client: httpx.AsyncClient, app: FastAPI) -> None:
        response = await client.post("/api/v1/session/image", files={"file": JPEG})
        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.json() == {"request_id": 1, "status": "ingesting"}

        session: ClassificationOrchestrator = app.state.session
        await wait_until(lambda: session.state.status.terminal)

        data = (await client.get("/api/v1/session")).json()
        assert data["status"] == "succeeded"
        assert data["filename"] == "cap.jpg"
        assert [r["display"] for r in data["results"]] == ["92.0%", "5.0%"]
        assert data["view"]["headline"] == "Classification Results"
        assert [(n["title"], n["severity"]) for n in data["notifications"]] == [
            ("Loading AI Model", "info"),
            ("Analyzing Image", "info"),
            ("Classification Complete!", "success"),
        ]

    async def test_invalid_drop_leaves_session_untouched(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/session/image?source=drop", files={"file": TEXT})
        assert response.status_code == status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
        assert response.json()["detail"] == "Please drop an image file"

        data = (await client.get("/api/v1/session")).json()
        assert data["status"] == "idle"
        assert data["notifications"] == [
            {"title": "Invalid File", "description": "Please drop an image file", "severity": "error"}
        ]

    async def test_failed_session_reports_error(self) -> None:
        app = create_app()
        _init_app_state(app, failures=1)
        async for ac in _make_client(app):
            await ac.post("/api/v1/session/image", files={"file": JPEG})
            session: ClassificationOrchestrator = app.state.session
            await wait_until(lambda: session.state.status.terminal)

            data = (await ac.get("/api/v1/session")).json()
            assert data["status"] == "failed"
            assert data["results"] == []
            assert data["error"] == {"kind": "model_load", "message": "network unreachable"}
            assert data["notifications"][-1] == {
                "title": "Classification Failed",
                "description": "network unreachable",
                "severity": "error",
            }

    async def test_one_shot_requests_stay_out_of_session_notifications(self, client: httpx.AsyncClient) -> None:
        await client.post("/api/v1/classify-image", files={"file": JPEG})

        data = (await client.get("/api/v1/session")).json()
        assert data["status"] == "idle"
        assert data["notifications"] == []

    async def test_reset_returns_to_idle(self, client: httpx.AsyncClient, app: FastAPI) -> None:
        await client.post("/api/v1/session/image", files={"file": JPEG})
        session: ClassificationOrchestrator = app.state.session
        await wait_until(lambda: session.state.status.terminal)

        response = await client.delete("/api/v1/session")
        assert response.json()["status"] == "idle"


class TestModelsEndpoint:
    async def test_model_available_before_first_request(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/models")
        assert response.status_code == status.HTTP_200_OK
        (model,) = response.json()["models"]
        assert model["name"] == "Xenova/vit-base-patch16-224"
        assert model["task"] == "image_classification"
        assert model["status"] == "available"
        assert model["load_attempts"] == 0

    async def test_model_active_after_classification(self, client: httpx.AsyncClient) -> None:
        await client.post("/api/v1/classify-image", files={"file": JPEG})
        (model,) = (await client.get("/api/v1/models")).json()["models"]
        assert model["status"] == "active"
        assert model["load_attempts"] == 1


class TestAuthentication:
    async def test_no_auth_required_by_default(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK

    async def test_auth_required_when_api_key_set(self) -> None:
        app = create_app()
        _init_app_state(app, MYCOLENS_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get("/api/v1/health")
            assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_auth_passes_with_correct_key(self) -> None:
        app = create_app()
        _init_app_state(app, MYCOLENS_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get(
                "/api/v1/health",
                headers={"Authorization": "Bearer test-secret-key"},
            )
            assert response.status_code == status.HTTP_200_OK

    async def test_auth_fails_with_wrong_key(self) -> None:
        app = create_app()
        _init_app_state(app, MYCOLENS_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.post(
                "/api/v1/classify-image",
                headers={"Authorization": "Bearer wrong-key"},
                files={"file": io.BytesIO(b"x")},
            )
            assert response.status_code == status.HTTP_401_UNAUTHORIZED
