"""Pydantic request/response schemas for the MycoLens API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ImageTag(BaseModel):
    """A single classification label with confidence score."""

    label: str
    score: float = Field(ge=0.0, le=1.0)
    display: str = Field(description="Score as a percentage with one decimal, e.g. '92.0%'")


class ClassifyImageResponse(BaseModel):
    """Response for the one-shot classification endpoint."""

    model: str
    results: list[ImageTag]


class StatusViewSchema(BaseModel):
    headline: str
    detail: str
    busy: bool


class ErrorInfo(BaseModel):
    kind: str
    message: str


class NotificationSchema(BaseModel):
    title: str
    description: str
    severity: str = Field(description="One of: info, success, error")


class SessionStateResponse(BaseModel):
    """Current state of the session's classification request."""

    request_id: int
    status: str = Field(
        description="One of: idle, ingesting, loading_model, inferring, succeeded, failed"
    )
    filename: str | None = None
    results: list[ImageTag] = Field(default_factory=list)
    error: ErrorInfo | None = None
    view: StatusViewSchema
    notifications: list[NotificationSchema] = Field(
        default_factory=list, description="Most recent session notifications, oldest first"
    )


class SubmitResponse(BaseModel):
    """Acknowledgement for a background session submission."""

    request_id: int
    status: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    model_loaded: bool
    model_loading: bool
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about the configured model."""

    name: str
    task: str = "image_classification"
    status: str = Field(description="Model status: 'active', 'loading', or 'available'")
    load_attempts: int


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    kind: str | None = None
