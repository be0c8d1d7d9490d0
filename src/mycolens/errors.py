"""Error taxonomy for the classification workflow."""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    INVALID_INPUT = "invalid_input"
    MODEL_LOAD = "model_load"
    INFERENCE = "inference"
    MALFORMED_RESULT = "malformed_result"


class ClassificationError(Exception):
    """Base class for all errors surfaced by the classification workflow.

    The message is shown to the user verbatim, so it should read as a
    sentence rather than a stack-trace fragment.
    """

    kind: ErrorKind

    @property
    def message(self) -> str:
        return str(self)


class InvalidInputError(ClassificationError):
    """The supplied file is not an acceptable image."""

    kind = ErrorKind.INVALID_INPUT


class ModelLoadError(ClassificationError):
    """Downloading or initializing the model failed."""

    kind = ErrorKind.MODEL_LOAD


class InferenceError(ClassificationError):
    """The model raised while classifying an image."""

    kind = ErrorKind.INFERENCE


class MalformedResultError(ClassificationError):
    """The model returned output that cannot be shaped into results."""

    kind = ErrorKind.MALFORMED_RESULT


def describe(exc: BaseException) -> str:
    """Return a user-facing message for an arbitrary exception."""
    text = str(exc)
    return text if text else type(exc).__name__
