"""Lazy, single-flight access to the image classifier.

The first caller starts the acquisition as a shared task. Callers arriving
while it runs await the same task, so the model is downloaded and
initialized at most once. A failed attempt leaves the provider unloaded and
the next caller starts a fresh attempt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from mycolens.errors import ModelLoadError, describe

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from mycolens.ml.image_classifier import ImageClassifier

logger = logging.getLogger(__name__)


class ModelProvider:
    """Get-or-load access to one shared ImageClassifier."""

    def __init__(self, loader: Callable[[], Awaitable[ImageClassifier]]) -> None:
        self._loader = loader
        self._model: ImageClassifier | None = None
        self._pending: asyncio.Task[ImageClassifier] | None = None
        self._load_attempts: int = 0

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    @property
    def is_loading(self) -> bool:
        return self._pending is not None

    @property
    def load_attempts(self) -> int:
        """Number of acquisitions started so far, successful or not."""
        return self._load_attempts

    async def get_model(self) -> ImageClassifier:
        """Return the classifier, loading it first if needed.

        Raises:
            ModelLoadError: If the acquisition this call waited on failed.
        """
        if self._model is not None:
            return self._model

        if self._pending is None:
            self._load_attempts += 1
            logger.info("Acquiring classification model (attempt %d)", self._load_attempts)
            self._pending = asyncio.ensure_future(self._acquire())

        # Shield: a cancelled waiter must not cancel the load other callers share.
        return await asyncio.shield(self._pending)

    def reset(self) -> None:
        """Drop the cached classifier. An in-flight load is left to finish."""
        self._model = None

    async def _acquire(self) -> ImageClassifier:
        try:
            model = await self._loader()
        except Exception as exc:
            logger.warning("Model acquisition failed: %s", describe(exc))
            raise ModelLoadError(describe(exc)) from exc
        else:
            self._model = model
            logger.info("Classification model ready")
            return model
        finally:
            self._pending = None
