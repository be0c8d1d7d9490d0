"""Image classification model: protocol and ONNX implementation.

The bundled model is a ViT exported to ONNX (224x224 input, softmax over
ImageNet labels). Output is returned as plain ``{label, score}`` mappings,
already sorted by descending score, and validated later by the presenter.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import numpy as np

from mycolens.ml.preprocessing import ImagePreprocessor

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from mycolens.core.ingest import ImageHandle
    from mycolens.ml.inference import InferencePool

logger = logging.getLogger(__name__)


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    async def classify(self, image: ImageHandle, *, top_k: int) -> Sequence[Mapping[str, object]]:
        """Classify an image and return ranked labels.

        Args:
            image: Ingested image.
            top_k: Maximum number of labels to return.

        Returns:
            ``{"label": str, "score": float}`` entries sorted by score (descending).
        """
        ...


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    """Numerically stable softmax over the last axis."""
    shifted = logits - np.max(logits, axis=-1, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=-1, keepdims=True)


def top_k_predictions(probs: NDArray[np.float32], labels: Mapping[int, str], k: int) -> list[dict[str, object]]:
    """Return the k most likely labels as ``{label, score}`` dicts, highest first."""
    k = min(k, probs.shape[-1])
    if k <= 0:
        return []
    # argpartition is O(n); only the k winners get sorted
    candidates = np.argpartition(-probs, k - 1)[:k]
    ranked = candidates[np.argsort(-probs[candidates], kind="stable")]
    return [{"label": labels.get(int(i), f"LABEL_{int(i)}"), "score": float(probs[i])} for i in ranked]


class OnnxImageClassifier:
    """ImageClassifier backed by an ONNX Runtime session."""

    def __init__(
        self,
        name: str,
        session: InferenceSession,
        labels: Mapping[int, str],
        pool: InferencePool,
        preprocessor: ImagePreprocessor | None = None,
    ) -> None:
        self._name = name
        self._session = session
        self._labels = dict(labels)
        self._pool = pool
        self._preprocessor = preprocessor or ImagePreprocessor()
        self._input_name: str = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._name

    @property
    def num_labels(self) -> int:
        return len(self._labels)

    async def classify(self, image: ImageHandle, *, top_k: int) -> list[dict[str, object]]:
        return await self._pool.run(self._predict, image.data, top_k)

    def _predict(self, image_bytes: bytes, top_k: int) -> list[dict[str, object]]:
        pixels = self._preprocessor.decode_image(image_bytes)
        tensor = self._preprocessor.preprocess_for_classification(pixels)
        (logits,) = self._session.run(None, {self._input_name: tensor})[:1]
        probs = softmax(np.asarray(logits, dtype=np.float32)[0])
        return top_k_predictions(probs, self._labels, top_k)
