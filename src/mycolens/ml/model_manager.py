"""Model manager: download and initialize the ONNX image classifier.

Handles downloading the model and its label config from HuggingFace and
creating the ONNX InferenceSession with device-specific execution providers.
Caching and single-flight loading live in ``mycolens.core.provider``; this
module only knows how to perform one acquisition.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download
from onnxruntime import ExecutionMode, GraphOptimizationLevel, InferenceSession, SessionOptions

from mycolens.ml.image_classifier import OnnxImageClassifier
from mycolens.ml.preprocessing import ImagePreprocessor

if TYPE_CHECKING:
    from mycolens.config import Settings
    from mycolens.ml.inference import InferencePool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelFiles:
    """Local paths of a downloaded model."""

    model_path: Path
    config_path: Path


class HubModelLoader:
    """Downloads the classifier from HuggingFace and builds an OnnxImageClassifier."""

    def __init__(self, settings: Settings, pool: InferencePool) -> None:
        self._settings = settings
        self._pool = pool
        self._models_dir = Path(settings.models_dir)
        self._files: ModelFiles | None = None

        self._providers = execution_providers(settings)
        self._session_options = session_options(settings)

    @property
    def model_name(self) -> str:
        return self._settings.model_repo

    async def __call__(self) -> OnnxImageClassifier:
        """Perform one acquisition off the event loop."""
        return await asyncio.to_thread(self.load)

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self) -> ModelFiles:
        """Download the model and its config if not already present locally."""
        if self._files is not None and self._files.model_path.exists() and self._files.config_path.exists():
            return self._files

        self._models_dir.mkdir(parents=True, exist_ok=True)
        model_path = Path(
            hf_hub_download(
                repo_id=self._settings.model_repo,
                filename=self._settings.model_filename,
                subfolder=self._settings.model_subfolder,
                local_dir=str(self._models_dir),
            )
        )
        config_path = Path(
            hf_hub_download(
                repo_id=self._settings.model_repo,
                filename=self._settings.model_config_filename,
                local_dir=str(self._models_dir),
            )
        )
        self._files = ModelFiles(model_path=model_path, config_path=config_path)
        logger.info("Downloaded %s to %s", self._settings.model_repo, model_path)
        return self._files

    def load(self) -> OnnxImageClassifier:
        """Download if needed, then create the session and the classifier."""
        files = self.ensure_downloaded()
        labels = load_labels(files.config_path)
        session = InferenceSession(
            str(files.model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )
        logger.info("Loaded session for %s (%d labels)", self._settings.model_repo, len(labels))
        return OnnxImageClassifier(
            name=self._settings.model_repo,
            session=session,
            labels=labels,
            pool=self._pool,
            preprocessor=ImagePreprocessor(max_image_pixels=self._settings.max_image_pixels),
        )


def load_labels(config_path: Path) -> dict[int, str]:
    """Read the ``id2label`` mapping from a transformers-style config.json.

    Raises:
        ValueError: If the config has no usable ``id2label`` table.
    """
    with config_path.open(encoding="utf-8") as fh:
        config = json.load(fh)
    id2label = config.get("id2label")
    if not isinstance(id2label, dict) or not id2label:
        raise ValueError(f"{config_path.name} has no id2label mapping")
    return {int(index): str(label) for index, label in id2label.items()}


def execution_providers(settings: Settings) -> list[str | tuple[str, dict[str, object]]]:
    """ONNX Runtime providers for the configured device, CPU always last."""
    if settings.device == "cuda":
        cuda_options: dict[str, object] = {
            "device_id": 0,
            "gpu_mem_limit": settings.gpu_mem_limit,
            "arena_extend_strategy": "kSameAsRequested",
        }
        return [("CUDAExecutionProvider", cuda_options), "CPUExecutionProvider"]
    if settings.device == "openvino":
        return [("OpenVINOExecutionProvider", {"device_type": "CPU"}), "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def session_options(settings: Settings) -> SessionOptions:
    """Session options for a single ViT session shared by all requests."""
    options = SessionOptions()
    options.intra_op_num_threads = settings.intra_op_threads
    options.inter_op_num_threads = settings.inter_op_threads
    options.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    if settings.device == "openvino":
        # OpenVINO optimizes the graph itself
        options.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return options
