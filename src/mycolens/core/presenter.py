"""Result shaping and status display.

Inference output is validated here before anything reaches the user: a
single bad entry rejects the whole list, so a partially rendered ranking
is never shown.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from mycolens.core.state import RequestStatus
from mycolens.errors import MalformedResultError

if TYPE_CHECKING:
    from mycolens.core.state import RequestState

TOP_K = 5

SAFETY_NOTE = (
    "This AI model provides general image classification. "
    "For accurate mushroom identification, please consult with a mycology expert, "
    "especially before consuming any mushroom."
)


@dataclass(frozen=True)
class ClassificationResult:
    """A single ranked label with its raw confidence in [0, 1]."""

    label: str
    score: float

    @property
    def percentage(self) -> float:
        return self.score * 100

    @property
    def display_score(self) -> str:
        return f"{self.percentage:.1f}%"


@dataclass(frozen=True)
class StatusView:
    """Text shown for the current request state."""

    headline: str
    detail: str
    busy: bool = False


def shape(raw: Iterable[Mapping[str, object]], top_k: int = TOP_K) -> list[ClassificationResult]:
    """Validate raw ``{label, score}`` entries and return them as results.

    The input order is kept as-is; inference already ranks its output.
    Entries past ``top_k`` are dropped.

    Raises:
        MalformedResultError: If the output is not a sequence of entries, or
            if any entry has a missing label or a score that is not a number
            in [0, 1].
    """
    if not isinstance(raw, Iterable) or isinstance(raw, (str, bytes, Mapping)):
        raise MalformedResultError(f"Expected a list of results, got {type(raw).__name__}")
    results: list[ClassificationResult] = []
    for index, entry in enumerate(raw):
        result = _shape_entry(index, entry)
        if len(results) < top_k:
            results.append(result)
    return results


def _shape_entry(index: int, entry: Mapping[str, object]) -> ClassificationResult:
    try:
        label = entry["label"]
        raw_score = entry["score"]
    except (KeyError, TypeError):
        raise MalformedResultError(f"Result {index} is missing a label or score") from None

    if not isinstance(label, str) or not label:
        raise MalformedResultError(f"Result {index} has an empty or non-text label")
    # bool is an int subclass but never a confidence
    if isinstance(raw_score, bool):
        raise MalformedResultError(f"Result {index} ({label}) has a non-numeric score")
    try:
        score = float(raw_score)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        raise MalformedResultError(f"Result {index} ({label}) has a non-numeric score") from None
    if math.isnan(score) or not 0.0 <= score <= 1.0:
        raise MalformedResultError(f"Result {index} ({label}) has score {raw_score} outside [0, 1]")
    return ClassificationResult(label=label, score=score)


def status_view(state: RequestState) -> StatusView:
    """Map a request state to the headline and detail the UI displays."""
    status = state.status
    if status is RequestStatus.INGESTING:
        return StatusView("Reading Image...", "Preparing your image", busy=True)
    if status is RequestStatus.LOADING_MODEL:
        return StatusView("Loading AI Model...", "This may take a moment on first use", busy=True)
    if status is RequestStatus.INFERRING:
        return StatusView("Analyzing Image...", "Please wait", busy=True)
    if status is RequestStatus.SUCCEEDED:
        return StatusView("Classification Results", SAFETY_NOTE)
    if status is RequestStatus.FAILED:
        message = state.error.message if state.error is not None else "An error occurred during classification"
        return StatusView("Classification Failed", message)
    return StatusView("Drop your mushroom image here", "or click to browse")
