"""Classification state machine.

One orchestrator drives one UI session: ingest an image, make sure the model
is loaded, run inference, shape the output and publish every state change to
subscribers.

Each request is tagged with a monotonically increasing id. When a newer
request starts, completions belonging to older ids are discarded, so a slow
earlier request can never overwrite the state of a later one. Superseded
work is not cancelled; its result is simply ignored when it arrives.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from mycolens.core.ingest import ImageIngestor, InputSource, first_file
from mycolens.core.notify import Notification, Severity
from mycolens.core.presenter import TOP_K, shape
from mycolens.core.state import RequestState
from mycolens.errors import (
    ClassificationError,
    InferenceError,
    InvalidInputError,
    MalformedResultError,
    ModelLoadError,
    describe,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from mycolens.core.ingest import ImageHandle, RawFile
    from mycolens.core.notify import Notifier
    from mycolens.core.provider import ModelProvider

logger = logging.getLogger(__name__)


class ClassificationOrchestrator:
    """Explicit finite-state machine for single-image classification requests."""

    def __init__(
        self,
        provider: ModelProvider,
        *,
        ingestor: ImageIngestor | None = None,
        notifier: Notifier | None = None,
        top_k: int = TOP_K,
    ) -> None:
        self._provider = provider
        self._ingestor = ingestor or ImageIngestor()
        self._notifier = notifier
        self._top_k = top_k
        self._state = RequestState.idle()
        self._current_id: int = 0
        self._listeners: list[Callable[[RequestState], None]] = []
        self._background: set[asyncio.Task[None]] = set()

    # -- Observation ----------------------------------------------------------

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def current_request_id(self) -> int:
        return self._current_id

    def subscribe(self, listener: Callable[[RequestState], None]) -> Callable[[], None]:
        """Register a listener for state changes. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -- Entry points ---------------------------------------------------------

    async def submit_selection(self, files: Sequence[RawFile]) -> None:
        """Handle a file-picker change event. Empty selections are ignored."""
        raw_file = first_file(files)
        if raw_file is not None:
            await self.submit(raw_file, InputSource.SELECTION)

    async def submit_drop(self, files: Sequence[RawFile]) -> None:
        """Handle a drop event. Drops without files are ignored."""
        raw_file = first_file(files)
        if raw_file is not None:
            await self.submit(raw_file, InputSource.DROP)

    async def submit(self, raw_file: RawFile, source: InputSource = InputSource.SELECTION) -> None:
        """Ingest a raw file and classify it, superseding any request in flight.

        Raises:
            InvalidInputError: If the file is not an image. No request is
                started and the current state is left untouched.
        """
        request_id = self._accept(raw_file, source)
        await self._ingest_and_run(request_id, raw_file, source)

    def submit_nowait(self, raw_file: RawFile, source: InputSource = InputSource.SELECTION) -> int:
        """Start a request in the background and return its id.

        Must be called from a running event loop. Validation happens before
        returning, so invalid input raises here exactly like ``submit``.
        """
        request_id = self._accept(raw_file, source)
        task = asyncio.get_running_loop().create_task(self._ingest_and_run(request_id, raw_file, source))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return request_id

    async def classify(self, image: ImageHandle) -> None:
        """Classify an already ingested image as a new request."""
        await self._run(self._begin(), image)

    def reset(self) -> None:
        """Return to IDLE, abandoning whatever request is in flight."""
        self._begin()
        self._transition(RequestState.idle())

    # -- Internal -------------------------------------------------------------

    def _accept(self, raw_file: RawFile, source: InputSource) -> int:
        try:
            self._ingestor.validate(raw_file, source)
        except InvalidInputError as exc:
            logger.info("Rejected %s from %s: %s", raw_file.filename, source, exc)
            self._notify(Notification("Invalid File", exc.message, Severity.ERROR))
            raise

        request_id = self._begin()
        self._transition(RequestState.ingesting(request_id))
        return request_id

    async def _ingest_and_run(self, request_id: int, raw_file: RawFile, source: InputSource) -> None:
        try:
            image = await self._ingestor.ingest(raw_file, source)
        except Exception as exc:
            if self._is_current(request_id):
                error = InvalidInputError(describe(exc))
                error.__cause__ = exc
                self._fail(request_id, None, error)
            return

        if self._is_current(request_id):
            await self._run(request_id, image)

    def _begin(self) -> int:
        self._current_id += 1
        return self._current_id

    def _is_current(self, request_id: int) -> bool:
        if request_id == self._current_id:
            return True
        logger.debug("Dropping stale completion for request %d (current %d)", request_id, self._current_id)
        return False

    async def _run(self, request_id: int, image: ImageHandle) -> None:
        first_load = not self._provider.is_loaded
        self._transition(RequestState.loading_model(request_id, image))
        self._notify(
            Notification(
                "Loading AI Model",
                "Downloading classification model (first time only)..."
                if first_load
                else "Preparing classification model...",
            )
        )
        try:
            model = await self._provider.get_model()
        except ModelLoadError as exc:
            if self._is_current(request_id):
                self._fail(request_id, image, exc)
            return
        if not self._is_current(request_id):
            return

        self._transition(RequestState.inferring(request_id, image))
        self._notify(Notification("Analyzing Image", "Classifying your mushroom image..."))
        try:
            raw = await model.classify(image, top_k=self._top_k)
        except InferenceError as exc:
            if self._is_current(request_id):
                self._fail(request_id, image, exc)
            return
        except Exception as exc:
            if self._is_current(request_id):
                logger.exception("Inference failed for request %d", request_id)
                error = InferenceError(describe(exc))
                error.__cause__ = exc
                self._fail(request_id, image, error)
            return
        if not self._is_current(request_id):
            return

        try:
            results = shape(raw, self._top_k)
        except MalformedResultError as exc:
            self._fail(request_id, image, exc)
            return
        except Exception as exc:
            logger.exception("Could not shape output of request %d", request_id)
            malformed = MalformedResultError(describe(exc))
            malformed.__cause__ = exc
            self._fail(request_id, image, malformed)
            return

        self._transition(RequestState.succeeded(request_id, image, tuple(results)))
        self._notify(Notification("Classification Complete!", "Results are ready", Severity.SUCCESS))

    def _fail(self, request_id: int, image: ImageHandle | None, error: ClassificationError) -> None:
        logger.warning("Request %d failed (%s): %s", request_id, error.kind, error.message)
        self._transition(RequestState.failed(request_id, image, error))
        self._notify(Notification("Classification Failed", error.message, Severity.ERROR))

    def _transition(self, state: RequestState) -> None:
        logger.debug("Request %d -> %s", state.request_id, state.status)
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener %r raised", listener)

    def _notify(self, notification: Notification) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(notification)
        except Exception:
            logger.exception("Notification delivery failed")
