"""Inference concurrency layer.

Architecture:
    orchestrator -> InferencePool.run -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> ONNX session

A classification waits at most ``timeout`` seconds for a free slot. Past
that the request fails with an ``InferenceError`` instead of queueing
forever behind a stuck session.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import TYPE_CHECKING, TypeVar

from mycolens.errors import InferenceError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from mycolens.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

QUEUE_TIMEOUT_SECONDS: float = 30.0
QUEUE_FULL_MESSAGE = "Inference queue is full, try again shortly"


class InferencePool:
    """Bounded thread pool shared by every classifier of the process."""

    def __init__(self, settings: Settings, timeout: float = QUEUE_TIMEOUT_SECONDS) -> None:
        self._slots = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="mycolens-inference",
        )
        self._timeout = timeout
        self._lock = threading.Lock()
        self._running = 0
        self._waiting = 0

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run ``func(*args)`` on a worker thread once a slot is free.

        Raises:
            InferenceError: If no slot frees up within the queue timeout.
        """
        with self._counting("_waiting"):
            try:
                await asyncio.wait_for(self._slots.acquire(), timeout=self._timeout)
            except TimeoutError:
                logger.warning("No inference slot after %.1fs (%d running)", self._timeout, self.active_count)
                raise InferenceError(QUEUE_FULL_MESSAGE) from None

        try:
            with self._counting("_running"):
                return await asyncio.get_running_loop().run_in_executor(self._executor, func, *args)
        finally:
            self._slots.release()

    @contextmanager
    def _counting(self, attribute: str) -> Iterator[None]:
        with self._lock:
            setattr(self, attribute, getattr(self, attribute) + 1)
        try:
            yield
        finally:
            with self._lock:
                setattr(self, attribute, getattr(self, attribute) - 1)

    @property
    def active_count(self) -> int:
        """Classifications currently running on a worker thread."""
        with self._lock:
            return self._running

    @property
    def queue_depth(self) -> int:
        """Classifications waiting for a slot."""
        with self._lock:
            return self._waiting

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
