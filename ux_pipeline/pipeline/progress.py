"""Best-effort progress channel. Observers can never block or fail a pipeline run."""

import logging
import queue
import threading
from typing import Callable, Iterable

from pydantic import BaseModel, Field

_log = logging.getLogger(__name__)

COMPLETE_STAGE = "complete"
DEFAULT_MAX_PENDING = 256


class PipelineProgress(BaseModel):
    """One progress event. image_id and run_id tell apart events from concurrent runs sharing observers."""

    model_config = {"frozen": True}

    image_id: str = ""
    run_id: str = ""
    stage: str
    percent: int = Field(ge=0, le=100)
    message: str
    budget_used: int = 0
    budget_remaining: int = 0


ProgressObserver = Callable[[PipelineProgress], None]

_STOP = object()


class ProgressReporter:
    """
    Per-run fan-out of PipelineProgress events to observers.

    publish() only enqueues; a daemon thread delivers to observers. A full queue drops the
    event and an observer that raises is logged and skipped. Percent is clamped so it never
    decreases within a run and only the "complete" event can reach 100.
    """

    def __init__(
        self,
        observers: Iterable[ProgressObserver] = (),
        max_pending: int = DEFAULT_MAX_PENDING,
    ) -> None:
        self._observers: list[ProgressObserver] = list(observers)
        self._queue: queue.Queue = queue.Queue(maxsize=max_pending)
        self._last_percent = 0
        self._closed = False
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def subscribe(self, observer: ProgressObserver) -> None:
        with self._lock:
            self._observers.append(observer)

    @property
    def last_percent(self) -> int:
        return self._last_percent

    def publish(self, progress: PipelineProgress) -> PipelineProgress:
        """Enqueue progress for delivery; return the event as delivered (after clamping)."""
        ceiling = 100 if progress.stage == COMPLETE_STAGE else 99
        percent = min(max(progress.percent, self._last_percent), ceiling)
        if percent != progress.percent:
            progress = progress.model_copy(update={"percent": percent})
        self._last_percent = percent
        if self._closed or not self._observers:
            return progress
        self._ensure_thread()
        try:
            self._queue.put_nowait(progress)
        except queue.Full:
            _log.debug("Progress queue full; dropped %s at %s%%", progress.stage, progress.percent)
        return progress

    def close(self, timeout: float = 2.0) -> None:
        """Deliver pending events (bounded by timeout) and stop the dispatcher."""
        if self._closed:
            return
        self._closed = True
        if self._thread is None:
            return
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            _log.debug("Progress queue still full on close; dispatcher left to exit on its own")
            return
        self._thread.join(timeout=timeout)

    def __enter__(self) -> "ProgressReporter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _ensure_thread(self) -> None:
        with self._lock:
            if self._thread is None:
                self._thread = threading.Thread(target=self._dispatch_loop, name="progress-dispatch", daemon=True)
                self._thread.start()

    def _dispatch_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            with self._lock:
                observers = list(self._observers)
            for observer in observers:
                try:
                    observer(item)
                except Exception:  # noqa: BLE001
                    _log.warning("Progress observer %r failed", observer, exc_info=True)


class LoggingProgressObserver:
    """Writes each progress event to the module logger."""

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.INFO) -> None:
        self._logger = logger or _log
        self._level = level

    def __call__(self, progress: PipelineProgress) -> None:
        self._logger.log(
            self._level,
            "[%3d%%] %s %s: %s (tokens used %s, remaining %s)",
            progress.percent,
            progress.image_id or "-",
            progress.stage,
            progress.message,
            progress.budget_used,
            progress.budget_remaining,
        )
