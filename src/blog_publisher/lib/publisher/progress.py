"""Progress event fan-out.

Listeners run on a dedicated dispatch thread so a slow consumer never
blocks the pipeline. Events are dropped, not queued forever, once the
backlog is full.
"""

import queue
import threading
from collections.abc import Callable, Iterable

from loguru import logger

from blog_publisher.lib.publisher.types import ProgressPhase, PublishProgress

ProgressListener = Callable[[PublishProgress], None]

_STOP = object()


class ProgressEmitter:
    """Fire-and-forget progress sink shared by one run.

    Args:
        listeners: Callables receiving each :class:`PublishProgress`.
        max_pending: Backlog size before new events are dropped.
    """

    def __init__(self, listeners: Iterable[ProgressListener] = (), max_pending: int = 1000) -> None:
        self._listeners: list[ProgressListener] = list(listeners)
        self._queue: queue.Queue[object] = queue.Queue(maxsize=max_pending)
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._closed = False
        self.dropped = 0

    def emit(self, phase: ProgressPhase, done: int | None = None, total: int | None = None) -> None:
        """Queue an event for delivery. Never blocks."""
        if not self._listeners or self._closed:
            return
        self._ensure_started()
        try:
            self._queue.put_nowait(PublishProgress(phase=phase, done=done, total=total))
        except queue.Full:
            self.dropped += 1

    def close(self, timeout: float = 5.0) -> None:
        """Deliver queued events and stop the dispatch thread."""
        with self._lock:
            self._closed = True
            thread = self._thread
        if thread is None:
            return
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning("Progress backlog still full after {}s; leaving dispatch thread behind", timeout)
            return
        thread.join(timeout)

    def __enter__(self) -> "ProgressEmitter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _ensure_started(self) -> None:
        with self._lock:
            if self._thread is None:
                self._thread = threading.Thread(target=self._dispatch, name="progress-dispatch", daemon=True)
                self._thread.start()

    def _dispatch(self) -> None:
        while True:
            event = self._queue.get()
            if not isinstance(event, PublishProgress):
                return
            for listener in self._listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception("Progress listener failed for {}", event)


def percent_for(progress: PublishProgress) -> int | None:
    """Map a publish event to an overall percentage for display.

    Returns:
        0-100, or None for phases that do not move the bar.
    """
    done = progress.done or 0
    total = progress.total or 0
    phase = progress.phase
    if phase is ProgressPhase.START:
        return 0
    if phase is ProgressPhase.SOURCE_PROGRESS and total:
        return round(done / total * 30)
    if phase is ProgressPhase.LOCAL_BUILD_START:
        return 35
    if phase is ProgressPhase.LOCAL_BUILD_DONE:
        return 55
    if phase is ProgressPhase.PROD_UPLOAD_PROGRESS and total:
        return 55 + round(done / total * 35)
    if phase is ProgressPhase.PROD_UPLOAD_DONE:
        return 90
    if phase in (ProgressPhase.CLOUDFRONT_DONE, ProgressPhase.CODEBUILD_DONE):
        return 95
    if phase is ProgressPhase.DONE:
        return 100
    return None
