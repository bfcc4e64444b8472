"""Background worker for best-effort side effects.

Notifications, locker counters, live-channel writes and access-log
appends are handed to a ``SideEffectQueue`` so the request that caused
them never waits on (or fails because of) them.

Usage:
    from tasks import EffectsDep

    def handler(..., effects: EffectsDep):
        effects.submit("notify_requester", notify_request_approved, request_id)

The queue is started and stopped by the FastAPI lifespan in ``main.py``.
With ``eager=True`` jobs run inline in the caller's thread, still with
retries and error isolation.
"""

import logging
import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Annotated, Any

from fastapi import Depends

from config import settings

logger = logging.getLogger(__name__)


@dataclass
class Job:
    name: str
    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)


class SideEffectQueue:
    def __init__(self, max_attempts: int = 3, retry_delay: float = 0.5, eager: bool = False) -> None:
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.eager = eager
        self._queue: queue.Queue[Job | None] = queue.Queue()
        self._thread: threading.Thread | None = None

    # ── Public API ───────────────────────────────────────────────────

    def submit(self, name: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        job = Job(name=name, func=func, args=args, kwargs=kwargs)
        if self.eager:
            self._run(job)
            return
        if not self.running:
            self.start()
        self._queue.put(job)
        logger.debug("Side effect queued: %s", name)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.eager or self.running:
            return
        self._thread = threading.Thread(target=self._worker, name="side-effects", daemon=True)
        self._thread.start()
        logger.info("Side effect worker started")

    def join(self) -> None:
        """Block until every queued job has been processed."""
        self._queue.join()

    def stop(self) -> None:
        """Drain pending jobs, then stop the worker."""
        thread = self._thread
        if thread is None or not thread.is_alive():
            return
        self._queue.put(None)
        self._queue.join()
        thread.join()
        self._thread = None
        logger.info("Side effect worker stopped")

    # ── Worker ───────────────────────────────────────────────────────

    def _worker(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is None:
                    return
                self._run(job)
            finally:
                self._queue.task_done()

    def _run(self, job: Job) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                job.func(*job.args, **job.kwargs)
                return True
            except Exception:
                if attempt == self.max_attempts:
                    logger.exception("Side effect %s gave up after %d attempts", job.name, attempt)
                    return False
                logger.warning("Side effect %s failed (attempt %d), retrying", job.name, attempt)
                if self.retry_delay:
                    time.sleep(self.retry_delay * attempt)
        return False


side_effects = SideEffectQueue(
    max_attempts=settings.side_effect_max_attempts,
    retry_delay=settings.side_effect_retry_delay,
    eager=settings.side_effects_eager,
)


def get_side_effects() -> SideEffectQueue:
    return side_effects


EffectsDep = Annotated[SideEffectQueue, Depends(get_side_effects)]
