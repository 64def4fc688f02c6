"""Background work: fire-and-forget tasks and the long-running job registry.

BackgroundTasks
    Runs reindex / auto-link / cluster work off the caller's thread. A failed
    task is logged and dropped: it is never re-raised and never retried. The
    handle returned by ``submit`` yields a TaskResult for callers (and tests)
    that do want to wait.

JobRegistry
    Owns long-running jobs (report streams) that must outlive the caller that
    started them. State is guarded by one lock. A job is registered under an
    id until it finishes, receives a cancellation token, and publishes
    JobEvents to any number of subscribers. The entry is removed when the job
    completes, whatever the outcome.

Every task opens its own database connection; connections are never shared
between threads.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from koso.errors import JobCancelled

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Fire-and-forget tasks
# ------------------------------------------------------------------


@dataclass
class TaskResult:
    name: str
    ok: bool
    value: Any = None
    error: str | None = None


class TaskHandle:
    def __init__(self, name: str, future: Future[TaskResult]) -> None:
        self.name = name
        self._future = future

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None) -> TaskResult:
        return self._future.result(timeout)


class BackgroundTasks:
    """Thread-pool runner whose tasks never raise into the caller."""

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="koso-task")

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> TaskHandle:
        future = self._executor.submit(_run_task, name, fn, args, kwargs)
        return TaskHandle(name, future)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> BackgroundTasks:
        return self

    def __exit__(self, *_: object) -> None:
        self.shutdown(wait=True)


def _run_task(name: str, fn: Callable[..., Any], args: tuple, kwargs: dict) -> TaskResult:
    try:
        value = fn(*args, **kwargs)
    except Exception as exc:
        logger.warning("Background task %s failed: %s", name, exc, exc_info=True)
        return TaskResult(name=name, ok=False, error=str(exc))
    return TaskResult(name=name, ok=True, value=value)


# ------------------------------------------------------------------
# Job registry
# ------------------------------------------------------------------

# JobEvent kinds
DELTA = "delta"
DONE = "done"
ERROR = "error"
CANCELLED = "cancelled"


@dataclass
class JobEvent:
    job_id: str
    kind: str
    data: Any = None


JobTarget = Callable[[threading.Event, Callable[[Any], None]], Any]
Subscriber = Callable[[JobEvent], None]


class JobHandle:
    """A running job: its cancellation token and its final event."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        self.cancel_token = threading.Event()
        self._finished = threading.Event()
        self._final: JobEvent | None = None

    def cancel(self) -> None:
        self.cancel_token.set()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def wait(self, timeout: float | None = None) -> JobEvent | None:
        """Block until the job ends; return its final event (None on timeout)."""
        self._finished.wait(timeout)
        return self._final

    def _finish(self, event: JobEvent) -> None:
        self._final = event
        self._finished.set()


class JobRegistry:
    """Explicit registry of running jobs, keyed by job id.

    A job target is called as ``target(cancel_token, emit)``; each ``emit(data)``
    reaches subscribers as a ``delta`` event. The target's return value becomes
    the ``done`` event's data. Raising JobCancelled ends the job with a
    ``cancelled`` event; any other exception ends it with ``error``.
    """

    def __init__(self, max_workers: int = 2) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, JobHandle] = {}
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="koso-job")

    def start(
        self, job_id: str, target: JobTarget, subscriber: Subscriber | None = None
    ) -> JobHandle:
        """Start *target* under *job_id*, or return the job already running there.

        *subscriber* is attached before the job can emit anything.
        """
        with self._lock:
            existing = self._jobs.get(job_id)
            if existing is not None:
                if subscriber is not None:
                    self._subscribers[job_id].append(subscriber)
                return existing
            handle = JobHandle(job_id)
            self._jobs[job_id] = handle
            self._subscribers[job_id] = [subscriber] if subscriber is not None else []
        self._executor.submit(self._run, handle, target)
        return handle

    def get(self, job_id: str) -> JobHandle | None:
        with self._lock:
            return self._jobs.get(job_id)

    def subscribe(self, job_id: str, callback: Subscriber) -> bool:
        """Attach *callback* to a running job. Returns False if no such job."""
        with self._lock:
            if job_id not in self._jobs:
                return False
            self._subscribers[job_id].append(callback)
            return True

    def unsubscribe(self, job_id: str, callback: Subscriber) -> None:
        with self._lock:
            subscribers = self._subscribers.get(job_id)
            if subscribers and callback in subscribers:
                subscribers.remove(callback)

    def cancel(self, job_id: str) -> bool:
        """Set the job's cancellation token. Returns False if no such job."""
        with self._lock:
            handle = self._jobs.get(job_id)
        if handle is None:
            return False
        handle.cancel()
        return True

    def running(self) -> list[str]:
        with self._lock:
            return list(self._jobs)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            handles = list(self._jobs.values())
        for handle in handles:
            handle.cancel()
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(self, handle: JobHandle, target: JobTarget) -> None:
        job_id = handle.job_id

        def emit(data: Any) -> None:
            self._publish(job_id, JobEvent(job_id, DELTA, data))

        try:
            value = target(handle.cancel_token, emit)
            final = JobEvent(job_id, DONE, value)
        except JobCancelled:
            logger.info("Job %s cancelled", job_id)
            final = JobEvent(job_id, CANCELLED)
        except Exception as exc:
            logger.exception("Job %s failed", job_id)
            final = JobEvent(job_id, ERROR, str(exc))

        with self._lock:
            self._jobs.pop(job_id, None)
            subscribers = self._subscribers.pop(job_id, [])
        for callback in subscribers:
            _deliver(callback, final)
        handle._finish(final)

    def _publish(self, job_id: str, event: JobEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers.get(job_id, []))
        for callback in subscribers:
            _deliver(callback, event)


def _deliver(callback: Subscriber, event: JobEvent) -> None:
    try:
        callback(event)
    except Exception:
        logger.exception("Subscriber for job %s raised", event.job_id)
