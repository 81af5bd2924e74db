"""
Task scheduling for the offline layer.

Delayed retries and periodic work (queue drain, purge, status refresh)
all go through one abstraction: a TaskScheduler that can run a callable
once after a delay or repeatedly at an interval, returning a cancellable
TaskHandle.

Implementations:
- BackgroundTaskScheduler: APScheduler BackgroundScheduler with a single
  worker thread, so tasks never run in parallel with each other
- ManualTaskScheduler: simulated clock for tests; nothing runs until
  advance() or run_pending() is called

Every task is wrapped so an exception is logged and never escapes into
the scheduler loop.

Example:
    scheduler = BackgroundTaskScheduler()
    scheduler.start()
    scheduler.call_every(30, queue.drain, name='sync-drain')
    handle = scheduler.call_later(5, lambda: queue.retry_entry(entry_id))
    handle.cancel()
"""

import heapq
import itertools
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobEvent
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler


logger = logging.getLogger(__name__)


def run_safely(name: str, func: Callable[[], Any]) -> None:
    """Run a task body, logging instead of raising on failure."""
    try:
        func()
    except Exception as e:
        logger.error(f"Task '{name}' failed: {e}", exc_info=True)


class TaskHandle:
    """
    Handle for a scheduled task.

    Attributes:
        name: Task name used in logs
        cancelled: True once cancel() has been called
    """

    def __init__(self, name: str, on_cancel: Optional[Callable[[], None]] = None):
        self.name = name
        self.cancelled = False
        self._on_cancel = on_cancel

    def cancel(self) -> None:
        """Stop the task from running again. Safe to call twice."""
        if self.cancelled:
            return
        self.cancelled = True
        if self._on_cancel:
            self._on_cancel()

    def __repr__(self) -> str:
        return f"<TaskHandle name={self.name} cancelled={self.cancelled}>"


class TaskScheduler:
    """Interface shared by the real and simulated schedulers."""

    def now(self) -> float:
        """Current time in epoch seconds."""
        raise NotImplementedError

    def call_later(self, delay: float, func: Callable[[], Any], name: str = 'task') -> TaskHandle:
        """Run func once after delay seconds."""
        raise NotImplementedError

    def call_every(self, interval: float, func: Callable[[], Any], name: str = 'periodic') -> TaskHandle:
        """Run func every interval seconds, first run after one interval."""
        raise NotImplementedError

    def start(self) -> None:
        pass

    def shutdown(self) -> None:
        pass


class _ManualTask:
    __slots__ = ('due', 'seq', 'func', 'interval', 'handle')

    def __init__(self, due, seq, func, interval, handle):
        self.due = due
        self.seq = seq
        self.func = func
        self.interval = interval
        self.handle = handle

    def __lt__(self, other):
        return (self.due, self.seq) < (other.due, other.seq)


class ManualTaskScheduler(TaskScheduler):
    """
    Deterministic scheduler driven by a simulated clock.

    Tasks run on the caller's thread inside advance()/run_pending(), in
    due-time order (ties broken by scheduling order). Tasks scheduled by
    a running task are picked up in the same advance() call when due.

    Example:
        scheduler = ManualTaskScheduler(start_time=1_700_000_000)
        scheduler.call_later(5, retry)
        scheduler.advance(5)   # retry runs here
    """

    def __init__(self, start_time: float = 1_700_000_000.0):
        self._now = float(start_time)
        self._queue: List[_ManualTask] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def _schedule(self, delay: float, func: Callable[[], Any], name: str,
                  interval: Optional[float]) -> TaskHandle:
        handle = TaskHandle(name)
        task = _ManualTask(self._now + max(0.0, delay), next(self._seq), func, interval, handle)
        heapq.heappush(self._queue, task)
        return handle

    def call_later(self, delay: float, func: Callable[[], Any], name: str = 'task') -> TaskHandle:
        return self._schedule(delay, func, name, None)

    def call_every(self, interval: float, func: Callable[[], Any], name: str = 'periodic') -> TaskHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        return self._schedule(interval, func, name, interval)

    def advance(self, seconds: float) -> int:
        """
        Move the clock forward, running every task that falls due.

        Returns:
            Number of task executions
        """
        target = self._now + seconds
        executed = 0

        while self._queue and self._queue[0].due <= target:
            task = heapq.heappop(self._queue)
            if task.handle.cancelled:
                continue

            self._now = max(self._now, task.due)
            run_safely(task.handle.name, task.func)
            executed += 1

            if task.interval is not None and not task.handle.cancelled:
                task.due += task.interval
                task.seq = next(self._seq)
                heapq.heappush(self._queue, task)

        self._now = max(self._now, target)
        return executed

    def run_pending(self) -> int:
        """Run tasks that are already due without moving the clock."""
        return self.advance(0)

    @property
    def pending_count(self) -> int:
        """Number of scheduled, not cancelled tasks."""
        return sum(1 for t in self._queue if not t.handle.cancelled)

    def shutdown(self) -> None:
        for task in self._queue:
            task.handle.cancelled = True
        self._queue.clear()


class BackgroundTaskScheduler(TaskScheduler):
    """
    Real-time scheduler on top of APScheduler.

    Uses BackgroundScheduler with an in-memory job store and a single
    worker thread. Periodic jobs coalesce missed runs and never overlap
    with themselves.
    """

    def __init__(self, max_workers: int = 1):
        executors = {
            'default': ThreadPoolExecutor(max_workers=max_workers)
        }
        job_defaults = {
            'coalesce': True,  # Combine missed runs into one execution
            'max_instances': 1,  # One instance of each job at a time
            'misfire_grace_time': 60,
        }
        self._scheduler = BackgroundScheduler(
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC',
        )
        self._scheduler.add_listener(_on_job_executed, EVENT_JOB_EXECUTED)
        self._scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)

    def now(self) -> float:
        return time.time()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def _remover(self, job) -> Callable[[], None]:
        def _remove():
            try:
                job.remove()
            except JobLookupError:
                # One-shot job already ran
                pass
        return _remove

    def call_later(self, delay: float, func: Callable[[], Any], name: str = 'task') -> TaskHandle:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=max(0.0, delay))
        job = self._scheduler.add_job(
            run_safely,
            trigger='date',
            run_date=run_date,
            args=[name, func],
            name=name,
            misfire_grace_time=None,
        )
        return TaskHandle(name, on_cancel=self._remover(job))

    def call_every(self, interval: float, func: Callable[[], Any], name: str = 'periodic') -> TaskHandle:
        job = self._scheduler.add_job(
            run_safely,
            trigger='interval',
            seconds=interval,
            args=[name, func],
            id=name,
            name=name,
            replace_existing=True,
        )
        logger.info(f"Added periodic task '{name}' every {interval}s")
        return TaskHandle(name, on_cancel=self._remover(job))

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Task scheduler started")

    def shutdown(self, wait: bool = False) -> None:
        if self._scheduler.running:
            logger.info("Shutting down task scheduler...")
            self._scheduler.shutdown(wait=wait)


def _on_job_executed(event: JobEvent) -> None:
    logger.debug(f"Job '{event.job_id}' executed successfully")


def _on_job_error(event: JobEvent) -> None:
    logger.error(
        f"Job '{event.job_id}' failed with exception: {event.exception}",
        exc_info=event.traceback,
    )
