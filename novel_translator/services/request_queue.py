"""
Rate-limited, retrying task queue for model completions.

Enforces two limits at once:
- At most ``max_concurrency`` calls in flight
- At most ``max_calls_per_sec`` call starts per refill window; the token
  bucket is refilled wholesale on a fixed timer (not a sliding window), so
  a burst can follow each refill

Failed calls are retried with exponential backoff plus jitter. A retried
task goes to the back of the pending queue so other work is serviced
first. Every task settles exactly once with a TaskResult; errors never
propagate through the returned future.

Runs on a single asyncio event loop. Admission happens in explicit drain
passes scheduled with ``call_soon`` so that starting new tasks and
processing completions never interleave within one pass.
"""
from __future__ import annotations

import asyncio
import logging
import random
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Set

from ..models.prompt import Prompt
from .progress import ErrorCounter, ProgressMetrics

logger = logging.getLogger(__name__)

Runner = Callable[[Any], Awaitable[Any]]
SettleCallback = Callable[["TaskResult"], None]


@dataclass
class RequestQueueConfig:
    """Configuration for the request queue."""

    # Admission limits
    max_concurrency: int = 10
    max_calls_per_sec: int = 10
    refill_interval: float = 1.0  # Seconds between full token refills

    # Retry policy (attempts count every failure kind)
    max_retries: int = 3
    base_retry_delay: float = 1.0  # Seconds, doubled per attempt
    retry_jitter: float = 0.1  # Uniform jitter in [0, retry_jitter) seconds


class TaskState(str, Enum):
    """Lifecycle state of a queued task."""
    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    RETRYING = "retrying"
    DONE = "done"
    FAILED = "failed"


@dataclass
class TaskResult:
    """Terminal outcome of a task."""

    ok: bool
    payload: Any
    task_id: int
    attempts: int
    output: Any = None
    error: Optional[BaseException] = None


@dataclass
class Task:
    """A unit of work tracked by the queue."""

    task_id: int
    payload: Any
    future: "asyncio.Future[TaskResult]"
    on_settle: Optional[SettleCallback] = None
    attempts: int = 0
    state: TaskState = TaskState.QUEUED


class RequestQueue:
    """
    Bounded-concurrency, rate-limited, retrying scheduler.

    Single use: create one per pipeline stage and call dispose() when the
    stage is finished.

    Usage:
        queue = RequestQueue.from_client(client, label="Translation")
        result = await queue.enqueue(Prompt(system, user))
        if result.ok:
            print(result.output)
        queue.dispose()
    """

    def __init__(
        self,
        runner: Runner,
        config: Optional[RequestQueueConfig] = None,
        metrics: Optional[ProgressMetrics] = None,
        error_counter: Optional[ErrorCounter] = None,
        rng: Optional[random.Random] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        """
        Initialize queue.

        Args:
            runner: Coroutine function executing one payload; any exception
                counts as a failed attempt
            config: Queue limits and retry policy
            metrics: Progress metrics updated on enqueue and settle
            error_counter: Session-wide counter incremented on terminal failure
            rng: Random source for retry jitter
            sleep: Delay coroutine driving the refill timer (asyncio.sleep by default)
        """
        self.config = config or RequestQueueConfig()
        self.metrics = metrics or ProgressMetrics()
        self.error_counter = error_counter
        self._runner = runner
        self._rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep

        self._pending: Deque[Task] = deque()
        self._active = 0
        self._tokens = self.config.max_calls_per_sec
        self._next_task_id = 1
        self._drain_scheduled = False

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._refill_task: Optional[asyncio.Task] = None
        self._running: Set[asyncio.Task] = set()

        self.in_use = True

        # Stats for monitoring and tests
        self.window = 0
        self.starts_per_window: Dict[int, int] = {}
        self.peak_in_flight = 0
        self.total_failures = 0

    @classmethod
    def from_client(
        cls,
        client: Any,
        label: str = "",
        config: Optional[RequestQueueConfig] = None,
        error_counter: Optional[ErrorCounter] = None,
    ) -> RequestQueue:
        """Build a queue whose payloads are Prompts sent to ``client.completion``."""

        async def run(prompt: Prompt) -> str:
            return await client.completion(prompt.system, prompt.user)

        metrics = ProgressMetrics(label=label)
        metrics.set_initial_tasks(0)
        return cls(run, config=config, metrics=metrics, error_counter=error_counter)

    @property
    def in_flight(self) -> int:
        return self._active

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def tokens(self) -> int:
        return self._tokens

    def enqueue(self, payload: Any, on_settle: Optional[SettleCallback] = None) -> "asyncio.Future[TaskResult]":
        """
        Enqueue one payload.

        Must be called from within a running event loop.

        Args:
            payload: Opaque payload handed to the runner
            on_settle: Called once with the TaskResult on success or final failure

        Returns:
            Future resolving to the TaskResult (never raises)

        Raises:
            RuntimeError: If the queue has been disposed
        """
        if not self.in_use:
            raise RuntimeError("RequestQueue has been disposed")
        self._ensure_started()

        task = Task(
            task_id=self._next_task_id,
            payload=payload,
            future=self._loop.create_future(),
            on_settle=on_settle,
        )
        self._next_task_id += 1

        self._pending.append(task)
        self.metrics.add_tasks(1)
        self._drain()
        return task.future

    def enqueue_all(
        self, payloads: Iterable[Any], on_settle: Optional[SettleCallback] = None
    ) -> "asyncio.Future[List[TaskResult]]":
        """Enqueue several payloads; results come back in input order."""
        futures = [self.enqueue(p, on_settle) for p in payloads]
        return asyncio.gather(*futures)

    def dispose(self) -> None:
        """Stop the refill timer and finalize progress (idempotent)."""
        if not self.in_use:
            return
        self.in_use = False
        if self._refill_task is not None:
            self._refill_task.cancel()
            self._refill_task = None
        self.metrics.finalize()

    def get_stats(self) -> dict:
        """Current queue state and totals."""
        return {
            "pending": len(self._pending),
            "in_flight": self._active,
            "tokens": self._tokens,
            "window": self.window,
            "peak_in_flight": self.peak_in_flight,
            "total_failures": self.total_failures,
            "completed": self.metrics.completed,
            "total": self.metrics.total,
        }

    def _ensure_started(self) -> None:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        if self._refill_task is None:
            self._refill_task = self._loop.create_task(self._refill_loop())

    async def _refill_loop(self) -> None:
        while True:
            await self._sleep(self.config.refill_interval)
            self._tokens = self.config.max_calls_per_sec
            self.window += 1
            self._drain()

    def _drain(self) -> None:
        """Schedule one admission pass (coalesced)."""
        if self._drain_scheduled or self._loop is None:
            return
        self._drain_scheduled = True
        self._loop.call_soon(self._drain_now)

    def _drain_now(self) -> None:
        self._drain_scheduled = False
        while (
            self._active < self.config.max_concurrency
            and self._tokens > 0
            and self._pending
        ):
            task = self._pending.popleft()
            self._tokens -= 1
            self._active += 1
            self.peak_in_flight = max(self.peak_in_flight, self._active)
            self.starts_per_window[self.window] = self.starts_per_window.get(self.window, 0) + 1
            task.state = TaskState.IN_FLIGHT

            running = self._loop.create_task(self._execute(task))
            self._running.add(running)
            running.add_done_callback(self._running.discard)

    async def _execute(self, task: Task) -> None:
        task.attempts += 1
        try:
            output = await self._runner(task.payload)
        except Exception as err:
            if task.attempts < self.config.max_retries:
                delay = self._retry_delay(task.attempts)
                task.state = TaskState.RETRYING
                logger.warning(
                    "Task %d failed (attempt %d/%d): %s. Retrying in %.2fs",
                    task.task_id, task.attempts, self.config.max_retries, err, delay,
                )
                self._loop.call_later(delay, self._requeue, task)
            else:
                logger.error(
                    "Task %d failed after %d attempts: %s", task.task_id, task.attempts, err
                )
                self._settle(task, TaskResult(
                    ok=False,
                    payload=task.payload,
                    task_id=task.task_id,
                    attempts=task.attempts,
                    error=err,
                ))
        else:
            self._settle(task, TaskResult(
                ok=True,
                payload=task.payload,
                task_id=task.task_id,
                attempts=task.attempts,
                output=output,
            ))
        finally:
            self._active -= 1
            self._drain()

    def _retry_delay(self, attempts: int) -> float:
        backoff = self.config.base_retry_delay * (2 ** (attempts - 1))
        return backoff + self._rng.random() * self.config.retry_jitter

    def _requeue(self, task: Task) -> None:
        # Back of the line; total task count is unchanged
        task.state = TaskState.QUEUED
        self._pending.append(task)
        self._drain()

    def _settle(self, task: Task, result: TaskResult) -> None:
        task.state = TaskState.DONE if result.ok else TaskState.FAILED

        if task.on_settle is not None:
            try:
                task.on_settle(result)
            except Exception:
                logger.exception("Callback error for task %d", task.task_id)

        self.metrics.mark_resolved(result.ok)
        if not result.ok:
            self.total_failures += 1
            if self.error_counter is not None:
                self.error_counter.increment()

        if not task.future.done():
            task.future.set_result(result)
