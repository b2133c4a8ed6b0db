"""
Progress tracking for request queues.

ProgressMetrics is passive: the queue reports task additions and terminal
resolutions, and readers poll the derived numbers (speed, ETA) or render a
status line. ErrorCounter is shared across all queues of a session so the
caller can tell whether any stage finished with failures.
"""

from __future__ import annotations

import math
import time
from typing import Callable, Optional

from ..logging_utils import log


class ErrorCounter:
    """Count of terminal task failures across a translation session."""

    def __init__(self) -> None:
        self.count = 0

    def increment(self) -> None:
        self.count += 1

    def reset(self) -> None:
        self.count = 0


class ProgressMetrics:
    """
    Counters and timers for one stage of the pipeline.

    Usage:
        metrics = ProgressMetrics(label="Translation")
        metrics.set_initial_tasks(0)
        metrics.add_tasks(3)
        metrics.mark_resolved(ok=True)
        print(metrics.render())
    """

    def __init__(self, label: str = "", clock: Optional[Callable[[], float]] = None):
        """
        Initialize metrics.

        Args:
            label: Stage name used in status output
            clock: Monotonic time source in seconds (injectable for tests)
        """
        self.label = label
        self._clock = clock or time.monotonic

        self.total = 0
        self.completed = 0
        self.errors = 0
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    def set_initial_tasks(self, count: int) -> None:
        """Reset counters and start the timer."""
        self.total = count
        self.completed = 0
        self.errors = 0
        self.start_time = self._clock()
        self.end_time = None

    def add_tasks(self, count: int) -> None:
        if self.start_time is None:
            self.start_time = self._clock()
        self.total += count

    def mark_resolved(self, ok: bool) -> None:
        """Record one terminal task resolution."""
        self.completed += 1
        if not ok:
            self.errors += 1

    @property
    def is_finalized(self) -> bool:
        return self.end_time is not None

    def elapsed_seconds(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else self._clock()
        return max(0.0, end - self.start_time)

    def speed(self) -> float:
        """Completed tasks per second."""
        elapsed = self.elapsed_seconds()
        if elapsed <= 0:
            return 0.0
        return self.completed / elapsed

    def remaining_seconds(self) -> float:
        """Estimated time to finish, or infinity before any task completes."""
        speed = self.speed()
        if speed <= 0:
            return math.inf
        return max(0, self.total - self.completed) / speed

    def finalize(self) -> str:
        """
        Stop the timer and log a summary line.

        Returns:
            The summary text
        """
        self.end_time = self._clock()
        elapsed = format_readable_time(self.elapsed_seconds())
        if self.errors > 0:
            summary = f"Completed with Errors: {elapsed}"
        else:
            summary = f"Done! Time: {elapsed}"
        log(f"[{self.label}] {summary} ({self.completed}/{self.total}, errors: {self.errors})")
        return summary

    def render(self) -> str:
        """Multi-line live status, e.g. for a terminal or log line."""
        return "\n".join([
            f"Progress: {self.completed}/{self.total}",
            f"Time: {format_mmss(self.elapsed_seconds())} < {format_mmss(self.remaining_seconds())}",
            f"Speed: {self.speed():.2f}",
            f"Errors: {self.errors}",
        ])


def format_mmss(seconds: float) -> str:
    if not math.isfinite(seconds):
        return "--:--"
    s = max(0, int(math.floor(seconds + 0.5)))
    return f"{s // 60}:{s % 60:02d}"


def format_readable_time(seconds: float) -> str:
    if not math.isfinite(seconds):
        return "--"
    s = max(0, int(math.floor(seconds + 0.5)))
    minutes, rest = divmod(s, 60)
    if minutes == 0:
        return f"{rest}s"
    return f"{minutes}m {rest}s"
