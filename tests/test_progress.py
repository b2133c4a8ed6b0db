"""Tests for progress metrics and formatting helpers."""
from __future__ import annotations

import math

from novel_translator.services.progress import (
    ErrorCounter,
    ProgressMetrics,
    format_mmss,
    format_readable_time,
)


class _Clock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestProgressMetrics:
    """Tests for ProgressMetrics counters and derived values."""

    def test_speed_and_remaining(self):
        """Verify speed is completions per second and ETA uses remaining tasks."""
        clock = _Clock()
        metrics = ProgressMetrics(label="Test", clock=clock)
        metrics.set_initial_tasks(0)
        metrics.add_tasks(10)
        clock.now += 5
        for _ in range(5):
            metrics.mark_resolved(ok=True)

        assert metrics.speed() == 1.0
        assert metrics.remaining_seconds() == 5.0

    def test_remaining_is_infinite_before_first_completion(self):
        """Verify ETA is undefined until something completes."""
        clock = _Clock()
        metrics = ProgressMetrics(clock=clock)
        metrics.add_tasks(3)
        clock.now += 2
        assert math.isinf(metrics.remaining_seconds())
        assert "--:--" in metrics.render()

    def test_failures_count_as_completed(self):
        """Verify a failed resolution still advances completion."""
        metrics = ProgressMetrics(clock=_Clock())
        metrics.add_tasks(2)
        metrics.mark_resolved(ok=True)
        metrics.mark_resolved(ok=False)
        assert metrics.completed == 2
        assert metrics.errors == 1

    def test_finalize_summary(self):
        """Verify the summary distinguishes clean and failed runs."""
        clock = _Clock()
        clean = ProgressMetrics(clock=clock)
        clean.set_initial_tasks(1)
        clock.now += 65
        clean.mark_resolved(ok=True)
        assert clean.finalize() == "Done! Time: 1m 5s"
        assert clean.is_finalized

        failed = ProgressMetrics(clock=clock)
        failed.set_initial_tasks(1)
        failed.mark_resolved(ok=False)
        assert failed.finalize().startswith("Completed with Errors:")

    def test_elapsed_frozen_after_finalize(self):
        """Verify elapsed time stops at finalize()."""
        clock = _Clock()
        metrics = ProgressMetrics(clock=clock)
        metrics.set_initial_tasks(0)
        clock.now += 3
        metrics.finalize()
        clock.now += 100
        assert metrics.elapsed_seconds() == 3

    def test_render_lines(self):
        """Verify the status block fields."""
        clock = _Clock()
        metrics = ProgressMetrics(clock=clock)
        metrics.set_initial_tasks(4)
        clock.now += 2
        metrics.mark_resolved(ok=True)
        lines = metrics.render().splitlines()
        assert lines[0] == "Progress: 1/4"
        assert lines[1] == "Time: 0:02 < 0:06"
        assert lines[2] == "Speed: 0.50"
        assert lines[3] == "Errors: 0"


class TestErrorCounter:
    def test_increment_and_reset(self):
        counter = ErrorCounter()
        counter.increment()
        counter.increment()
        assert counter.count == 2
        counter.reset()
        assert counter.count == 0


class TestFormatting:
    """Tests for time formatting helpers."""

    def test_format_mmss(self):
        assert format_mmss(0) == "0:00"
        assert format_mmss(61) == "1:01"
        assert format_mmss(math.inf) == "--:--"

    def test_format_readable_time(self):
        assert format_readable_time(42) == "42s"
        assert format_readable_time(125) == "2m 5s"
        assert format_readable_time(math.inf) == "--"
