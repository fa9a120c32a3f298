"""Tests for the interval scheduler."""

import threading

import pytest

from mailgate.workers.scheduler import IntervalScheduler


class TestIntervalScheduler:

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            IntervalScheduler(0)

    def test_ticks_until_stopped(self):
        ticks = []
        third_tick = threading.Event()

        def callback():
            ticks.append(1)
            if len(ticks) >= 3:
                third_tick.set()

        scheduler = IntervalScheduler(0.01)
        scheduler.start(callback)
        assert scheduler.running
        assert third_tick.wait(timeout=5)

        scheduler.stop(timeout=5)
        assert not scheduler.running
        count = len(ticks)
        third_tick.clear()
        assert not third_tick.wait(timeout=0.05)
        assert len(ticks) == count

    def test_run_immediately(self):
        ticked = threading.Event()
        scheduler = IntervalScheduler(3600, run_immediately=True)
        scheduler.start(ticked.set)
        try:
            assert ticked.wait(timeout=5)
        finally:
            scheduler.stop(timeout=5)

    def test_failing_tick_keeps_ticker_alive(self):
        """Test an exception in one tick does not end the schedule."""
        calls = []
        second_call = threading.Event()

        def callback():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("transient")
            second_call.set()

        scheduler = IntervalScheduler(0.01)
        scheduler.start(callback)
        try:
            assert second_call.wait(timeout=5)
        finally:
            scheduler.stop(timeout=5)

    def test_cannot_start_twice(self):
        scheduler = IntervalScheduler(3600)
        scheduler.start(lambda: None)
        try:
            with pytest.raises(RuntimeError):
                scheduler.start(lambda: None)
        finally:
            scheduler.stop(timeout=5)
