"""
Tests for MonitoringLifecycle - periodic check timers
"""

from unittest.mock import MagicMock

import pytest

from services.monitoring_lifecycle import MonitoringLifecycle, ThreadingScheduler
from tests.fixtures.clock_fixtures import ManualScheduler


class TestMonitoringLifecycle:

    @pytest.fixture
    def monitor(self):
        return MagicMock()

    @pytest.fixture
    def scheduler(self):
        return ManualScheduler()

    def test_start_schedules_both_tiers_and_runs_basic_once(self, monitor, scheduler):
        lifecycle = MonitoringLifecycle(monitor, scheduler, basic_interval=300, deep_interval=1800)

        lifecycle.start()

        assert lifecycle.running
        assert sorted(job['interval'] for job in scheduler.jobs.values()) == [300, 1800]
        monitor.run_basic_check.assert_called_once()
        monitor.run_deep_check.assert_not_called()

    def test_ticks_run_the_matching_check(self, monitor, scheduler):
        lifecycle = MonitoringLifecycle(monitor, scheduler, basic_interval=300, deep_interval=1800)
        lifecycle.start()

        scheduler.fire(1800)
        scheduler.fire(300)

        monitor.run_deep_check.assert_called_once()
        assert monitor.run_basic_check.call_count == 2

    def test_stop_cancels_both_timers(self, monitor, scheduler):
        lifecycle = MonitoringLifecycle(monitor, scheduler)
        lifecycle.start()

        lifecycle.stop()

        assert not lifecycle.running
        assert len(scheduler.cancelled) == 2
        assert scheduler.jobs == {}

    def test_start_twice_does_not_double_schedule(self, monitor, scheduler):
        lifecycle = MonitoringLifecycle(monitor, scheduler)

        lifecycle.start()
        lifecycle.start()

        assert len(scheduler.jobs) == 2

    def test_inactive_host_skips_ticks(self, monitor, scheduler):
        active = {'value': False}
        lifecycle = MonitoringLifecycle(monitor, scheduler, is_active=lambda: active['value'])
        lifecycle.start()

        scheduler.fire_all()

        monitor.run_basic_check.assert_not_called()
        monitor.run_deep_check.assert_not_called()
        assert lifecycle.skipped_ticks == 3

        active['value'] = True
        scheduler.fire_all()
        monitor.run_basic_check.assert_called_once()
        monitor.run_deep_check.assert_called_once()

    def test_failing_check_does_not_propagate(self, monitor, scheduler):
        monitor.run_basic_check.side_effect = RuntimeError('boom')
        lifecycle = MonitoringLifecycle(monitor, scheduler)

        lifecycle.start()
        scheduler.fire_all()

        assert monitor.run_deep_check.call_count == 1

    def test_checks_run_inside_context(self, monitor, scheduler):
        context = MagicMock()
        lifecycle = MonitoringLifecycle(monitor, scheduler, context_factory=lambda: context)

        lifecycle.start()

        context.__enter__.assert_called_once()
        context.__exit__.assert_called_once()
        monitor.run_basic_check.assert_called_once()

    def test_close_stops_timers(self, monitor, scheduler):
        lifecycle = MonitoringLifecycle(monitor, scheduler)
        lifecycle.start()

        lifecycle.close()

        assert not lifecycle.running


class TestThreadingScheduler:

    def test_cancel_stops_the_loop(self):
        scheduler = ThreadingScheduler()
        func = MagicMock()

        handle = scheduler.schedule_every(3600, func)
        scheduler.cancel(handle)

        assert handle.is_set()
        func.assert_not_called()
