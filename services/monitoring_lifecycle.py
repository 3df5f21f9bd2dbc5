"""
Periodic health-check timers for long-running processes

Celery beat drives the same checks in worker deployments; this is for a
process that owns its own timers. Ticks are skipped while the host reports
itself inactive, and stop() cancels both timers.
"""

import threading
from contextlib import nullcontext
from typing import Any, Callable, Dict, Optional, Protocol

from logging_config import get_logger

logger = get_logger(__name__)


class Scheduler(Protocol):
    def schedule_every(self, interval_seconds: float, func: Callable[[], None]) -> object:
        ...

    def cancel(self, handle: object) -> None:
        ...


class ThreadingScheduler:
    """Runs each job on its own daemon thread until cancelled"""

    def schedule_every(self, interval_seconds: float, func: Callable[[], None]) -> threading.Event:
        stopped = threading.Event()

        def loop():
            while not stopped.wait(interval_seconds):
                func()

        threading.Thread(target=loop, daemon=True, name=f"monitor-{interval_seconds:g}s").start()
        return stopped

    def cancel(self, handle: threading.Event) -> None:
        handle.set()


class MonitoringLifecycle:
    """Owns the basic and deep check timers for a TrackingMonitorService"""

    def __init__(
        self,
        monitor,
        scheduler: Scheduler,
        basic_interval: float = 300,
        deep_interval: float = 1800,
        is_active: Optional[Callable[[], bool]] = None,
        context_factory: Optional[Callable[[], Any]] = None
    ):
        self.monitor = monitor
        self.scheduler = scheduler
        self.basic_interval = basic_interval
        self.deep_interval = deep_interval
        self.is_active = is_active or (lambda: True)
        self.context_factory = context_factory or nullcontext
        self._handles: Dict[str, object] = {}
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return bool(self._handles)

    def start(self) -> None:
        if self.running:
            return
        self._handles['basic'] = self.scheduler.schedule_every(
            self.basic_interval, lambda: self._tick(self.monitor.run_basic_check)
        )
        self._handles['deep'] = self.scheduler.schedule_every(
            self.deep_interval, lambda: self._tick(self.monitor.run_deep_check)
        )
        logger.info("Health check timers started",
                    basic_interval=self.basic_interval, deep_interval=self.deep_interval)
        self._tick(self.monitor.run_basic_check)

    def stop(self) -> None:
        for handle in self._handles.values():
            self.scheduler.cancel(handle)
        self._handles.clear()
        logger.info("Health check timers stopped")

    def close(self) -> None:
        self.stop()

    def _tick(self, check: Callable) -> None:
        if not self.is_active():
            self.skipped_ticks += 1
            return
        try:
            with self.context_factory():
                check()
        except Exception as e:
            # A failing check must not kill the timer thread
            logger.error("Scheduled health check failed", error=str(e))
