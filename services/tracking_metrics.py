"""
In-process tracking metrics: call counts, error counts and timings
"""

import threading
from collections import deque
from typing import Any, Dict, Optional

from services.enums import TrackingErrorType

# Rolling window for timing averages
_SAMPLE_SIZE = 100


class TrackingMetrics:
    """Thread-safe counters read by the deep health check"""

    def __init__(self, sample_size: int = _SAMPLE_SIZE):
        self._lock = threading.Lock()
        self._call_times = deque(maxlen=sample_size)
        self._script_load_times = deque(maxlen=sample_size)
        self.tracking_calls = 0
        self.tracking_errors = 0
        self.errors_by_type: Dict[str, int] = {}
        self.last_error_type: Optional[str] = None

    def record_call(self, duration_seconds: float, success: bool) -> None:
        with self._lock:
            self.tracking_calls += 1
            self._call_times.append(duration_seconds)
            if not success:
                self.tracking_errors += 1

    def record_script_load(self, duration_seconds: float) -> None:
        with self._lock:
            self._script_load_times.append(duration_seconds)

    def record_error(self, error_type: TrackingErrorType) -> None:
        key = TrackingErrorType(error_type).value
        with self._lock:
            self.errors_by_type[key] = self.errors_by_type.get(key, 0) + 1
            self.last_error_type = key

    @property
    def average_call_time(self) -> float:
        with self._lock:
            return sum(self._call_times) / len(self._call_times) if self._call_times else 0.0

    @property
    def average_script_load_time(self) -> float:
        with self._lock:
            if not self._script_load_times:
                return 0.0
            return sum(self._script_load_times) / len(self._script_load_times)

    @property
    def error_rate(self) -> float:
        with self._lock:
            return self.tracking_errors / self.tracking_calls if self.tracking_calls else 0.0

    def snapshot(self) -> Dict[str, Any]:
        return {
            'tracking_calls': self.tracking_calls,
            'tracking_errors': self.tracking_errors,
            'error_rate': round(self.error_rate, 4),
            'avg_tracking_call_time': round(self.average_call_time, 4),
            'avg_script_load_time': round(self.average_script_load_time, 4),
            'errors_by_type': dict(self.errors_by_type),
        }

    def reset(self) -> None:
        with self._lock:
            self._call_times.clear()
            self._script_load_times.clear()
            self.tracking_calls = 0
            self.tracking_errors = 0
            self.errors_by_type = {}
            self.last_error_type = None
