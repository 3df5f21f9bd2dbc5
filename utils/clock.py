"""
Clock abstraction so retry delays, token expiry and alert retention can be
driven by a fake clock in tests.
"""

import time
from datetime import datetime

from utils.datetime_utils import utc_now


class Clock:
    """Wall clock backed by time.sleep and utc_now"""

    def now(self) -> datetime:
        return utc_now()

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


system_clock = Clock()
