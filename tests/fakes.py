"""Deterministic stand-ins for time-dependent collaborators.

FakeClock replaces the service clock so snapshot windows can be crossed
without sleeping: the clock only moves when a test advances it.
"""
import datetime
from datetime import timezone

DEFAULT_START = datetime.datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock returning a fixed, manually advanced UTC time."""

    def __init__(self, start: datetime.datetime = DEFAULT_START) -> None:
        self.now = start
        self.calls = 0

    def __call__(self) -> datetime.datetime:
        self.calls += 1
        return self.now

    def advance(self, seconds: float) -> datetime.datetime:
        self.now = self.now + datetime.timedelta(seconds=seconds)
        return self.now
