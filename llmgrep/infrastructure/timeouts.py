from __future__ import annotations

import time
from typing import Callable, Optional

from ..domain.errors import TimeoutExceeded
from .config import search_timeout_seconds


class Deadline:
    """Wall-clock budget shared by every primitive call of one search chain."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.seconds = float(seconds)
        self._clock = clock
        self.restart()

    def restart(self) -> None:
        """Start the same budget over from now."""
        self._expires_at = self._clock() + self.seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def check(self) -> None:
        if self.expired:
            raise TimeoutExceeded(self.seconds)

    def bound(self, timeout: Optional[float] = None) -> float:
        """Return the timeout to use for the next call, never past the deadline."""
        self.check()
        left = self.remaining()
        return left if timeout is None else min(float(timeout), left)


def deadline_for(entry_count: int) -> Deadline:
    return Deadline(search_timeout_seconds(entry_count))
