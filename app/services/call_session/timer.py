"""Elapsed-time counter shown during a call."""
import time
from typing import Callable, Optional


class CallTimer:
    """Wall-clock call duration, independent of the call state machine."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._started: Optional[float] = None

    def start(self) -> None:
        self._started = self._clock()

    def clear(self) -> None:
        self._started = None

    @property
    def running(self) -> bool:
        return self._started is not None

    @property
    def elapsed_seconds(self) -> int:
        if self._started is None:
            return 0
        return max(0, int(self._clock() - self._started))

    @property
    def display(self) -> str:
        """Elapsed time as MM:SS."""
        minutes, seconds = divmod(self.elapsed_seconds, 60)
        return f"{minutes:02d}:{seconds:02d}"
