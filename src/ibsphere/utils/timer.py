"""Wall-clock timing of named simulation sections."""

import time
from contextlib import contextmanager
from typing import Dict


class Timer:
    """
    Accumulating timer for named sections.

    Example:
        >>> timer = Timer()
        >>> timer.start("total")
        >>> with timer.time_section("simulation"):
        ...     pass
        >>> timer.stop("total")
        >>> times = timer.get_times()
    """

    def __init__(self):
        self.times: Dict[str, float] = {}
        self._starts: Dict[str, float] = {}

    def start(self, name: str):
        """Start (or restart) the clock for a section."""
        self._starts[name] = time.perf_counter()

    def stop(self, name: str) -> float:
        """
        Stop a running section and add its duration.

        Returns:
            Elapsed seconds for this interval
        """
        if name not in self._starts:
            raise KeyError(f"Timer section '{name}' was never started")

        elapsed = time.perf_counter() - self._starts.pop(name)
        self.times[name] = self.times.get(name, 0.0) + elapsed
        return elapsed

    @contextmanager
    def time_section(self, name: str):
        """Context manager timing the enclosed block."""
        self.start(name)
        try:
            yield
        finally:
            self.stop(name)

    def get_times(self) -> Dict[str, float]:
        """Copy of accumulated section times in seconds."""
        return dict(self.times)

    def reset(self):
        self.times.clear()
        self._starts.clear()
