"""
Publish-rate statistics.

Keeps a rolling window of publish timestamps so the achieved rate can be
reported while the loop runs and summarised at shutdown.
"""

import time
from collections import deque

from . import config


class PublishStats:
    """
    Counts published, empty and skipped ticks.

    Usage:
        stats = PublishStats()
        stats.record_published()
        print(stats.fps())
    """

    def __init__(self, window_size: int = None, clock=time.monotonic):
        self.window_size = window_size or config.STATS_WINDOW
        self._clock = clock
        self._stamps: deque = deque(maxlen=self.window_size)
        self.reset()

    def reset(self):
        """Zero the counters and restart the clock, e.g. when the loop starts."""
        self._stamps.clear()
        self._start = self._clock()
        self.published = 0
        self.empty = 0
        self.skipped = 0

    def record_published(self):
        self._stamps.append(self._clock())
        self.published += 1

    def record_empty(self):
        self.empty += 1

    def record_skipped(self):
        self.skipped += 1

    def fps(self) -> float:
        """Publish rate over the rolling window."""
        if len(self._stamps) < 2:
            return 0.0
        span = self._stamps[-1] - self._stamps[0]
        if span <= 0:
            return 0.0
        return (len(self._stamps) - 1) / span

    def elapsed(self) -> float:
        return self._clock() - self._start

    def average_fps(self) -> float:
        elapsed = self.elapsed()
        return self.published / elapsed if elapsed > 0 else 0.0

    def get_stats(self) -> dict:
        return {
            "published": self.published,
            "empty": self.empty,
            "skipped": self.skipped,
            "fps": round(self.fps(), 2),
            "elapsed": round(self.elapsed(), 2),
        }
