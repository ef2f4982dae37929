"""Adaptive frame skipping driven by observed per-frame pipeline latency."""

import logging
from collections import deque
from typing import Deque

logger = logging.getLogger(__name__)


class AdaptiveRateController:
    """Rolling-average latency -> frame-skip factor.

    Average above ``upper_ms``: skip one more tick (capped at ``max_skip``).
    Average below ``lower_ms``: skip one fewer (floor 1).
    """

    def __init__(
        self,
        window: int = 10,
        upper_ms: float = 250.0,
        lower_ms: float = 150.0,
        max_skip: int = 5,
    ):
        if lower_ms > upper_ms:
            raise ValueError("lower_ms must not exceed upper_ms")
        self.upper_ms = upper_ms
        self.lower_ms = lower_ms
        self.max_skip = max(1, max_skip)
        self.samples: Deque[float] = deque(maxlen=max(1, window))
        self.frame_skip = 1

    @property
    def average_ms(self) -> float:
        return sum(self.samples) / len(self.samples) if self.samples else 0.0

    def record(self, duration_ms: float) -> int:
        """Add one per-frame duration; returns the (possibly updated) skip factor."""
        self.samples.append(duration_ms)
        avg = self.average_ms

        if avg > self.upper_ms and self.frame_skip < self.max_skip:
            self.frame_skip += 1
            logger.info(f"Pipeline slow ({avg:.0f}ms avg), processing every {self.frame_skip} frames")
        elif avg < self.lower_ms and self.frame_skip > 1:
            self.frame_skip -= 1
            logger.info(f"Pipeline fast ({avg:.0f}ms avg), processing every {self.frame_skip} frames")
        return self.frame_skip

    def should_process(self, tick: int) -> bool:
        return tick % self.frame_skip == 0

    def reset(self) -> None:
        self.samples.clear()
        self.frame_skip = 1
