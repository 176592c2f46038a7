"""
Adaptive inter-request delay for the batch pipeline.

The provider enforces a global request-per-interval ceiling, so requests
are spaced by a delay that reacts to the observed error rate.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import GeocodingPipelineConfig, RunStats


logger = logging.getLogger(__name__)


class RateGovernor:
    """
    Proportional delay controller with two thresholds.

    Every ``adjust_every`` processed records the error rate is checked:
    above ``high_water`` the delay grows by ``increase_step``, below
    ``low_water`` it shrinks by ``decrease_step``. The delay always stays
    within ``[min_delay, max_delay]``.
    """

    def __init__(
        self,
        initial_delay: float = 1.0,
        min_delay: float = 0.8,
        max_delay: float = 3.0,
        increase_step: float = 0.2,
        decrease_step: float = 0.1,
        high_water: float = 0.10,
        low_water: float = 0.02,
        adjust_every: int = 50,
    ):
        """
        Initialize the governor.

        Args:
            initial_delay: Starting delay in seconds (clamped into bounds)
            min_delay: Lowest delay allowed
            max_delay: Highest delay allowed
            increase_step: Seconds added when the error rate is high
            decrease_step: Seconds removed when the error rate is low
            high_water: Error rate above which the delay grows
            low_water: Error rate below which the delay shrinks
            adjust_every: Processed records between evaluations
        """
        if min_delay < 0 or min_delay > max_delay:
            raise ValueError("require 0 <= min_delay <= max_delay")
        if low_water > high_water:
            raise ValueError("low_water must be <= high_water")
        if adjust_every <= 0:
            raise ValueError("adjust_every must be > 0")

        self.min_delay = float(min_delay)
        self.max_delay = float(max_delay)
        self.increase_step = float(increase_step)
        self.decrease_step = float(decrease_step)
        self.high_water = float(high_water)
        self.low_water = float(low_water)
        self.adjust_every = int(adjust_every)

        self._delay = self._clamp(float(initial_delay))
        self._last_evaluated_at = 0
        self.lock = threading.Lock()

    @classmethod
    def from_config(cls, config: GeocodingPipelineConfig) -> RateGovernor:
        return cls(
            initial_delay=config.rate_limit_delay,
            min_delay=config.min_delay,
            max_delay=config.max_delay,
            increase_step=config.increase_step,
            decrease_step=config.decrease_step,
            high_water=config.high_water,
            low_water=config.low_water,
            adjust_every=config.adjust_every,
        )

    def _clamp(self, delay: float) -> float:
        return min(self.max_delay, max(self.min_delay, delay))

    def current_delay(self) -> float:
        with self.lock:
            return self._delay

    def observe(self, stats: RunStats) -> None:
        """Re-evaluate the delay if enough records were processed since last time."""
        with self.lock:
            if stats.processed - self._last_evaluated_at < self.adjust_every:
                return
            self._last_evaluated_at = stats.processed

            error_rate = stats.error_rate
            if error_rate > self.high_water:
                self._delay = self._clamp(self._delay + self.increase_step)
                logger.warning(f"High error rate ({error_rate:.1%}), delay raised to {self._delay:.2f}s")
            elif error_rate < self.low_water and self._delay > self.min_delay:
                self._delay = self._clamp(self._delay - self.decrease_step)
                logger.info(f"Low error rate ({error_rate:.1%}), delay lowered to {self._delay:.2f}s")
