"""Bot-dominance throttle for autonomous evaluations."""

from __future__ import annotations

import random
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from .windower import dominance_ratio

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ..config.schema import SchedulerConfig
    from ..models.message import Message


class ThrottleOutcome(Enum):
    """Result of consulting the throttle."""

    PROCEED = "proceed"
    SKIP_HARD = "skip_hard"  # Above the hard ceiling
    SKIP_SOFT = "skip_soft"  # Lost the draw between the ceilings


class DominanceThrottle:
    """Suppresses autonomous evaluations when the agent talks too much.

    Above the hard ceiling evaluation is always skipped. Between the soft and
    hard ceilings it is skipped with a probability that grows linearly from 0
    at the soft ceiling and saturates at ``max_skip_probability``.

    Direct triggers never pass through the throttle.
    """

    def __init__(self, config: SchedulerConfig, rng: random.Random | None = None) -> None:
        self._config = config
        self._rng = rng or random.Random()

    def ratio(self, history: Iterable[Message], now: datetime) -> float:
        """Compute the dominance ratio over the configured recent sample."""
        return dominance_ratio(
            history,
            now=now,
            max_messages=self._config.dominance_window_messages,
            max_age=timedelta(minutes=self._config.dominance_window_minutes),
        )

    def skip_probability(self, ratio: float) -> float:
        """Probability that an evaluation at this ratio is skipped."""
        soft = self._config.soft_ratio_ceiling
        hard = self._config.hard_ratio_ceiling
        if ratio > hard:
            return 1.0
        if ratio <= soft:
            return 0.0
        return min(self._config.max_skip_probability, (ratio - soft) / (hard - soft))

    def check(self, ratio: float) -> ThrottleOutcome:
        """Decide whether an evaluation at this ratio may call the oracle."""
        if ratio > self._config.hard_ratio_ceiling:
            return ThrottleOutcome.SKIP_HARD

        probability = self.skip_probability(ratio)
        if probability > 0 and self._rng.random() < probability:
            return ThrottleOutcome.SKIP_SOFT

        return ThrottleOutcome.PROCEED
