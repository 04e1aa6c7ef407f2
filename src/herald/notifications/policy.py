"""Priority-tier retry policies and the exponential backoff schedule."""

from __future__ import annotations

import random
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta

from herald.core.types import NotificationPriority


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for one priority tier."""

    max_attempts: int
    base_backoff_minutes: int

    def backoff(self, attempt: int) -> timedelta:
        """Delay before retry number *attempt* (1-based): ``base * 2^(attempt-1)`` minutes."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        return timedelta(minutes=self.base_backoff_minutes * 2 ** (attempt - 1))


RETRY_POLICIES: Mapping[NotificationPriority, RetryPolicy] = {
    NotificationPriority.CRITICAL: RetryPolicy(max_attempts=5, base_backoff_minutes=2),
    NotificationPriority.HIGH: RetryPolicy(max_attempts=4, base_backoff_minutes=5),
    NotificationPriority.MEDIUM: RetryPolicy(max_attempts=3, base_backoff_minutes=10),
    NotificationPriority.LOW: RetryPolicy(max_attempts=2, base_backoff_minutes=15),
}


def policy_for(priority: NotificationPriority | str) -> RetryPolicy:
    return RETRY_POLICIES[NotificationPriority(priority)]


class BackoffSchedule:
    """Computes ``next_retry_at`` timestamps from the policy table.

    ``jitter_ratio`` spreads each delay by up to that fraction in either
    direction. It is off by default; with it on, delays for successive
    attempts still grow as long as the ratio stays below 1/3.
    """

    def __init__(
        self,
        policies: Mapping[NotificationPriority, RetryPolicy] = RETRY_POLICIES,
        jitter_ratio: float = 0.0,
        rng: random.Random | None = None,
    ) -> None:
        if not 0.0 <= jitter_ratio < 1.0:
            raise ValueError(f"jitter_ratio must be in [0, 1), got {jitter_ratio}")
        self._policies = policies
        self._jitter = jitter_ratio
        self._rng = rng or random.Random()

    def policy(self, priority: NotificationPriority | str) -> RetryPolicy:
        return self._policies[NotificationPriority(priority)]

    def max_attempts(self) -> dict[NotificationPriority, int]:
        return {p: policy.max_attempts for p, policy in self._policies.items()}

    def next_retry_at(
        self, priority: NotificationPriority | str, attempt: int, now: datetime
    ) -> datetime:
        delay = self.policy(priority).backoff(attempt)
        if self._jitter:
            delay *= 1 + self._rng.uniform(-self._jitter, self._jitter)
        return now + delay
