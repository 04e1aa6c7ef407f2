"""Tests for retry policies and the backoff schedule."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from herald.core.types import NotificationPriority
from herald.notifications.policy import RETRY_POLICIES, BackoffSchedule, RetryPolicy, policy_for

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


class TestRetryPolicies:
    @pytest.mark.parametrize(
        "priority,max_attempts,base",
        [
            (NotificationPriority.CRITICAL, 5, 2),
            (NotificationPriority.HIGH, 4, 5),
            (NotificationPriority.MEDIUM, 3, 10),
            (NotificationPriority.LOW, 2, 15),
        ],
    )
    def test_table(self, priority, max_attempts, base) -> None:
        policy = policy_for(priority)
        assert policy.max_attempts == max_attempts
        assert policy.base_backoff_minutes == base

    def test_every_priority_has_a_policy(self) -> None:
        assert set(RETRY_POLICIES) == set(NotificationPriority)

    def test_critical_gets_most_attempts(self) -> None:
        assert policy_for("CRITICAL").max_attempts > policy_for("LOW").max_attempts

    def test_backoff_doubles(self) -> None:
        policy = RetryPolicy(max_attempts=5, base_backoff_minutes=2)
        assert [policy.backoff(n) for n in (1, 2, 3, 4)] == [
            timedelta(minutes=2),
            timedelta(minutes=4),
            timedelta(minutes=8),
            timedelta(minutes=16),
        ]

    def test_backoff_strictly_increasing_for_every_tier(self) -> None:
        for policy in RETRY_POLICIES.values():
            delays = [policy.backoff(n) for n in range(1, policy.max_attempts + 1)]
            assert all(a < b for a, b in zip(delays, delays[1:]))

    def test_attempt_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            policy_for("LOW").backoff(0)


class TestBackoffSchedule:
    def test_next_retry_at_without_jitter(self) -> None:
        schedule = BackoffSchedule()
        assert schedule.next_retry_at("LOW", 1, NOW) == NOW + timedelta(minutes=15)
        assert schedule.next_retry_at("LOW", 2, NOW) == NOW + timedelta(minutes=30)

    def test_max_attempts_map(self) -> None:
        assert BackoffSchedule().max_attempts() == {
            NotificationPriority.CRITICAL: 5,
            NotificationPriority.HIGH: 4,
            NotificationPriority.MEDIUM: 3,
            NotificationPriority.LOW: 2,
        }

    def test_jitter_stays_within_ratio(self) -> None:
        schedule = BackoffSchedule(jitter_ratio=0.2, rng=random.Random(7))
        for _ in range(50):
            delay = schedule.next_retry_at("MEDIUM", 1, NOW) - NOW
            assert timedelta(minutes=8) <= delay <= timedelta(minutes=12)

    def test_invalid_jitter_rejected(self) -> None:
        with pytest.raises(ValueError):
            BackoffSchedule(jitter_ratio=1.5)
