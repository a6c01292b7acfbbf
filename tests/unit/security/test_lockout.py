"""
Tests for FailedLoginTracker - Rolling-window lockout.

Covers:
- Threshold crossing locks exactly once and raises one alert
- Failures outside the window do not count
- Already-locked accounts never re-alert
- Concurrent failures around the threshold lock and alert exactly once
- Fail-open vs fail-closed on storage errors
"""

import threading
from unittest.mock import MagicMock

import pytest

from grantshield.errors import StorageError
from grantshield.security.alerts import AlertStore
from grantshield.security.lockout import FailedLoginTracker, LockoutConfig
from grantshield.security.models import AlertType


@pytest.fixture
def alerts(db) -> AlertStore:
    return AlertStore(db)


@pytest.fixture
def tracker(db, alerts, clock) -> FailedLoginTracker:
    return FailedLoginTracker(db, alerts, config=LockoutConfig(), clock=clock)


class TestLockout:
    """Threshold behaviour with the default 5 failures / 30 minutes"""

    def test_four_failures_do_not_lock(self, tracker, alerts, user_id, ip, clock):
        results = []
        for _ in range(4):
            results.append(tracker.record_failure(user_id, ip))
            clock.advance(minutes=1)

        assert results == [False] * 4
        assert tracker.is_locked(user_id) is False
        assert alerts.count(user_id) == 0

    def test_fifth_failure_locks_and_alerts_once(self, tracker, alerts, user_id, ip, clock):
        """5 failures in 10 minutes lock the account with one alert"""
        results = []
        for _ in range(5):
            results.append(tracker.record_failure(user_id, ip))
            clock.advance(minutes=2)

        assert results == [False, False, False, False, True]
        assert tracker.is_locked(user_id) is True

        locked = alerts.list(user_id=user_id, alert_type=AlertType.ACCOUNT_LOCKED)
        assert len(locked) == 1
        assert locked[0].details == {"failedAttempts": 5, "ip": ip}

    def test_sixth_failure_does_not_realert(self, tracker, alerts, user_id, ip):
        for _ in range(5):
            tracker.record_failure(user_id, ip)

        assert tracker.record_failure(user_id, ip) is False
        assert alerts.count(user_id, AlertType.ACCOUNT_LOCKED) == 1
        assert tracker.failure_count(user_id) == 6

    def test_failures_outside_window_do_not_count(self, tracker, user_id, ip, clock):
        for _ in range(4):
            tracker.record_failure(user_id, ip)
        clock.advance(minutes=31)

        assert tracker.record_failure(user_id, ip) is False
        assert tracker.failure_count(user_id) == 1
        assert tracker.is_locked(user_id) is False

    def test_users_are_tracked_separately(self, tracker, ip):
        for _ in range(4):
            tracker.record_failure("alice", ip)

        assert tracker.record_failure("bob", ip) is False
        assert tracker.failure_count("alice") == 4

    def test_lock_state_records_time(self, tracker, user_id, ip, clock):
        for _ in range(5):
            tracker.record_failure(user_id, ip)

        state = tracker.lock_state(user_id)

        assert state.locked is True
        assert state.locked_at == clock.now()

    def test_unlock_then_relock_alerts_again(self, tracker, alerts, user_id, ip):
        for _ in range(5):
            tracker.record_failure(user_id, ip)

        tracker.unlock(user_id)

        assert tracker.is_locked(user_id) is False
        assert tracker.record_failure(user_id, ip) is True
        assert alerts.count(user_id, AlertType.ACCOUNT_LOCKED) == 2

    def test_custom_threshold(self, db, alerts, clock, user_id, ip):
        tracker = FailedLoginTracker(
            db, alerts, config=LockoutConfig(threshold=2, window_minutes=1), clock=clock
        )

        assert tracker.record_failure(user_id, ip) is False
        assert tracker.record_failure(user_id, ip) is True

    def test_recent_failures_newest_first(self, tracker, user_id, clock):
        tracker.record_failure(user_id, "10.0.0.1")
        clock.advance(minutes=31)
        tracker.record_failure(user_id, "10.0.0.2")
        clock.advance(minutes=1)
        tracker.record_failure(user_id, "10.0.0.3")

        records = tracker.recent_failures(user_id)

        assert [r.ip for r in records] == ["10.0.0.3", "10.0.0.2"]
        assert records[0].timestamp == clock.now()
        assert tracker.failure_count(user_id) == 2


class TestConcurrentFailures:
    """Threads released together across the lock threshold"""

    @pytest.mark.parametrize("attempts", [5, 8, 12])
    def test_exactly_one_lock_and_alert(self, tracker, alerts, user_id, ip, attempts):
        barrier = threading.Barrier(attempts)
        results = []

        def fail():
            barrier.wait(timeout=10)
            results.append(tracker.record_failure(user_id, ip))

        threads = [threading.Thread(target=fail) for _ in range(attempts)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert len(results) == attempts
        assert results.count(True) == 1
        assert tracker.is_locked(user_id) is True
        assert tracker.failure_count(user_id) == attempts
        assert alerts.count(user_id, AlertType.ACCOUNT_LOCKED) == 1

    def test_below_threshold_never_locks(self, tracker, alerts, user_id, ip):
        barrier = threading.Barrier(4)

        def fail():
            barrier.wait(timeout=10)
            tracker.record_failure(user_id, ip)

        threads = [threading.Thread(target=fail) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert tracker.failure_count(user_id) == 4
        assert tracker.is_locked(user_id) is False
        assert alerts.count(user_id) == 0


class TestStorageFailures:
    """Fail-open flag on the tracker"""

    @pytest.fixture
    def broken_db(self):
        db = MagicMock()
        db.transaction.side_effect = StorageError("timeout", operation="failed login record")
        return db

    def test_fail_open_swallows_and_reports_not_locked(self, broken_db, clock, user_id, ip):
        tracker = FailedLoginTracker(broken_db, MagicMock(), clock=clock, fail_open=True)

        assert tracker.record_failure(user_id, ip) is False

    def test_fail_closed_propagates(self, broken_db, clock, user_id, ip):
        tracker = FailedLoginTracker(broken_db, MagicMock(), clock=clock, fail_open=False)

        with pytest.raises(StorageError):
            tracker.record_failure(user_id, ip)
