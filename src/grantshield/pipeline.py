"""
Security Pipeline - Wires every component to one database and clock.

Components share one SecurityDB so the audit trail, lockouts and
alerts stay consistent; the whole graph is built from Settings once.
"""

from pathlib import Path
from typing import Optional

from .security.activity import ActivityConfig, ActivityMonitor
from .security.alerts import AlertStore
from .security.audit import AuditStore, DataRequestService
from .security.counters import SharedCounterStore, create_counter_store
from .security.lockout import FailedLoginTracker, LockoutConfig
from .security.models import RetentionPolicy
from .security.ratelimit import RateLimitConfig, RateLimiter
from .security.retention import RetentionScheduler, RetentionSweeper
from .security.selftest import (
    CheckRegistry,
    SelfTestEngine,
    SelfTestScheduler,
    TestResultStore,
)
from .storage import SecurityDB
from .utils.datetime import Clock, SystemClock
from .utils.logger import info
from .utils.settings import Settings


class SecurityPipeline:
    """Explicit context object holding the configured components."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        db: Optional[SecurityDB] = None,
        clock: Optional[Clock] = None,
        checks: Optional[CheckRegistry] = None,
    ):
        self.settings = settings or Settings()
        self.clock = clock or SystemClock()
        self.db = db or SecurityDB(
            self.settings.db_path, timeout=self.settings.persistence_timeout_seconds
        )
        fail_open = self.settings.fail_open

        self.audit = AuditStore(self.db, clock=self.clock)
        self.data_requests = DataRequestService(self.db, self.audit)
        self.alerts = AlertStore(self.db)
        self.counters = create_counter_store(
            self.settings.counter_backend,
            self.settings.counter_db_path,
            timeout=self.settings.persistence_timeout_seconds,
        )
        self.rate_limiter = RateLimiter(
            config=RateLimitConfig.from_settings(self.settings),
            counters=self.counters,
            clock=self.clock,
            fail_open=fail_open,
        )
        self.failed_logins = FailedLoginTracker(
            self.db,
            self.alerts,
            config=LockoutConfig.from_settings(self.settings),
            clock=self.clock,
            fail_open=fail_open,
        )
        self.activity = ActivityMonitor(
            self.db,
            self.alerts,
            config=ActivityConfig.from_settings(self.settings),
            clock=self.clock,
            fail_open=fail_open,
        )
        self.retention = RetentionSweeper(
            self.db,
            self.audit,
            policy=RetentionPolicy.from_settings(self.settings),
            clock=self.clock,
        )

        if checks is None:
            checks_path = self.settings.checks_path
            checks = CheckRegistry(Path(checks_path) if checks_path else None)
        self.selftest = SelfTestEngine(
            TestResultStore(self.db),
            checks=checks,
            settings=self.settings,
            clock=self.clock,
        )

        self._schedulers = []

    def start(self) -> None:
        """Open the database and start the enabled background schedules."""
        self.db.connect()
        if self._schedulers:
            return
        if self.settings.sweep_interval_hours > 0:
            self._schedulers.append(
                RetentionScheduler(self.retention, self.settings.sweep_interval_hours)
            )
        if self.settings.selftest_interval_hours > 0:
            self._schedulers.append(
                SelfTestScheduler(self.selftest, self.settings.selftest_interval_hours)
            )
        for scheduler in self._schedulers:
            scheduler.start()
        info(f"[Pipeline] Started with {len(self._schedulers)} schedules")

    def stop(self) -> None:
        for scheduler in self._schedulers:
            scheduler.stop()
        self._schedulers = []
        if isinstance(self.counters, SharedCounterStore):
            self.counters.close()
        self.db.close()
        info("[Pipeline] Stopped")
