"""
Security Self-Test Engine - Runs registered checks, stores and aggregates results.

Storage failures always propagate: a self-test run that cannot be
recorded is reported as failed rather than silently dropped.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ...utils.datetime import Clock, SystemClock, format_iso
from ...utils.logger import error, info, warning
from ...utils.settings import Settings
from ...utils.threading import PeriodicTask
from ..models import SecurityTestResult, TestStatus
from .checks import CONFIG, DYNAMIC, STATIC, CheckContext, CheckRegistry
from .store import TestResultStore

RECENT_TESTS_LIMIT = 10
DEFAULT_REPORT_WINDOW = timedelta(hours=24)


def _status_counts(results: List[SecurityTestResult]) -> Dict[str, int]:
    counts = {"passed": 0, "failed": 0, "warnings": 0}
    for result in results:
        if result.status is TestStatus.PASSED:
            counts["passed"] += 1
        elif result.status is TestStatus.FAILED:
            counts["failed"] += 1
        else:
            counts["warnings"] += 1
    return counts


@dataclass
class SuiteSummary:
    passed: int = 0
    failed: int = 0
    warnings: int = 0
    results: List[SecurityTestResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.warnings

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "warnings": self.warnings,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class SecurityReport:
    start: datetime
    end: datetime
    summary: Dict[str, int]
    critical_issues: List[SecurityTestResult]
    recent_tests: List[SecurityTestResult]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startDate": format_iso(self.start),
            "endDate": format_iso(self.end),
            "summary": dict(self.summary),
            "criticalIssues": [r.to_dict() for r in self.critical_issues],
            "recentTests": [r.to_dict() for r in self.recent_tests],
        }


class SelfTestEngine:
    """Runs the check registry and builds reports from stored results."""

    def __init__(
        self,
        results: TestResultStore,
        checks: Optional[CheckRegistry] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ):
        self._results = results
        self._checks = checks or CheckRegistry()
        self._settings = settings or Settings()
        self._clock = clock or SystemClock()

    @property
    def checks(self) -> CheckRegistry:
        return self._checks

    def _context(self) -> CheckContext:
        return CheckContext(settings=self._settings, clock=self._clock)

    def _run_group(self, group: str) -> List[SecurityTestResult]:
        context = self._context()
        results: List[SecurityTestResult] = []
        for check in self._checks.checks(group):
            results.extend(check.run(context))
        return results

    def run_all(self) -> SuiteSummary:
        """Run every static and dynamic check and store the results."""
        results = self._run_group(STATIC) + self._run_group(DYNAMIC)
        try:
            self._results.save(results)
        except Exception as e:
            error(f"[SelfTest] Security tests failed: {e}")
            raise

        summary = SuiteSummary(results=results, **_status_counts(results))
        info(
            f"[SelfTest] Suite: {summary.passed} passed, "
            f"{summary.failed} failed, {summary.warnings} warnings"
        )
        return summary

    def validate_config(self) -> List[SecurityTestResult]:
        """Run the configuration checks and store any findings."""
        results = self._run_group(CONFIG)
        try:
            self._results.save(results)
        except Exception as e:
            error(f"[SelfTest] Security configuration validation failed: {e}")
            raise
        for result in results:
            warning(f"[SelfTest] {result.name}: {result.details.description}")
        return results

    def run_full(self) -> SuiteSummary:
        """Config validation followed by the suite, combined into one summary."""
        config_results = self.validate_config()
        suite = self.run_all()
        results = config_results + suite.results
        return SuiteSummary(results=results, **_status_counts(results))

    def report(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> SecurityReport:
        """Aggregate stored results in [start, end] (default: last 24 hours)."""
        end = end or self._clock.now()
        start = start or end - DEFAULT_REPORT_WINDOW
        results = self._results.between(start, end)

        summary = {"total": len(results), **_status_counts(results)}
        return SecurityReport(
            start=start,
            end=end,
            summary=summary,
            critical_issues=[r for r in results if r.is_critical_issue],
            recent_tests=results[:RECENT_TESTS_LIMIT],
        )

    def export_snapshot(self, report: SecurityReport) -> Dict[str, Any]:
        """JSON-ready snapshot of a report, stamped with the export time."""
        return {
            "timestamp": format_iso(self._clock.now()),
            "metrics": dict(report.summary),
            "criticalIssues": [r.to_dict() for r in report.critical_issues],
            "results": [r.to_dict() for r in report.recent_tests],
        }


class SelfTestScheduler(PeriodicTask):
    """Runs the full self-test on a fixed interval in a daemon thread."""

    def __init__(self, engine: SelfTestEngine, interval_hours: float):
        super().__init__(
            name="SelfTestScheduler",
            func=engine.run_full,
            interval=interval_hours * 3600,
        )
