"""
Self-Test Reporter - Plain-text security test reports
"""

from datetime import datetime
from typing import List

from ..models import SecurityTestResult, Severity, TestStatus
from .engine import SecurityReport

_STATUS_ICONS = {
    TestStatus.PASSED: "✅",
    TestStatus.WARNING: "🟡",
    TestStatus.FAILED: "🔴",
}

_SEVERITY_ORDER = [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW]


class SelfTestReporter:
    """Generates security test reports"""

    def generate_summary_report(self, report: SecurityReport) -> str:
        """Generate a text summary of a security report"""
        summary = report.summary
        lines = [
            "=" * 60,
            "GRANTSHIELD SECURITY TEST REPORT",
            f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            f"Period: {report.start:%Y-%m-%d %H:%M} .. {report.end:%Y-%m-%d %H:%M} UTC",
            "=" * 60,
            "",
            "SUMMARY",
            "-" * 40,
            f"Total tests: {summary.get('total', 0)}",
            f"✅ Passed:   {summary.get('passed', 0)}",
            f"🔴 Failed:   {summary.get('failed', 0)}",
            f"🟡 Warnings: {summary.get('warnings', 0)}",
            "",
        ]

        lines.extend(self._format_severity(report.recent_tests))

        if report.critical_issues:
            lines.extend(self._format_results("CRITICAL ISSUES", report.critical_issues))
        else:
            lines.extend(["CRITICAL ISSUES", "-" * 40, "None", ""])

        if report.recent_tests:
            lines.extend(self._format_results("RECENT TESTS", report.recent_tests))

        lines.append("=" * 60)
        return "\n".join(lines)

    def _format_severity(self, results: List[SecurityTestResult]) -> List[str]:
        """Count of non-passing recent results per severity"""
        open_results = [r for r in results if r.status is not TestStatus.PASSED]
        if not open_results:
            return []
        lines = ["OPEN FINDINGS BY SEVERITY", "-" * 40]
        for severity in _SEVERITY_ORDER:
            count = sum(1 for r in open_results if r.details.severity is severity)
            lines.append(f"{severity.value.capitalize():<10}{count}")
        lines.append("")
        return lines

    def _format_results(self, title: str, results: List[SecurityTestResult]) -> List[str]:
        lines = [title, "-" * 40]
        for r in results:
            icon = _STATUS_ICONS.get(r.status, "⚪")
            lines.append(
                f"{icon} [{r.details.severity.value.upper()}] {r.name} ({r.test_id})"
            )
            lines.append(f"   {r.details.description}")
            if r.details.location:
                lines.append(f"   Location: {r.details.location}")
            if r.details.remediation:
                lines.append(f"   Fix: {r.details.remediation}")
        lines.append("")
        return lines
