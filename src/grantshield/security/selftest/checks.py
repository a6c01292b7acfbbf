"""Self-test checks and the registry that loads them from YAML.

Static checks inspect the installed stack, dynamic checks probe the
in-process guards, config checks inspect the running Settings. Checks
only report problems, except probes which always report an outcome.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from importlib import metadata
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import yaml

from ...errors import StorageError
from ...storage import SecurityDB
from ...utils.datetime import Clock, SystemClock
from ...utils.logger import debug
from ...utils.settings import Settings
from ..audit import AuditFilters, AuditStore
from ..headers import generate_csrf_token, sanitize_input, verify_csrf_token
from ..models import (
    AuditAction,
    SecurityTestResult,
    Severity,
    TestDetails,
    TestStatus,
    TestType,
)

STATIC = "static"
DYNAMIC = "dynamic"
CONFIG = "config"
GROUPS = (STATIC, DYNAMIC, CONFIG)

# Audit trails must outlive this many days
AUDIT_RETENTION_MINIMUM_DAYS = 1825
MAX_REQUESTS_PER_SECOND = 100

_PRERELEASE = re.compile(r"alpha|beta|\d(a|b|rc)\d", re.IGNORECASE)


@dataclass
class CheckContext:
    """What a check may look at while it runs."""

    settings: Settings
    clock: Clock = field(default_factory=SystemClock)

    def now(self) -> datetime:
        return self.clock.now()


class SecurityCheck(Protocol):
    name: str
    group: str

    def run(self, context: CheckContext) -> List[SecurityTestResult]: ...


def _result(
    context: CheckContext,
    test_id: str,
    test_type: TestType,
    name: str,
    status: TestStatus,
    description: str,
    severity: Severity,
    location: Optional[str] = None,
    remediation: Optional[str] = None,
) -> SecurityTestResult:
    return SecurityTestResult(
        test_id=test_id,
        type=test_type,
        name=name,
        status=status,
        details=TestDetails(
            description=description,
            severity=severity,
            location=location,
            remediation=remediation,
        ),
        timestamp=context.now(),
    )


# ===== Static =====


class DependencyCheck:
    """Flags dependencies pinned to (or installed at) a pre-release version."""

    name = "Dependency Check"
    group = STATIC

    def __init__(self, dependencies: List[Dict[str, Any]]):
        self.dependencies = dependencies

    def run(self, context: CheckContext) -> List[SecurityTestResult]:
        results = []
        for dep in self.dependencies:
            dep_name = dep["name"]
            version = dep.get("version") or _installed_version(dep_name)
            if version is None:
                debug(f"[SelfTest] {dep_name} is not installed, skipping")
                continue
            if _PRERELEASE.search(str(version)):
                results.append(
                    _result(
                        context,
                        f"dep-{dep_name}",
                        TestType.STATIC,
                        self.name,
                        TestStatus.WARNING,
                        f"Using non-production version of {dep_name}",
                        Severity.MEDIUM,
                        remediation="Update to stable version",
                    )
                )
        return results


def _installed_version(name: str) -> Optional[str]:
    try:
        return metadata.version(name)
    except metadata.PackageNotFoundError:
        return None


# ===== Dynamic =====


class ProbeCheck:
    """Feeds an attack payload to one in-process guard.

    guard "sql":  the payload as a filter value must match nothing and
                  leave the audit table intact.
    guard "xss":  sanitize_input must neutralise every tag.
    guard "csrf": missing and forged tokens must be rejected while the
                  genuine one is accepted.
    """

    group = DYNAMIC
    GUARDS = ("sql", "xss", "csrf")

    def __init__(
        self,
        name: str,
        endpoint: str,
        guard: str,
        payload: Optional[str] = None,
        check_tokens: bool = False,
    ):
        if guard not in self.GUARDS:
            raise ValueError(f"Unknown probe guard: {guard}")
        self.name = name
        self.endpoint = endpoint
        self.guard = guard
        self.payload = payload or ""
        self.check_tokens = check_tokens

    def run(self, context: CheckContext) -> List[SecurityTestResult]:
        probe = getattr(self, f"_probe_{self.guard}")
        reason = probe()
        if reason is None:
            status, description = TestStatus.PASSED, f"{self.name} test completed"
        else:
            status, description = TestStatus.FAILED, f"{self.name} test failed: {reason}"
        return [
            _result(
                context,
                f"dynamic-{self.name}",
                TestType.DYNAMIC,
                self.name,
                status,
                description,
                Severity.HIGH,
                location=self.endpoint,
            )
        ]

    def _probe_sql(self) -> Optional[str]:
        scratch = SecurityDB()
        try:
            store = AuditStore(scratch)
            store.record("probe-user", AuditAction.READ, "probe", "1")
            _, matched = store.query(AuditFilters(user_id=self.payload))
            if matched:
                return f"payload matched {matched} rows"
            if store.count() != 1:
                return "audit table modified by payload"
        except StorageError as e:
            return f"query errored: {e}"
        finally:
            scratch.close()
        return None

    def _probe_xss(self) -> Optional[str]:
        cleaned = sanitize_input(self.payload)
        if "<" in cleaned or ">" in cleaned:
            return "markup survived sanitization"
        return None

    def _probe_csrf(self) -> Optional[str]:
        if not self.check_tokens:
            return None
        token = generate_csrf_token()
        if verify_csrf_token(token, None):
            return "missing token accepted"
        if verify_csrf_token(token, generate_csrf_token()):
            return "forged token accepted"
        if not verify_csrf_token(token, token):
            return "genuine token rejected"
        return None


# ===== Config =====


class CorsConfigCheck:
    name = "CORS Configuration"
    group = CONFIG

    def run(self, context: CheckContext) -> List[SecurityTestResult]:
        if "*" not in context.settings.cors_origins:
            return []
        return [
            _result(
                context,
                "cors-check",
                TestType.STATIC,
                self.name,
                TestStatus.FAILED,
                "Wildcard CORS origin detected",
                Severity.HIGH,
                remediation="Specify allowed origins explicitly",
            )
        ]


class MfaConfigCheck:
    name = "Authentication Settings"
    group = CONFIG

    def run(self, context: CheckContext) -> List[SecurityTestResult]:
        if context.settings.mfa_enabled:
            return []
        return [
            _result(
                context,
                "auth-check",
                TestType.STATIC,
                self.name,
                TestStatus.WARNING,
                "MFA is not enabled",
                Severity.MEDIUM,
                remediation="Enable MFA for enhanced security",
            )
        ]


class RateLimitConfigCheck:
    name = "Rate Limit Configuration"
    group = CONFIG

    def run(self, context: CheckContext) -> List[SecurityTestResult]:
        s = context.settings
        if not (s.rate_limit_by_ip or s.rate_limit_by_user):
            return [
                _result(
                    context,
                    "rate-limit-check",
                    TestType.STATIC,
                    self.name,
                    TestStatus.FAILED,
                    "Rate limiting is disabled",
                    Severity.HIGH,
                    remediation="Enable rate limiting by IP or by user",
                )
            ]
        per_second = s.rate_limit_max / s.rate_limit_window_seconds
        if per_second > MAX_REQUESTS_PER_SECOND:
            return [
                _result(
                    context,
                    "rate-limit-check",
                    TestType.STATIC,
                    self.name,
                    TestStatus.WARNING,
                    f"Rate limit allows {per_second:.0f} requests per second",
                    Severity.MEDIUM,
                    remediation=f"Keep the limit under {MAX_REQUESTS_PER_SECOND} requests per second",
                )
            ]
        return []


class RetentionConfigCheck:
    name = "Data Retention"
    group = CONFIG

    def run(self, context: CheckContext) -> List[SecurityTestResult]:
        days = context.settings.retention_audit_logs_days
        if days >= AUDIT_RETENTION_MINIMUM_DAYS:
            return []
        return [
            _result(
                context,
                "retention-check",
                TestType.STATIC,
                self.name,
                TestStatus.FAILED,
                f"Audit logs kept for {days} days, below the {AUDIT_RETENTION_MINIMUM_DAYS} day minimum",
                Severity.CRITICAL,
                remediation=f"Set retention_audit_logs_days to at least {AUDIT_RETENTION_MINIMUM_DAYS}",
            )
        ]


# ===== Registry =====


class CheckRegistry:
    """Holds the checks per group, seeded from checks.yaml."""

    def __init__(self, config_path: Optional[Path] = None):
        if config_path is None:
            config_path = self._get_default_config_path()

        self.config_path = Path(config_path)
        self._checks: Dict[str, List[SecurityCheck]] = {group: [] for group in GROUPS}

        if self.config_path.exists():
            self.load()
        for check in (
            CorsConfigCheck(),
            MfaConfigCheck(),
            RateLimitConfigCheck(),
            RetentionConfigCheck(),
        ):
            self.register(check)

    @staticmethod
    def _get_default_config_path() -> Path:
        return Path(__file__).parent.parent.parent / "config" / "checks.yaml"

    def load(self) -> None:
        """Load the dependency list and probe catalogue."""
        with open(self.config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        dependencies = data.get("dependencies", [])
        if dependencies:
            self.register(DependencyCheck(dependencies))

        for p in data.get("probes", []):
            self.register(
                ProbeCheck(
                    name=p["name"],
                    endpoint=p["endpoint"],
                    guard=p["guard"],
                    payload=p.get("payload"),
                    check_tokens=p.get("check_tokens", False),
                )
            )

    def register(self, check: SecurityCheck) -> None:
        if check.group not in self._checks:
            raise ValueError(f"Unknown check group: {check.group}")
        self._checks[check.group].append(check)

    def clear(self, group: Optional[str] = None) -> None:
        for g in [group] if group else GROUPS:
            self._checks[g] = []

    def checks(self, group: str) -> List[SecurityCheck]:
        return list(self._checks[group])
