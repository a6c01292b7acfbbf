"""Security self-test engine: pluggable checks, stored results, reports."""

from .checks import (
    CONFIG,
    DYNAMIC,
    STATIC,
    CheckContext,
    CheckRegistry,
    CorsConfigCheck,
    DependencyCheck,
    MfaConfigCheck,
    ProbeCheck,
    RateLimitConfigCheck,
    RetentionConfigCheck,
    SecurityCheck,
)
from .engine import SecurityReport, SelfTestEngine, SelfTestScheduler, SuiteSummary
from .reporter import SelfTestReporter
from .store import TestResultStore

__all__ = [
    "CONFIG",
    "DYNAMIC",
    "STATIC",
    "CheckContext",
    "CheckRegistry",
    "CorsConfigCheck",
    "DependencyCheck",
    "MfaConfigCheck",
    "ProbeCheck",
    "RateLimitConfigCheck",
    "RetentionConfigCheck",
    "SecurityCheck",
    "SecurityReport",
    "SelfTestEngine",
    "SelfTestReporter",
    "SelfTestScheduler",
    "SuiteSummary",
    "TestResultStore",
]
