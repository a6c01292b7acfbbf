"""
Settings management for grantshield

Loaded once at startup from a JSON file, then overridden by
GRANTSHIELD_* environment variables. Immutable after load.
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List, Optional

from .logger import warning

CONFIG_DIR = os.path.expanduser("~/.config/grantshield")
CONFIG_FILE = os.path.join(CONFIG_DIR, "settings.json")
ENV_PREFIX = "GRANTSHIELD_"

COUNTER_BACKENDS = ("memory", "shared")


@dataclass(frozen=True)
class Settings:
    """Pipeline settings"""

    # Rate limiter (fixed window)
    rate_limit_window_ms: int = 60_000
    rate_limit_max: int = 100
    rate_limit_by_ip: bool = True
    rate_limit_by_user: bool = True

    # Failed-login lockout (rolling window)
    failed_login_threshold: int = 5
    failed_login_window_minutes: int = 30

    # Unusual activity alerts (rolling window)
    unusual_activity_threshold: int = 50
    unusual_activity_window_minutes: int = 5
    unusual_activity_alert_once_per_window: bool = False
    count_rate_limit_rejections_as_activity: bool = False

    # Retention, in days
    retention_personal_info_days: int = 365
    retention_documents_days: int = 730
    retention_audit_logs_days: int = 1825  # 5 years

    # "memory" (single process) or "shared" (SQLite file every process opens)
    counter_backend: str = "memory"
    counter_db_path: str = field(
        default_factory=lambda: os.path.join(CONFIG_DIR, "rate_counters.sqlite3")
    )

    # Counters and monitors keep the guarded action going on storage errors
    fail_open: bool = True

    # Live configuration inspected by the self-test engine
    cors_origins: List[str] = field(default_factory=list)
    mfa_enabled: bool = True

    db_path: str = field(
        default_factory=lambda: os.path.join(CONFIG_DIR, "security.duckdb")
    )
    checks_path: Optional[str] = None
    persistence_timeout_seconds: float = 5.0

    # Schedules (0 disables)
    sweep_interval_hours: float = 24.0
    selftest_interval_hours: float = 0.0

    # Bearer token -> {"user_id": ..., "role": ...}
    api_tokens: Dict[str, Dict[str, str]] = field(default_factory=dict)
    api_host: str = "127.0.0.1"
    api_port: int = 19880

    def __post_init__(self):
        if self.counter_backend not in COUNTER_BACKENDS:
            raise ValueError(
                f"counter_backend must be one of {COUNTER_BACKENDS}, "
                f"got {self.counter_backend!r}"
            )
        for name in (
            "rate_limit_window_ms",
            "rate_limit_max",
            "failed_login_threshold",
            "failed_login_window_minutes",
            "unusual_activity_threshold",
            "unusual_activity_window_minutes",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    @property
    def rate_limit_window_seconds(self) -> float:
        return self.rate_limit_window_ms / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("api_tokens")
        return data

    def save(self, path: str = CONFIG_FILE):
        """Save settings to a JSON file"""
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)

    @classmethod
    def load(
        cls, path: Optional[str] = None, environ: Optional[Dict[str, str]] = None
    ) -> "Settings":
        """Load settings from the config file plus environment overrides."""
        path = path or os.getenv(f"{ENV_PREFIX}CONFIG", CONFIG_FILE)
        environ = os.environ if environ is None else environ

        data: Dict[str, Any] = {}
        if os.path.exists(path):
            try:
                with open(path, "r") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                warning(f"Ignoring unreadable settings file {path}: {e}")
                data = {}

        # Filter to only known fields (ignore obsolete settings)
        known = {f.name: f for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in known}

        for name in known:
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                filtered[name] = _coerce(cls, name, raw)

        return cls(**filtered)

    def with_overrides(self, **changes: Any) -> "Settings":
        return replace(self, **changes)


def _coerce(cls, name: str, raw: str) -> Any:
    """Convert an environment string to the field's type."""
    default = getattr(cls(), name)
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, (list, dict)):
        if isinstance(default, list) and not raw.lstrip().startswith("["):
            return [item.strip() for item in raw.split(",") if item.strip()]
        return json.loads(raw)
    return raw
