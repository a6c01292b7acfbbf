"""Structured logging for grantshield using loguru."""

from __future__ import annotations
import os
import secrets
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Generator
from loguru import logger

_req_id: ContextVar[str | None] = ContextVar("request_id", default=None)
_user_id: ContextVar[str | None] = ContextVar("user_id", default=None)
LOG_DIR = Path(
    os.getenv("GRANTSHIELD_LOG_DIR", str(Path.home() / ".local/state/grantshield/logs"))
)
FMT = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> | <cyan>{file}:{line}</cyan> | {message}{extra[context]}"


def _patch(r: dict) -> None:
    req, user = _req_id.get(), _user_id.get()
    p = ([f"req={req}"] if req else []) + ([f"user={user}"] if user else [])
    r["extra"]["context"] = f" [{', '.join(p)}]" if p else ""
    r["extra"]["request_id"], r["extra"]["user_id"] = req, user


def setup_logging() -> None:
    dbg = os.getenv("GRANTSHIELD_DEBUG", "").lower() in ("1", "true")
    lvl = os.getenv("GRANTSHIELD_LOG_LEVEL", "DEBUG" if dbg else "INFO").upper()
    logger.remove()
    logger.configure(patcher=_patch)
    if os.getenv("GRANTSHIELD_LOG_CONSOLE", "1" if dbg else "0") == "1":
        logger.add(sys.stderr, format=FMT, level=lvl, colorize=True, diagnose=False)
    if os.getenv("GRANTSHIELD_LOG_FILES", "1") != "1":
        return
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
    except OSError:
        # Read-only home: fall back to stderr only
        logger.add(sys.stderr, format=FMT, level="WARNING", diagnose=False)
        return
    logger.add(
        LOG_DIR / "grantshield.log",
        format=FMT,
        level=lvl,
        rotation="10 MB",
        retention=5,
        compression="gz",
        diagnose=False,
    )
    logger.add(
        LOG_DIR / "grantshield.json",
        level=lvl,
        rotation="20 MB",
        retention=3,
        compression="gz",
        serialize=True,
        diagnose=False,
    )


setup_logging()


@contextmanager
def log_context(
    request_id: str | None = None,
    user_id: str | None = None,
    auto_request_id: bool = False,
) -> Generator[dict[str, str | None], None, None]:
    req = request_id or (secrets.token_hex(4) if auto_request_id else None)
    rt, ut = _req_id.set(req) if req else None, _user_id.set(user_id) if user_id else None
    try:
        yield {"request_id": req, "user_id": user_id}
    finally:
        if rt:
            _req_id.reset(rt)
        if ut:
            _user_id.reset(ut)


def push_context(request_id: str | None, user_id: str | None) -> tuple[Any, Any]:
    return _req_id.set(request_id), _user_id.set(user_id)


def pop_context(tokens: tuple[Any, Any]) -> None:
    rt, ut = tokens
    _req_id.reset(rt)
    _user_id.reset(ut)


def get_request_id() -> str | None:
    return _req_id.get()


def get_user_id() -> str | None:
    return _user_id.get()


def debug(msg: str, *a: Any, **k: Any) -> None:
    logger.opt(depth=1).debug(msg, *a, **k)


def info(msg: str, *a: Any, **k: Any) -> None:
    logger.opt(depth=1).info(msg, *a, **k)


def warning(msg: str, *a: Any, **k: Any) -> None:
    logger.opt(depth=1).warning(msg, *a, **k)


def error(msg: str, *a: Any, **k: Any) -> None:
    logger.opt(depth=1).error(msg, *a, **k)


def exception(msg: str, *a: Any, **k: Any) -> None:
    logger.opt(depth=1, exception=True).error(msg, *a, **k)


__all__ = [
    "debug",
    "info",
    "warning",
    "error",
    "exception",
    "setup_logging",
    "log_context",
    "push_context",
    "pop_context",
    "get_request_id",
    "get_user_id",
    "logger",
]
