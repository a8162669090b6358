"""
config.py - Application Settings

Every setting has a sensible default and can be overridden with an
environment variable named HOSTMON_<SETTING>. Values are read once,
when this module is first imported.
"""

from __future__ import annotations

import logging
import os


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Where the SQLite database lives
DATABASE_URL: str = os.getenv("HOSTMON_DATABASE_URL", "sqlite:///system_monitoring.db")

# Background sampling and retention
COLLECT_INTERVAL_SECONDS: int = _env_int("HOSTMON_COLLECT_INTERVAL_SECONDS", 30)
RETENTION_DAYS: int = _env_int("HOSTMON_RETENTION_DAYS", 30)
PRUNE_INTERVAL_HOURS: int = _env_int("HOSTMON_PRUNE_INTERVAL_HOURS", 24)
SCHEDULER_ENABLED: bool = _env_bool("HOSTMON_SCHEDULER_ENABLED", True)

# Diagnostic commands
COMMAND_TIMEOUT_SECONDS: int = _env_int("HOSTMON_COMMAND_TIMEOUT_SECONDS", 5)
TRACEROUTE_MAX_HOPS: int = _env_int("HOSTMON_TRACEROUTE_MAX_HOPS", 30)

# HTTP API (used by the `hostmon` console command)
API_HOST: str = os.getenv("HOSTMON_API_HOST", "127.0.0.1")
API_PORT: int = _env_int("HOSTMON_API_PORT", 8000)

LOG_LEVEL: str = os.getenv("HOSTMON_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Set up root logging once for the whole process."""
    logging.basicConfig(level=level or LOG_LEVEL, format=LOG_FORMAT)
