"""
schemas.py - Value Objects

Pydantic models for everything that crosses the store/engine boundary:
telemetry samples going in and coming out, alert rules, alert history,
and the request bodies of the HTTP API.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


class DiskUsageEntry(BaseModel):
    mount_point: str
    used_bytes: int
    total_bytes: int
    usage_percent: float


class NetworkTrafficEntry(BaseModel):
    bytes_received: int
    bytes_sent: int
    packets_received: int
    packets_sent: int


class TelemetrySample(BaseModel):
    """
    One sampling tick: CPU, memory and load, plus the disk volumes and
    network counters seen at that moment.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime
    cpu_usage: float = Field(ge=0, le=100)
    memory_usage: float = Field(ge=0, le=100)
    memory_total: int = Field(ge=0)
    system_load: float
    disk_usage: List[DiskUsageEntry] = Field(default_factory=list)
    network_traffic: NetworkTrafficEntry

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class DatabaseStats(BaseModel):
    total_records: int
    oldest_timestamp: Optional[datetime] = None
    newest_timestamp: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


class AlertMetric(str, Enum):
    CPU = "cpu"
    MEMORY = "memory"
    DISK = "disk"
    NETWORK = "network"

    @classmethod
    def _missing_(cls, value):
        # Older clients send cpu_usage, memory_usage, disk_usage, network_traffic
        if isinstance(value, str):
            stem = value.split("_", 1)[0].lower()
            for member in cls:
                if member.value == stem:
                    return member
        return None


class AlertCondition(str, Enum):
    GREATER_THAN = ">"
    GREATER_OR_EQUAL = ">="
    LESS_THAN = "<"
    LESS_OR_EQUAL = "<="
    EQUALS = "=="

    @classmethod
    def _missing_(cls, value):
        aliases = {
            "greater_than": cls.GREATER_THAN,
            "greater_or_equal": cls.GREATER_OR_EQUAL,
            "less_than": cls.LESS_THAN,
            "less_or_equal": cls.LESS_OR_EQUAL,
            "equals": cls.EQUALS,
            "=": cls.EQUALS,
        }
        if isinstance(value, str):
            return aliases.get(value.lower())
        return None


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NotificationMethod(str, Enum):
    VISUAL = "visual"
    SOUND = "sound"
    SYSTEM_TRAY = "system_tray"


class AlertConfigurationIn(BaseModel):
    """What the operator submits when creating or editing a rule."""

    metric: AlertMetric
    condition: AlertCondition
    threshold: float
    enabled: bool = True
    severity: AlertSeverity = AlertSeverity.MEDIUM
    notification_methods: List[NotificationMethod] = Field(
        default_factory=lambda: [NotificationMethod.VISUAL]
    )

    @field_validator("metric", mode="before")
    @classmethod
    def _metric_alias(cls, value):
        return AlertMetric(value) if isinstance(value, str) else value

    @field_validator("condition", mode="before")
    @classmethod
    def _condition_alias(cls, value):
        return AlertCondition(value) if isinstance(value, str) else value


class AlertConfiguration(AlertConfigurationIn):
    model_config = ConfigDict(from_attributes=True)

    id: str


class AlertHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    configuration_id: Optional[str] = None
    metric: AlertMetric
    condition: AlertCondition
    threshold: float
    severity: AlertSeverity
    triggered_at: datetime
    value: float
    message: str
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# HTTP request bodies
# ---------------------------------------------------------------------------

# Hostname or IP literal; must not look like a command-line option
HOST_PATTERN = r"^[A-Za-z0-9_.:%\[\]][A-Za-z0-9_.:%\[\]-]*$"


class EvaluateRequest(BaseModel):
    cpu: float
    memory: float
    disk: float
    network: float


class AcknowledgeRequest(BaseModel):
    acknowledged_by: str = Field(min_length=1, max_length=100)


class PingRequest(BaseModel):
    host: str = Field(min_length=1, max_length=255, pattern=HOST_PATTERN)
    count: int = Field(default=4, ge=1, le=20)


class TracerouteRequest(BaseModel):
    host: str = Field(min_length=1, max_length=255, pattern=HOST_PATTERN)


class ParseRequest(BaseModel):
    text: str
    # "windows" or "posix"; the host platform's dialect when left out
    dialect: Optional[str] = None
