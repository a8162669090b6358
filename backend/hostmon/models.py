"""
models.py - Database Models (Tables)

Three tables hold telemetry:
- samples: one row per sampling tick
- disk_entries: 0..N rows per sample, one per mounted volume
- network_entries: exactly one row per sample

Two tables hold alerting state:
- alert_configurations: the operator's threshold rules
- alert_history: one row per breach, plus its acknowledgment
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.types import TypeDecorator

from hostmon.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """
    Stores datetimes as fixed-width ISO-8601 text in UTC.

    Every value is written as YYYY-MM-DDTHH:MM:SS.ffffff+00:00, so
    comparing the text gives the same answer as comparing the instants.
    Naive datetimes are taken to be UTC already.
    """

    impl = String(32)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return datetime.fromisoformat(value)


class Sample(Base):
    """One timestamped snapshot of system vitals."""

    __tablename__ = "samples"

    id = Column(String(36), primary_key=True, default=new_id)

    # index=True gives ix_samples_timestamp for range scans
    timestamp = Column(UTCDateTime, nullable=False, index=True)

    cpu_usage = Column(Float, nullable=False)
    memory_usage = Column(Float, nullable=False)
    memory_total = Column(BigInteger, nullable=False)
    system_load = Column(Float, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow)


class DiskEntry(Base):
    __tablename__ = "disk_entries"
    __table_args__ = (
        CheckConstraint("used_bytes >= 0 AND total_bytes >= 0", name="ck_disk_entries_bytes"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    sample_id = Column(
        String(36),
        ForeignKey("samples.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Keeps volumes in the order the sample listed them
    position = Column(Integer, nullable=False, default=0)

    mount_point = Column(String, nullable=False)
    used_bytes = Column(BigInteger, nullable=False)
    total_bytes = Column(BigInteger, nullable=False)
    usage_percent = Column(Float, nullable=False)


class NetworkEntry(Base):
    __tablename__ = "network_entries"

    id = Column(String(36), primary_key=True, default=new_id)

    # unique=True: a sample has exactly one network row
    sample_id = Column(
        String(36),
        ForeignKey("samples.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    bytes_received = Column(BigInteger, nullable=False)
    bytes_sent = Column(BigInteger, nullable=False)
    packets_received = Column(BigInteger, nullable=False)
    packets_sent = Column(BigInteger, nullable=False)


class AlertRule(Base):
    """
    An operator-defined threshold rule.

    For example {metric: "cpu", condition: ">", threshold: 90} breaches
    whenever CPU usage goes above 90%.
    """

    __tablename__ = "alert_configurations"

    id = Column(String(36), primary_key=True, default=new_id)

    # cpu, memory, disk or network
    metric = Column(String(20), nullable=False)

    # >, >=, <, <= or ==
    condition = Column(String(4), nullable=False)

    threshold = Column(Float, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)

    # low, medium, high or critical
    severity = Column(String(20), nullable=False)

    # visual, sound, system_tray - stored for the desktop shell
    notification_methods = Column(JSON, nullable=False, default=list)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


class Alert(Base):
    """
    One breach of an AlertRule.

    metric, condition, threshold and severity are copied from the rule at
    trigger time, so the row still reads correctly after the rule is
    edited or deleted.
    """

    __tablename__ = "alert_history"

    id = Column(String(36), primary_key=True, default=new_id)

    # Set to NULL when the rule is deleted; history is never removed here
    configuration_id = Column(
        String(36),
        ForeignKey("alert_configurations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    metric = Column(String(20), nullable=False)
    condition = Column(String(4), nullable=False)
    threshold = Column(Float, nullable=False)
    severity = Column(String(20), nullable=False)

    triggered_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)

    # The value that breached the threshold
    value = Column(Float, nullable=False)

    # Human-readable message
    message = Column(String(500), nullable=False)

    # Has the user acknowledged/dismissed this alert?
    acknowledged = Column(Boolean, nullable=False, default=False)
    acknowledged_by = Column(String(100), nullable=True)
    acknowledged_at = Column(UTCDateTime, nullable=True)
