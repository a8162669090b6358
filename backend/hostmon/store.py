"""
store.py - Telemetry Store

Durable storage for system samples. A sample is written as one parent
row in `samples` plus its disk and network rows, all inside a single
transaction, so readers either see the whole sample or nothing.

Typical use:

    store = TelemetryStore(SessionLocal)
    store.write(sample)
    store.fetch_range(start, end)
    store.prune(retention_days=30)
"""

from __future__ import annotations

import csv
import io
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from hostmon.errors import SchemaInvariantError, StorageFailure, ValidationError
from hostmon.models import DiskEntry, NetworkEntry, Sample, new_id
from hostmon.schemas import (
    DatabaseStats,
    DiskUsageEntry,
    NetworkTrafficEntry,
    TelemetrySample,
)

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "timestamp",
    "cpu_usage",
    "memory_usage",
    "memory_total",
    "system_load",
    "disk_usage",
    "network_traffic",
]

TimeBound = Union[datetime, str]


def parse_time_bound(value: TimeBound, name: str = "timestamp") -> datetime:
    """
    Turns a range bound into an aware UTC datetime.

    Accepts a datetime or an ISO-8601 string (a trailing "Z" is allowed).
    Naive values are taken to be UTC.
    """
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"{name} is not an ISO-8601 timestamp: {value!r}") from None
    if not isinstance(value, datetime):
        raise ValidationError(f"{name} must be a datetime or ISO-8601 string")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TelemetryStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def write(self, sample: TelemetrySample) -> None:
        """
        Saves a sample with all its disk and network rows.

        All-or-nothing: if any row fails to insert, the transaction is
        rolled back and StorageFailure is raised.
        """
        db = self._session_factory()
        try:
            db.add(
                Sample(
                    id=sample.id,
                    timestamp=sample.timestamp,
                    cpu_usage=sample.cpu_usage,
                    memory_usage=sample.memory_usage,
                    memory_total=sample.memory_total,
                    system_load=sample.system_load,
                )
            )
            # Parent first, so the children's foreign keys resolve
            db.flush()

            for position, disk in enumerate(sample.disk_usage):
                db.add(
                    DiskEntry(
                        id=new_id(),
                        sample_id=sample.id,
                        position=position,
                        mount_point=disk.mount_point,
                        used_bytes=disk.used_bytes,
                        total_bytes=disk.total_bytes,
                        usage_percent=disk.usage_percent,
                    )
                )

            net = sample.network_traffic
            db.add(
                NetworkEntry(
                    id=new_id(),
                    sample_id=sample.id,
                    bytes_received=net.bytes_received,
                    bytes_sent=net.bytes_sent,
                    packets_received=net.packets_received,
                    packets_sent=net.packets_sent,
                )
            )

            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to store sample %s", sample.id)
            raise StorageFailure(f"could not store sample {sample.id}: {exc}") from exc
        finally:
            db.close()

        logger.debug("Stored sample %s at %s", sample.id, sample.timestamp.isoformat())

    def fetch_range(self, start: TimeBound, end: TimeBound) -> List[TelemetrySample]:
        """
        Returns every sample with start <= timestamp <= end, oldest first.

        Disk and network rows are looked up per sample. A sample without
        its network row is a broken schema invariant and raises
        SchemaInvariantError.
        """
        start_dt = parse_time_bound(start, "start")
        end_dt = parse_time_bound(end, "end")

        db = self._session_factory()
        try:
            rows = (
                db.query(Sample)
                .filter(Sample.timestamp >= start_dt, Sample.timestamp <= end_dt)
                .order_by(Sample.timestamp.asc())
                .all()
            )
            return [self._assemble(db, row) for row in rows]
        except SQLAlchemyError as exc:
            logger.exception("Failed to fetch samples")
            raise StorageFailure(f"could not fetch samples: {exc}") from exc
        finally:
            db.close()

    def latest(self) -> Optional[TelemetrySample]:
        """Returns the most recent sample, or None when the store is empty."""
        db = self._session_factory()
        try:
            row = db.query(Sample).order_by(Sample.timestamp.desc()).first()
            if row is None:
                return None
            return self._assemble(db, row)
        except SQLAlchemyError as exc:
            raise StorageFailure(f"could not read latest sample: {exc}") from exc
        finally:
            db.close()

    def prune(self, retention_days: int) -> int:
        """
        Deletes samples older than now - retention_days.

        Disk and network rows go with their sample (ON DELETE CASCADE).
        Returns how many samples were removed.
        """
        if retention_days < 0:
            raise ValidationError("retention_days must not be negative")

        try:
            cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        except OverflowError:
            raise ValidationError(f"retention_days is out of range: {retention_days}") from None

        db = self._session_factory()
        try:
            removed = (
                db.query(Sample)
                .filter(Sample.timestamp < cutoff)
                .delete(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to prune samples")
            raise StorageFailure(f"could not prune samples: {exc}") from exc
        finally:
            db.close()

        logger.info("Pruned %d sample(s) older than %s", removed, cutoff.isoformat())
        return removed

    def export_csv(self, start: TimeBound, end: TimeBound) -> str:
        """
        Exports the samples in [start, end] as CSV text.

        Disk usage and network traffic are embedded as JSON in their
        columns.
        """
        samples = self.fetch_range(start, end)

        output = io.StringIO()
        writer = csv.writer(output, lineterminator="\n")
        writer.writerow(CSV_HEADER)

        for s in samples:
            writer.writerow([
                s.timestamp.isoformat(timespec="microseconds"),
                s.cpu_usage,
                s.memory_usage,
                s.memory_total,
                s.system_load,
                json.dumps([d.model_dump() for d in s.disk_usage]),
                json.dumps(s.network_traffic.model_dump()),
            ])

        return output.getvalue()

    def stats(self) -> DatabaseStats:
        db = self._session_factory()
        try:
            total, oldest, newest = db.query(
                func.count(Sample.id),
                func.min(Sample.timestamp),
                func.max(Sample.timestamp),
            ).one()
        except SQLAlchemyError as exc:
            raise StorageFailure(f"could not read stats: {exc}") from exc
        finally:
            db.close()

        return DatabaseStats(
            total_records=total,
            oldest_timestamp=oldest,
            newest_timestamp=newest,
        )

    def _assemble(self, db, row: Sample) -> TelemetrySample:
        disks = (
            db.query(DiskEntry)
            .filter(DiskEntry.sample_id == row.id)
            .order_by(DiskEntry.position.asc())
            .all()
        )

        net = db.query(NetworkEntry).filter(NetworkEntry.sample_id == row.id).one_or_none()
        if net is None:
            raise SchemaInvariantError(f"sample {row.id} has no network_entries row")

        return TelemetrySample(
            id=row.id,
            timestamp=row.timestamp,
            cpu_usage=row.cpu_usage,
            memory_usage=row.memory_usage,
            memory_total=row.memory_total,
            system_load=row.system_load,
            disk_usage=[
                DiskUsageEntry(
                    mount_point=d.mount_point,
                    used_bytes=d.used_bytes,
                    total_bytes=d.total_bytes,
                    usage_percent=d.usage_percent,
                )
                for d in disks
            ],
            network_traffic=NetworkTrafficEntry(
                bytes_received=net.bytes_received,
                bytes_sent=net.bytes_sent,
                packets_received=net.packets_received,
                packets_sent=net.packets_sent,
            ),
        )
