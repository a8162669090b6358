"""
scheduler.py - Background Task Scheduler

Runs two background jobs:
- every COLLECT_INTERVAL_SECONDS: sample the system, store the sample,
  and check it against the alert configurations
- every PRUNE_INTERVAL_HOURS: delete samples past the retention window

The metrics source, store and alert engine are handed to the jobs when
they are scheduled.
"""

from __future__ import annotations

import logging
from typing import List

from apscheduler.schedulers.background import BackgroundScheduler

from hostmon import config
from hostmon.alerts import AlertEngine
from hostmon.collector import MetricsSource
from hostmon.errors import HostmonError
from hostmon.schemas import AlertHistoryEntry, TelemetrySample
from hostmon.store import TelemetryStore

logger = logging.getLogger(__name__)


def collect_and_store(source: MetricsSource, store: TelemetryStore, engine: AlertEngine) -> List[AlertHistoryEntry]:
    """
    Takes one sample, saves it, and checks it for alerts.

    Returns the alerts this sample triggered.
    """
    sample: TelemetrySample = source.sample()
    store.write(sample)
    new_alerts = engine.evaluate(**source.evaluation_values(sample))

    alert_info = f" | {len(new_alerts)} new alert(s)" if new_alerts else ""
    logger.info(
        "Saved sample - CPU: %.1f%%, Memory: %.1f%%%s",
        sample.cpu_usage,
        sample.memory_usage,
        alert_info,
    )
    return new_alerts


def _collect_job(source: MetricsSource, store: TelemetryStore, engine: AlertEngine) -> None:
    try:
        collect_and_store(source, store, engine)
    except HostmonError as exc:
        # Already logged where it happened; the next tick tries again
        logger.error("Error saving sample: %s", exc)


def _prune_job(store: TelemetryStore, retention_days: int) -> None:
    try:
        store.prune(retention_days)
    except HostmonError as exc:
        logger.error("Error pruning samples: %s", exc)


def build_scheduler(source: MetricsSource, store: TelemetryStore, engine: AlertEngine) -> BackgroundScheduler:
    """
    Creates (but does not start) the scheduler with both jobs.
    """
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        _collect_job,
        trigger="interval",
        seconds=config.COLLECT_INTERVAL_SECONDS,
        args=[source, store, engine],
        id="metrics_collector",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        _prune_job,
        trigger="interval",
        hours=config.PRUNE_INTERVAL_HOURS,
        args=[store, config.RETENTION_DAYS],
        id="retention_pruner",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler


def start_scheduler(scheduler: BackgroundScheduler) -> None:
    scheduler.start()
    logger.info(
        "Metrics collector started - saving every %d seconds, keeping %d days",
        config.COLLECT_INTERVAL_SECONDS,
        config.RETENTION_DAYS,
    )


def stop_scheduler(scheduler: BackgroundScheduler) -> None:
    """
    Stops the scheduler gracefully.
    """
    scheduler.shutdown(wait=False)
    logger.info("Metrics collector stopped")
