"""
alerts.py - Alert Engine

Checks incoming metrics against the operator's alert configurations and
records every breach in the alert history.

A configuration says which metric to watch, how to compare it, and the
threshold, e.g. "cpu > 90". Each call to evaluate() compares the
current values against every enabled configuration; each breach becomes
a new history entry. Repeated breaches across calls are NOT merged, so
a CPU stuck at 95% produces one entry per evaluation.

History entries start unacknowledged and can be acknowledged exactly
once.
"""

from __future__ import annotations

import logging
import math
import operator
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from hostmon.errors import AlertStateError, NotFoundError, StorageFailure, ValidationError
from hostmon.models import Alert, AlertRule, new_id
from hostmon.schemas import (
    AlertCondition,
    AlertConfiguration,
    AlertConfigurationIn,
    AlertHistoryEntry,
    AlertMetric,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _equals(value: float, threshold: float) -> bool:
    return math.isclose(value, threshold, rel_tol=1e-9, abs_tol=1e-9)


COMPARATORS: Dict[AlertCondition, Callable[[float, float], bool]] = {
    AlertCondition.GREATER_THAN: operator.gt,
    AlertCondition.GREATER_OR_EQUAL: operator.ge,
    AlertCondition.LESS_THAN: operator.lt,
    AlertCondition.LESS_OR_EQUAL: operator.le,
    AlertCondition.EQUALS: _equals,
}


def is_breach(condition: AlertCondition, value: float, threshold: float) -> bool:
    return COMPARATORS[AlertCondition(condition)](value, threshold)


def generate_alert_message(metric: str, condition: str, value: float, threshold: float, severity: str) -> str:
    """
    Creates a human-readable alert message.
    """
    metric_names = {
        "cpu": "CPU usage",
        "memory": "Memory usage",
        "disk": "Disk usage",
        "network": "Network traffic",
    }
    metric_name = metric_names.get(metric, metric)

    if metric == "network":
        return f"{severity.upper()}: {metric_name} is {value:g} ({condition} {threshold:g})"
    return f"{severity.upper()}: {metric_name} is {value:g}% ({condition} {threshold:g}%)"


class AlertEngine:
    def __init__(self, session_factory: sessionmaker, clock: Optional[Callable[[], datetime]] = None):
        self._session_factory = session_factory
        self._clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Configuration CRUD
    # ------------------------------------------------------------------

    def list_configurations(self) -> List[AlertConfiguration]:
        db = self._session_factory()
        try:
            rules = db.query(AlertRule).order_by(AlertRule.created_at.asc(), AlertRule.id.asc()).all()
            return [AlertConfiguration.model_validate(r) for r in rules]
        except SQLAlchemyError as exc:
            raise StorageFailure(f"could not list alert configurations: {exc}") from exc
        finally:
            db.close()

    def get_configuration(self, config_id: str) -> AlertConfiguration:
        db = self._session_factory()
        try:
            rule = db.get(AlertRule, config_id)
            if rule is None:
                raise NotFoundError(f"alert configuration {config_id} not found")
            return AlertConfiguration.model_validate(rule)
        except SQLAlchemyError as exc:
            raise StorageFailure(f"could not read alert configuration: {exc}") from exc
        finally:
            db.close()

    def add_configuration(self, cfg: AlertConfigurationIn) -> str:
        """Saves a new configuration and returns its id."""
        rule = AlertRule(id=new_id())
        _apply(rule, cfg)

        db = self._session_factory()
        try:
            db.add(rule)
            db.commit()
            config_id = rule.id
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to add alert configuration")
            raise StorageFailure(f"could not add alert configuration: {exc}") from exc
        finally:
            db.close()

        logger.info("Added alert configuration %s (%s %s %s)", config_id, cfg.metric.value, cfg.condition.value, cfg.threshold)
        return config_id

    def update_configuration(self, config_id: str, cfg: AlertConfigurationIn) -> AlertConfiguration:
        db = self._session_factory()
        try:
            rule = db.get(AlertRule, config_id)
            if rule is None:
                raise NotFoundError(f"alert configuration {config_id} not found")
            _apply(rule, cfg)
            db.commit()
            return AlertConfiguration.model_validate(rule)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to update alert configuration %s", config_id)
            raise StorageFailure(f"could not update alert configuration: {exc}") from exc
        finally:
            db.close()

    def delete_configuration(self, config_id: str) -> None:
        """
        Deletes a configuration. Its history entries stay, with their
        configuration_id cleared.
        """
        db = self._session_factory()
        try:
            removed = db.query(AlertRule).filter(AlertRule.id == config_id).delete(synchronize_session=False)
            if removed == 0:
                raise NotFoundError(f"alert configuration {config_id} not found")
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to delete alert configuration %s", config_id)
            raise StorageFailure(f"could not delete alert configuration: {exc}") from exc
        finally:
            db.close()

        logger.info("Deleted alert configuration %s", config_id)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, cpu: float, memory: float, disk: float, network: float) -> List[AlertHistoryEntry]:
        """
        Checks the given values against every enabled configuration.

        Parameters:
        - cpu, memory, disk: usage percentages
        - network: network traffic figure supplied by the metrics source

        Returns the history entries created by this call, one per breach.
        """
        values = {
            AlertMetric.CPU: cpu,
            AlertMetric.MEMORY: memory,
            AlertMetric.DISK: disk,
            AlertMetric.NETWORK: network,
        }
        now = self._clock()

        db = self._session_factory()
        try:
            rules = db.query(AlertRule).filter(AlertRule.enabled.is_(True)).all()

            triggered: List[Alert] = []
            for rule in rules:
                metric = AlertMetric(rule.metric)
                value = values[metric]
                if not is_breach(AlertCondition(rule.condition), value, rule.threshold):
                    continue

                message = generate_alert_message(metric.value, rule.condition, value, rule.threshold, rule.severity)
                alert = Alert(
                    id=new_id(),
                    configuration_id=rule.id,
                    metric=rule.metric,
                    condition=rule.condition,
                    threshold=rule.threshold,
                    severity=rule.severity,
                    triggered_at=now,
                    value=value,
                    message=message,
                    acknowledged=False,
                )
                db.add(alert)
                triggered.append(alert)
                logger.warning("ALERT: %s", message)

            db.commit()
            return [AlertHistoryEntry.model_validate(a) for a in triggered]
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to evaluate alert configurations")
            raise StorageFailure(f"could not record alerts: {exc}") from exc
        finally:
            db.close()

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def history(self, limit: int = 100, offset: int = 0) -> List[AlertHistoryEntry]:
        """
        Gets a page of alert history, newest first.
        """
        if limit < 0 or offset < 0:
            raise ValidationError("limit and offset must not be negative")

        db = self._session_factory()
        try:
            alerts = (
                db.query(Alert)
                .order_by(Alert.triggered_at.desc(), Alert.id.asc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [AlertHistoryEntry.model_validate(a) for a in alerts]
        except SQLAlchemyError as exc:
            raise StorageFailure(f"could not read alert history: {exc}") from exc
        finally:
            db.close()

    def active_alerts(self) -> List[AlertHistoryEntry]:
        """
        Gets all unacknowledged alerts.
        """
        db = self._session_factory()
        try:
            alerts = (
                db.query(Alert)
                .filter(Alert.acknowledged.is_(False))
                .order_by(Alert.triggered_at.desc(), Alert.id.asc())
                .all()
            )
            return [AlertHistoryEntry.model_validate(a) for a in alerts]
        except SQLAlchemyError as exc:
            raise StorageFailure(f"could not read active alerts: {exc}") from exc
        finally:
            db.close()

    def acknowledge(self, alert_id: str, acknowledged_by: str) -> AlertHistoryEntry:
        """
        Marks an alert as acknowledged (dismissed by user).

        Only an unacknowledged alert can be acknowledged. The update is a
        single conditional UPDATE, so two concurrent acknowledgments of
        the same alert cannot both succeed.
        """
        db = self._session_factory()
        try:
            updated = (
                db.query(Alert)
                .filter(Alert.id == alert_id, Alert.acknowledged.is_(False))
                .update(
                    {
                        Alert.acknowledged: True,
                        Alert.acknowledged_by: acknowledged_by,
                        Alert.acknowledged_at: self._clock(),
                    },
                    synchronize_session=False,
                )
            )
            if updated == 0:
                db.rollback()
                if db.get(Alert, alert_id) is None:
                    raise NotFoundError(f"alert {alert_id} not found")
                raise AlertStateError(f"alert {alert_id} is already acknowledged")

            db.commit()
            alert = db.get(Alert, alert_id)
            return AlertHistoryEntry.model_validate(alert)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to acknowledge alert %s", alert_id)
            raise StorageFailure(f"could not acknowledge alert: {exc}") from exc
        finally:
            db.close()


def _apply(rule: AlertRule, cfg: AlertConfigurationIn) -> None:
    rule.metric = cfg.metric.value
    rule.condition = cfg.condition.value
    rule.threshold = cfg.threshold
    rule.enabled = cfg.enabled
    rule.severity = cfg.severity.value
    rule.notification_methods = [m.value for m in cfg.notification_methods]
