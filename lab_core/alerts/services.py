# lab_core/alerts/services.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from django.conf import settings
from django.db import connection, transaction
from django.utils import timezone

from lab_core.alerts.models import AlertSeverity, AlertType, CriticalValueAlert
from lab_core.alerts.notifications import AlertSummary, dispatch
from lab_core.alerts.selectors import get_alert
from lab_core.audit.services import AuditService
from lab_core.common.directory import get_directory
from lab_core.common.notes import append_note, stamp
from lab_core.lab.constants import InterpretationFlag
from lab_core.lab.models import LabResultParameter
from lab_core.lab.selectors import get_result, get_result_parameter

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"
NOTE_SEPARATOR = "\n\n"


# ----------------------------
# Classification / text
# ----------------------------
def alert_types_for(param: LabResultParameter) -> list[str]:
    types = []
    if param.interpretation_flag == InterpretationFlag.PANIC:
        types.append(AlertType.PANIC_VALUE)
    elif param.interpretation_flag == InterpretationFlag.CRITICAL:
        types.append(AlertType.CRITICAL_VALUE)
    if param.delta_check_flagged:
        types.append(AlertType.DELTA_CHECK)
    return types


def severity_for(alert_type: str, delta_percentage: Decimal | None = None) -> str:
    if alert_type == AlertType.PANIC_VALUE:
        return AlertSeverity.CRITICAL
    if alert_type == AlertType.CRITICAL_VALUE:
        return AlertSeverity.HIGH
    if alert_type == AlertType.DELTA_CHECK:
        if delta_percentage is not None and abs(delta_percentage) > 100:
            return AlertSeverity.HIGH
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW


def _bounds(label: str, low: Decimal | None, high: Decimal | None, unit: str) -> str:
    parts = []
    if low is not None:
        parts.append(f"< {low:.2f}")
    if high is not None:
        parts.append(f"> {high:.2f}")
    return f"{label}: {' or '.join(parts)} {unit}".strip()


def threshold_description(param: LabResultParameter, alert_type: str) -> str:
    if alert_type == AlertType.DELTA_CHECK:
        change = f"{param.delta_percentage:.1f}%" if param.delta_percentage is not None else "n/a"
        return f"Previous: {param.previous_value:.2f}, Change: {change}"

    tp = param.test_parameter
    if alert_type == AlertType.PANIC_VALUE and (tp.panic_low is not None or tp.panic_high is not None):
        return _bounds("Panic", tp.panic_low, tp.panic_high, param.unit)
    if tp.critical_low is not None or tp.critical_high is not None:
        return _bounds("Critical", tp.critical_low, tp.critical_high, param.unit)
    return "Critical threshold exceeded"


def _reference_range(param: LabResultParameter) -> str:
    if param.reference_text:
        return param.reference_text
    low = f"{param.reference_low:.2f}" if param.reference_low is not None else "-"
    high = f"{param.reference_high:.2f}" if param.reference_high is not None else "-"
    return f"{low} - {high} {param.unit}".strip()


def alert_message(param: LabResultParameter, alert_type: str) -> str:
    if alert_type == AlertType.DELTA_CHECK:
        if param.delta_percentage is not None:
            change = f"{param.delta_percentage:.1f}% change"
        else:
            change = f"absolute change {param.numeric_value - param.previous_value:.2f}"
        return (
            f"Unusual change detected: {param.parameter_name} changed from "
            f"{param.previous_value:.2f} to {param.numeric_value:.2f} ({change})"
        )
    label = "Panic" if alert_type == AlertType.PANIC_VALUE else "Critical"
    return f"{label} value detected: {param.parameter_name} = {param.result_value} (Normal range: {_reference_range(param)})"


def _escalation_recipient(alert: CriticalValueAlert) -> UUID | None:
    configured = getattr(settings, "LAB_ALERT_ESCALATION_RECIPIENT_ID", None)
    if configured:
        return configured if isinstance(configured, UUID) else UUID(str(configured))
    return alert.notified_to


class CriticalValueAlertService:
    """
    Alert generation, acknowledgment workflow and escalation for critical,
    panic and delta-check results.
    """

    # ----------------------------
    # Internal helpers
    # ----------------------------
    @staticmethod
    def _audit(alert: CriticalValueAlert, event_code: str, actor_id: UUID | None, **metadata) -> None:
        AuditService.log(
            event_code=event_code,
            entity_type="CriticalValueAlert",
            entity_id=alert.id,
            actor_id=actor_id,
            metadata={"alert_type": alert.alert_type, "severity": alert.severity, **metadata},
        )

    @staticmethod
    def _ensure_alert(param: LabResultParameter, alert_type: str) -> tuple[CriticalValueAlert, bool]:
        result = param.result
        order = result.order
        directory = get_directory()

        alert, created = CriticalValueAlert.objects.get_or_create(
            result_parameter=param,
            alert_type=alert_type,
            defaults={
                "result": result,
                "severity": severity_for(alert_type, param.delta_percentage),
                "test_name": result.test_name,
                "parameter_name": param.parameter_name,
                "result_value": param.result_value,
                "critical_threshold": threshold_description(param, alert_type),
                "message": alert_message(param, alert_type),
                "patient_id": result.patient_id,
                "patient_name": directory.patient_name(result.patient_id),
                "notified_to": order.ordering_doctor_id,
                "notified_to_name": directory.practitioner_name(order.ordering_doctor_id),
                "notified_at": timezone.now(),
                "created_by": SYSTEM_ACTOR,
            },
        )
        if not created:
            return alert, False

        CriticalValueAlertService._audit(alert, "alert.created", None, result_id=result.id)
        logger.warning(
            "CRITICAL VALUE ALERT %s: %s - %s = %s (threshold: %s)",
            alert.severity,
            alert.test_name,
            alert.parameter_name,
            alert.result_value,
            alert.critical_threshold,
        )
        dispatch(alert.notified_to, AlertSummary.from_alert(alert))
        return alert, True

    # ----------------------------
    # Generation
    # ----------------------------
    @staticmethod
    @transaction.atomic
    def create_alerts_for_parameter(*, result_parameter_id: UUID) -> list[CriticalValueAlert]:
        param = get_result_parameter(result_parameter_id=result_parameter_id)
        return [CriticalValueAlertService._ensure_alert(param, t)[0] for t in alert_types_for(param)]

    @staticmethod
    @transaction.atomic
    def check_for_critical_values(*, result_id: UUID) -> list[CriticalValueAlert]:
        """
        Scan every parameter of a result. Safe to repeat: an existing alert for
        the same parameter and type is returned instead of duplicated.
        """
        result = get_result(result_id=result_id)
        params = result.parameters.select_related("result__order", "test_parameter")

        alerts: list[CriticalValueAlert] = []
        created = 0
        for param in params:
            for alert_type in alert_types_for(param):
                alert, is_new = CriticalValueAlertService._ensure_alert(param, alert_type)
                alerts.append(alert)
                created += int(is_new)

        logger.info("result %s scanned: %d alert(s), %d new", result.result_number, len(alerts), created)
        return alerts

    # ----------------------------
    # Acknowledgment workflow
    # ----------------------------
    @staticmethod
    @transaction.atomic
    def acknowledge_alert(
        *, alert_id: UUID, acknowledged_by: UUID | None, acknowledged_at: datetime | None = None, notes: str = ""
    ) -> CriticalValueAlert:
        alert = get_alert(alert_id=alert_id, for_update=True)
        if alert.acknowledged:
            logger.info("alert %s already acknowledged", alert.id)
            return alert

        alert.acknowledged = True
        alert.acknowledged_by = acknowledged_by
        alert.acknowledged_at = acknowledged_at or timezone.now()
        alert.acknowledgment_notes = append_note(alert.acknowledgment_notes, notes, sep=NOTE_SEPARATOR)
        alert.save(
            update_fields=["acknowledged", "acknowledged_by", "acknowledged_at", "acknowledgment_notes", "updated_at"]
        )

        CriticalValueAlertService._audit(alert, "alert.acknowledged", acknowledged_by)
        logger.info("alert %s acknowledged by %s", alert.id, acknowledged_by)
        return alert

    @staticmethod
    @transaction.atomic
    def record_action_taken(*, alert_id: UUID, action: str, action_by: UUID | None) -> CriticalValueAlert:
        alert = get_alert(alert_id=alert_id, for_update=True)
        alert.action_taken = append_note(alert.action_taken, action, sep=NOTE_SEPARATOR)
        alert.action_taken_by = action_by
        alert.action_taken_at = timezone.now()
        alert.save(update_fields=["action_taken", "action_taken_by", "action_taken_at", "updated_at"])

        CriticalValueAlertService._audit(alert, "alert.action_taken", action_by, action=action)
        return alert

    @staticmethod
    @transaction.atomic
    def resolve_alert(*, alert_id: UUID, resolved_by: UUID | None, notes: str = "") -> CriticalValueAlert:
        alert = get_alert(alert_id=alert_id, for_update=True)
        if alert.resolved:
            return alert
        if not alert.acknowledged:
            logger.warning("resolving alert %s that has not been acknowledged", alert.id)

        alert.resolved = True
        alert.resolved_by = resolved_by
        alert.resolved_at = timezone.now()
        alert.resolution_notes = notes or ""
        alert.save(update_fields=["resolved", "resolved_by", "resolved_at", "resolution_notes", "updated_at"])

        CriticalValueAlertService._audit(alert, "alert.resolved", resolved_by, acknowledged=alert.acknowledged)
        logger.info("alert %s resolved", alert.id)
        return alert

    # ----------------------------
    # Escalation
    # ----------------------------
    @staticmethod
    @transaction.atomic
    def escalate_unacknowledged_alerts(
        *, minutes_threshold: int, now: datetime | None = None, actor: str = SYSTEM_ACTOR
    ) -> list[CriticalValueAlert]:
        """
        Escalate each alert left unacknowledged for longer than `minutes_threshold`
        minutes. An alert is escalated at most once (escalated_at is the marker).
        """
        now = now or timezone.now()
        cutoff = now - timedelta(minutes=minutes_threshold)

        candidates = (
            CriticalValueAlert.objects.select_for_update(
                skip_locked=connection.features.has_select_for_update_skip_locked
            )
            .filter(acknowledged=False, resolved=False, escalated_at__isnull=True, notified_at__lt=cutoff)
            .order_by("notified_at", "id")
        )

        escalated: list[CriticalValueAlert] = []
        for alert in candidates:
            waited = int((now - alert.notified_at).total_seconds() // 60)
            note = (
                f"ESCALATED at {stamp(now)} by {actor}: Alert unacknowledged for {waited} minutes. "
                f"Severity: {alert.severity}"
            )
            alert.acknowledgment_notes = append_note(alert.acknowledgment_notes, note, sep=NOTE_SEPARATOR)
            alert.escalated_at = now
            alert.save(update_fields=["acknowledgment_notes", "escalated_at", "updated_at"])

            CriticalValueAlertService._audit(alert, "alert.escalated", None, actor=actor, waited_minutes=waited)
            logger.warning(
                "escalating unacknowledged alert %s (notified %s, severity %s)",
                alert.id,
                alert.notified_at,
                alert.severity,
            )
            dispatch(_escalation_recipient(alert), AlertSummary.from_alert(alert, escalation=True))
            escalated.append(alert)

        logger.info("escalated %d alert(s) older than %d minutes", len(escalated), minutes_threshold)
        return escalated
