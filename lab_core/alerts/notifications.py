# lab_core/alerts/notifications.py
"""
Outbound notification port for critical value alerts.

The notifier class is named by LAB_ALERT_NOTIFIER and must expose
`notify(recipient_id, summary)`. The default writes in-app Notification rows.
Delivery runs inside a savepoint: a failing notifier is logged and never rolls
back the alert itself.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Iterable
from uuid import UUID

from django.conf import settings
from django.db import transaction
from django.utils.module_loading import import_string

from lab_core.alerts.models import CriticalValueAlert, Notification, NotificationChannel

logger = logging.getLogger(__name__)

DEFAULT_NOTIFIER = "lab_core.alerts.notifications.InAppNotifier"


@dataclass(frozen=True)
class AlertSummary:
    alert_id: str
    alert_type: str
    severity: str
    patient_id: str
    patient_name: str
    test_name: str
    parameter_name: str
    result_value: str
    critical_threshold: str
    message: str
    escalation: bool = False

    @classmethod
    def from_alert(cls, alert: CriticalValueAlert, *, escalation: bool = False) -> "AlertSummary":
        return cls(
            alert_id=str(alert.id),
            alert_type=alert.alert_type,
            severity=alert.severity,
            patient_id=str(alert.patient_id),
            patient_name=alert.patient_name,
            test_name=alert.test_name,
            parameter_name=alert.parameter_name,
            result_value=alert.result_value,
            critical_threshold=alert.critical_threshold,
            message=alert.message,
            escalation=escalation,
        )

    @property
    def title(self) -> str:
        prefix = "ESCALATED: " if self.escalation else ""
        return f"{prefix}[{self.severity}] {self.test_name} / {self.parameter_name} = {self.result_value}"


class NotificationService:
    @staticmethod
    @transaction.atomic
    def notify_in_app(
        *,
        recipient_ids: Iterable[UUID],
        title: str,
        body: str = "",
        alert: CriticalValueAlert | None = None,
        meta: dict | None = None,
    ) -> list[Notification]:
        objs = [
            Notification(
                recipient_id=rid,
                channel=NotificationChannel.IN_APP,
                title=title,
                body=body,
                alert=alert,
                meta=meta or {},
            )
            for rid in recipient_ids
        ]
        return Notification.objects.bulk_create(objs)


class InAppNotifier:
    def notify(self, recipient_id: UUID, summary: AlertSummary) -> None:
        NotificationService.notify_in_app(
            recipient_ids=[recipient_id],
            title=summary.title,
            body=summary.message,
            alert=CriticalValueAlert.objects.filter(id=summary.alert_id).first(),
            meta=asdict(summary),
        )


def get_notifier():
    return import_string(getattr(settings, "LAB_ALERT_NOTIFIER", DEFAULT_NOTIFIER))()


def dispatch(recipient_id: UUID | None, summary: AlertSummary) -> bool:
    """
    Deliver one alert summary. Returns False when nothing was delivered.
    """
    if recipient_id is None:
        logger.warning("alert %s has no recipient; notification skipped", summary.alert_id)
        return False
    try:
        with transaction.atomic():
            get_notifier().notify(recipient_id, summary)
    except Exception:
        logger.exception("notifier failed for alert %s -> %s", summary.alert_id, recipient_id)
        return False
    return True
