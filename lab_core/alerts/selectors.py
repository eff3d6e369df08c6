# lab_core/alerts/selectors.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict
from uuid import UUID

from django.core.exceptions import ValidationError
from django.db.models import Count, QuerySet

from lab_core.alerts.models import AlertType, CriticalValueAlert, Notification
from lab_core.common.api.exceptions import NotFound


def get_alert(*, alert_id: UUID, for_update: bool = False) -> CriticalValueAlert:
    qs = CriticalValueAlert.objects.select_for_update() if for_update else CriticalValueAlert.objects.all()
    try:
        return qs.get(id=alert_id)
    except (CriticalValueAlert.DoesNotExist, ValidationError):
        raise NotFound("CriticalValueAlert", alert_id)


def unacknowledged_alerts() -> QuerySet[CriticalValueAlert]:
    return CriticalValueAlert.objects.filter(acknowledged=False, resolved=False).order_by("notified_at", "id")


def alerts_for_patient(*, patient_id: UUID) -> QuerySet[CriticalValueAlert]:
    return CriticalValueAlert.objects.filter(patient_id=patient_id).order_by("-created_at")


def alerts_for_result(*, result_id: UUID) -> QuerySet[CriticalValueAlert]:
    return CriticalValueAlert.objects.filter(result_id=result_id).order_by("created_at", "alert_type")


def notifications_for(*, recipient_id: UUID, unread_only: bool = False) -> QuerySet[Notification]:
    qs = Notification.objects.filter(recipient_id=recipient_id).order_by("-created_at")
    if unread_only:
        qs = qs.filter(is_read=False)
    return qs


def alert_statistics(*, since: datetime | None = None, until: datetime | None = None) -> Dict[str, Any]:
    qs = CriticalValueAlert.objects.all()
    if since:
        qs = qs.filter(created_at__gte=since)
    if until:
        qs = qs.filter(created_at__lt=until)

    by_type = {row["alert_type"]: row["n"] for row in qs.order_by().values("alert_type").annotate(n=Count("id"))}
    return {
        "total": qs.count(),
        "by_type": {t: by_type.get(t, 0) for t in AlertType.values},
        "acknowledged": qs.filter(acknowledged=True).count(),
        "unresolved": qs.filter(resolved=False).count(),
        "escalated": qs.filter(escalated_at__isnull=False).count(),
    }
