# lab_core/alerts/models.py
from __future__ import annotations

from django.db import models
from django.utils import timezone

from lab_core.common.models import UUIDModel
from lab_core.lab.models import LabResult, LabResultParameter


class AlertType(models.TextChoices):
    PANIC_VALUE = "PANIC_VALUE", "Panic value"
    CRITICAL_VALUE = "CRITICAL_VALUE", "Critical value"
    DELTA_CHECK = "DELTA_CHECK", "Delta check"


class AlertSeverity(models.TextChoices):
    CRITICAL = "CRITICAL", "Critical"
    HIGH = "HIGH", "High"
    MEDIUM = "MEDIUM", "Medium"
    LOW = "LOW", "Low"


class NotificationMethod(models.TextChoices):
    SYSTEM_ALERT = "SYSTEM_ALERT", "System alert"
    PHONE = "PHONE", "Phone"
    SMS = "SMS", "SMS"
    EMAIL = "EMAIL", "Email"


class CriticalValueAlert(UUIDModel):
    """
    One alert per (result parameter, alert type). Test / parameter / value are
    snapshotted so the alert reads the same after later amendments.
    """
    result = models.ForeignKey(LabResult, on_delete=models.CASCADE, related_name="alerts")
    result_parameter = models.ForeignKey(LabResultParameter, on_delete=models.CASCADE, related_name="alerts")

    alert_type = models.CharField(max_length=16, choices=AlertType.choices, db_index=True)
    severity = models.CharField(max_length=16, choices=AlertSeverity.choices, db_index=True)

    test_name = models.CharField(max_length=255)
    parameter_name = models.CharField(max_length=255)
    result_value = models.CharField(max_length=255, blank=True, default="")
    critical_threshold = models.CharField(max_length=255, blank=True, default="")
    message = models.TextField(blank=True, default="")

    patient_id = models.UUIDField(db_index=True)
    patient_name = models.CharField(max_length=255, blank=True, default="")

    notified_to = models.UUIDField(null=True, blank=True)
    notified_to_name = models.CharField(max_length=255, blank=True, default="")
    notified_at = models.DateTimeField(default=timezone.now)
    notification_method = models.CharField(
        max_length=16, choices=NotificationMethod.choices, default=NotificationMethod.SYSTEM_ALERT
    )

    acknowledged = models.BooleanField(default=False)
    acknowledged_by = models.UUIDField(null=True, blank=True)
    acknowledged_at = models.DateTimeField(null=True, blank=True)
    acknowledgment_notes = models.TextField(blank=True, default="")

    action_taken = models.TextField(blank=True, default="")
    action_taken_by = models.UUIDField(null=True, blank=True)
    action_taken_at = models.DateTimeField(null=True, blank=True)

    resolved = models.BooleanField(default=False)
    resolved_by = models.UUIDField(null=True, blank=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    resolution_notes = models.TextField(blank=True, default="")

    escalated_at = models.DateTimeField(null=True, blank=True)
    created_by = models.CharField(max_length=64, default="SYSTEM")

    class Meta:
        db_table = "alerts_critical_value_alert"
        constraints = [
            models.UniqueConstraint(fields=["result_parameter", "alert_type"], name="uq_alert_parameter_type"),
        ]
        indexes = [
            models.Index(fields=["acknowledged", "resolved", "notified_at"]),
            models.Index(fields=["patient_id", "created_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.alert_type}:{self.parameter_name}={self.result_value}"


class NotificationChannel(models.TextChoices):
    IN_APP = "IN_APP", "In App"
    EMAIL = "EMAIL", "Email"
    SMS = "SMS", "SMS"
    WHATSAPP = "WHATSAPP", "WhatsApp"


class Notification(UUIDModel):
    """
    Delivery record per recipient written by the in-app notifier.
    """
    recipient_id = models.UUIDField(db_index=True)

    channel = models.CharField(
        max_length=16,
        choices=NotificationChannel.choices,
        default=NotificationChannel.IN_APP,
        db_index=True,
    )

    title = models.CharField(max_length=255)
    body = models.TextField(blank=True, default="")

    alert = models.ForeignKey(
        CriticalValueAlert,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="notifications",
    )

    is_read = models.BooleanField(default=False, db_index=True)
    read_at = models.DateTimeField(null=True, blank=True)

    meta = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = "alerts_notification"
        indexes = [
            models.Index(fields=["recipient_id", "is_read"]),
        ]

    def mark_read(self) -> None:
        if not self.is_read:
            self.is_read = True
            self.read_at = timezone.now()
            self.save(update_fields=["is_read", "read_at", "updated_at"])
