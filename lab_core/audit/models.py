# lab_core/audit/models.py
from django.db import models

from lab_core.common.models import UUIDModel


class AuditEvent(UUIDModel):
    """
    Immutable audit record for specimen, result and alert lifecycle actions.
    Order status changes have their own history table (orders.OrderStatusHistory).
    """
    event_code = models.CharField(max_length=128, db_index=True)  # e.g. "specimen.received"
    entity_type = models.CharField(max_length=64, db_index=True)  # e.g. "Specimen"
    entity_id = models.UUIDField(db_index=True)

    actor_id = models.UUIDField(null=True, blank=True)

    occurred_at = models.DateTimeField(auto_now_add=True, db_index=True)
    metadata = models.JSONField(default=dict)

    class Meta:
        db_table = "audit_audit_event"
        ordering = ["occurred_at", "id"]
        indexes = [
            models.Index(fields=["entity_type", "entity_id"]),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("AuditEvent rows are append-only")
        super().save(*args, **kwargs)
