# lab_core/orders/models.py
from decimal import Decimal

from django.db import models
from django.utils import timezone

from lab_core.catalog.models import LabPanel, LabTest
from lab_core.common.models import UUIDModel


class OrderPriority(models.TextChoices):
    ROUTINE = "ROUTINE", "Routine"
    URGENT = "URGENT", "Urgent"
    CITO = "CITO", "Cito"


class OrderStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    SCHEDULED = "SCHEDULED", "Scheduled"
    COLLECTED = "COLLECTED", "Specimen collected"
    RECEIVED = "RECEIVED", "Specimen received"
    IN_PROGRESS = "IN_PROGRESS", "In progress"
    COMPLETED = "COMPLETED", "Completed"
    CANCELLED = "CANCELLED", "Cancelled"


class RecurrencePattern(models.TextChoices):
    DAILY = "DAILY", "Daily"
    WEEKLY = "WEEKLY", "Weekly"
    MONTHLY = "MONTHLY", "Monthly"


class OrderItemType(models.TextChoices):
    TEST = "TEST", "Test"
    PANEL = "PANEL", "Panel"


class OrderItemStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    IN_PROGRESS = "IN_PROGRESS", "In progress"
    COMPLETED = "COMPLETED", "Completed"
    CANCELLED = "CANCELLED", "Cancelled"


# Priorities that jump the routine queue
URGENT_PRIORITIES = (OrderPriority.URGENT, OrderPriority.CITO)

# Orders still moving through the workflow
OPEN_ORDER_STATUSES = (
    OrderStatus.PENDING,
    OrderStatus.SCHEDULED,
    OrderStatus.COLLECTED,
    OrderStatus.RECEIVED,
    OrderStatus.IN_PROGRESS,
)


class LabOrder(UUIDModel):
    order_number = models.CharField(max_length=20, unique=True)

    patient_id = models.UUIDField(db_index=True)
    encounter_id = models.UUIDField(null=True, blank=True, db_index=True)
    ordering_doctor_id = models.UUIDField(db_index=True)
    ordering_department = models.CharField(max_length=128, blank=True, default="")
    ordering_location = models.CharField(max_length=128, blank=True, default="")

    priority = models.CharField(max_length=16, choices=OrderPriority.choices, default=OrderPriority.ROUTINE)
    status = models.CharField(max_length=16, choices=OrderStatus.choices, default=OrderStatus.PENDING, db_index=True)

    clinical_indication = models.TextField(blank=True, default="")
    diagnosis_code = models.CharField(max_length=32, blank=True, default="")
    notes = models.TextField(blank=True, default="")

    # Recurrence
    is_recurring = models.BooleanField(default=False)
    parent_order = models.ForeignKey(
        "self", null=True, blank=True, on_delete=models.PROTECT, related_name="recurrences"
    )
    recurrence_pattern = models.CharField(max_length=16, choices=RecurrencePattern.choices, blank=True, default="")
    recurrence_end_date = models.DateField(null=True, blank=True)
    collection_scheduled_at = models.DateTimeField(null=True, blank=True)

    # Lifecycle stamps
    scheduled_at = models.DateTimeField(null=True, blank=True)
    specimen_collected_at = models.DateTimeField(null=True, blank=True)
    specimen_received_at = models.DateTimeField(null=True, blank=True)
    processing_started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.UUIDField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True, default="")

    created_by = models.UUIDField(null=True, blank=True)

    class Meta:
        db_table = "orders_lab_order"
        indexes = [
            models.Index(fields=["patient_id", "status"]),
            models.Index(fields=["ordering_doctor_id", "created_at"]),
        ]

    def __str__(self) -> str:
        return self.order_number

    @property
    def is_urgent(self) -> bool:
        return self.priority in URGENT_PRIORITIES


class LabOrderItem(UUIDModel):
    order = models.ForeignKey(LabOrder, on_delete=models.CASCADE, related_name="items")
    test = models.ForeignKey(LabTest, on_delete=models.PROTECT, related_name="order_items")
    panel = models.ForeignKey(LabPanel, null=True, blank=True, on_delete=models.PROTECT, related_name="order_items")
    item_type = models.CharField(max_length=8, choices=OrderItemType.choices, default=OrderItemType.TEST)

    test_code = models.CharField(max_length=32)
    test_name = models.CharField(max_length=255)

    status = models.CharField(max_length=16, choices=OrderItemStatus.choices, default=OrderItemStatus.PENDING)

    # Pricing snapshot taken at order time
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    final_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    # Current result for this item (loose link; results live in lab app)
    result_id = models.UUIDField(null=True, blank=True)
    result_completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "orders_lab_order_item"
        indexes = [
            models.Index(fields=["order", "status"]),
        ]

    def __str__(self) -> str:
        return f"{self.order_id}:{self.test_code}"


class OrderStatusHistory(models.Model):
    """
    Immutable record of every order status change. Never updated or deleted.
    """
    order = models.ForeignKey(LabOrder, on_delete=models.CASCADE, related_name="status_history")
    previous_status = models.CharField(max_length=16, choices=OrderStatus.choices, blank=True, default="")
    new_status = models.CharField(max_length=16, choices=OrderStatus.choices)
    changed_by = models.UUIDField(null=True, blank=True)
    reason = models.TextField(blank=True, default="")
    changed_at = models.DateTimeField(default=timezone.now, db_index=True)
    notification_sent = models.BooleanField(default=False)

    class Meta:
        db_table = "orders_order_status_history"
        ordering = ["changed_at", "id"]

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("OrderStatusHistory rows are append-only")
        super().save(*args, **kwargs)
