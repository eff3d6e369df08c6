# lab_core/specimens/models.py
from django.db import models

from lab_core.catalog.models import SampleType
from lab_core.common.models import UUIDModel
from lab_core.orders.models import LabOrder, LabOrderItem


class SpecimenStatus(models.TextChoices):
    COLLECTED = "COLLECTED", "Collected"
    RECEIVED = "RECEIVED", "Received"
    PROCESSING = "PROCESSING", "Processing"
    COMPLETED = "COMPLETED", "Completed"
    REJECTED = "REJECTED", "Rejected"
    DISCARDED = "DISCARDED", "Discarded"


class QualityStatus(models.TextChoices):
    ACCEPTABLE = "ACCEPTABLE", "Acceptable"
    COMPROMISED = "COMPROMISED", "Compromised"
    REJECTED = "REJECTED", "Rejected"


class Specimen(UUIDModel):
    specimen_number = models.CharField(max_length=20, unique=True)
    barcode = models.CharField(max_length=32, unique=True)

    order = models.ForeignKey(LabOrder, on_delete=models.PROTECT, related_name="specimens")
    order_item = models.ForeignKey(LabOrderItem, on_delete=models.PROTECT, related_name="specimens")
    patient_id = models.UUIDField(db_index=True)

    specimen_type = models.CharField(max_length=16, choices=SampleType.choices)
    status = models.CharField(max_length=16, choices=SpecimenStatus.choices, default=SpecimenStatus.COLLECTED, db_index=True)
    quality_status = models.CharField(max_length=16, choices=QualityStatus.choices, default=QualityStatus.ACCEPTABLE)

    # Collection
    collected_at = models.DateTimeField()
    collected_by = models.UUIDField(null=True, blank=True)
    collection_site = models.CharField(max_length=128, blank=True, default="")
    volume_ml = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)

    # Receipt / processing
    received_at = models.DateTimeField(null=True, blank=True)
    received_by = models.UUIDField(null=True, blank=True)
    processing_started_at = models.DateTimeField(null=True, blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    # Quality
    hemolyzed = models.BooleanField(default=False)
    lipemic = models.BooleanField(default=False)
    icteric = models.BooleanField(default=False)
    quality_checked_at = models.DateTimeField(null=True, blank=True)
    quality_checked_by = models.UUIDField(null=True, blank=True)
    quality_notes = models.TextField(blank=True, default="")

    # Rejection
    rejection_reason = models.TextField(blank=True, default="")
    rejected_at = models.DateTimeField(null=True, blank=True)
    rejected_by = models.UUIDField(null=True, blank=True)

    # Storage
    storage_location = models.CharField(max_length=128, blank=True, default="")
    storage_temperature = models.CharField(max_length=32, blank=True, default="")
    stored_at = models.DateTimeField(null=True, blank=True)

    # Disposal
    disposed_at = models.DateTimeField(null=True, blank=True)
    disposed_by = models.UUIDField(null=True, blank=True)
    disposal_method = models.CharField(max_length=64, blank=True, default="")

    class Meta:
        db_table = "specimens_specimen"
        indexes = [
            models.Index(fields=["order_item", "status"]),
            models.Index(fields=["patient_id", "collected_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.specimen_number} ({self.barcode})"
