# lab_core/lab/models.py
from django.db import models

from lab_core.catalog.models import LabTest, LabTestParameter
from lab_core.common.models import UUIDModel
from lab_core.lab.constants import EntryMethod, InterpretationFlag, OverallInterpretation, ResultStatus
from lab_core.orders.models import LabOrder, LabOrderItem
from lab_core.specimens.models import Specimen


class LabResult(UUIDModel):
    result_number = models.CharField(max_length=20, unique=True)

    order = models.ForeignKey(LabOrder, on_delete=models.PROTECT, related_name="results")
    order_item = models.ForeignKey(LabOrderItem, on_delete=models.PROTECT, related_name="results")
    specimen = models.ForeignKey(Specimen, null=True, blank=True, on_delete=models.PROTECT, related_name="results")
    test = models.ForeignKey(LabTest, on_delete=models.PROTECT, related_name="results")

    # Snapshot of test identity at entry time
    test_code = models.CharField(max_length=32)
    test_name = models.CharField(max_length=255)
    patient_id = models.UUIDField(db_index=True)

    status = models.CharField(max_length=20, choices=ResultStatus.choices, default=ResultStatus.PENDING, db_index=True)
    entry_method = models.CharField(max_length=16, choices=EntryMethod.choices, default=EntryMethod.MANUAL)
    entered_by = models.UUIDField(null=True, blank=True)
    entered_at = models.DateTimeField(null=True, blank=True)

    # Aggregate flags
    has_panic_values = models.BooleanField(default=False)
    delta_check_flagged = models.BooleanField(default=False)
    requires_pathologist_review = models.BooleanField(default=False)
    is_amended = models.BooleanField(default=False)
    overall_interpretation = models.CharField(
        max_length=16, choices=OverallInterpretation.choices, blank=True, default=""
    )

    # Validation / finalization
    validated_at = models.DateTimeField(null=True, blank=True)
    validated_by = models.UUIDField(null=True, blank=True)
    reviewed_by_pathologist = models.BooleanField(default=False)
    pathologist_id = models.UUIDField(null=True, blank=True)
    pathologist_reviewed_at = models.DateTimeField(null=True, blank=True)
    pathologist_comments = models.TextField(blank=True, default="")

    # Amendment chain: the successor points back at the result it supersedes
    original_result = models.ForeignKey(
        "self", null=True, blank=True, on_delete=models.PROTECT, related_name="amendments"
    )
    amended_at = models.DateTimeField(null=True, blank=True)
    amended_by = models.UUIDField(null=True, blank=True)
    amendment_reason = models.TextField(blank=True, default="")

    # Delta-check chain
    previous_result = models.ForeignKey(
        "self", null=True, blank=True, on_delete=models.SET_NULL, related_name="delta_successors"
    )

    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.UUIDField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True, default="")

    # Append-only trail of validation / cancellation notes
    validation_notes = models.TextField(blank=True, default="")
    comments = models.TextField(blank=True, default="")

    class Meta:
        db_table = "lab_result"
        indexes = [
            models.Index(fields=["patient_id", "test", "status"]),
            models.Index(fields=["order_item", "status"]),
        ]

    def __str__(self) -> str:
        return self.result_number


class LabResultParameter(UUIDModel):
    """
    One measured analyte. Reference range is snapshotted from the catalog so later
    catalog edits never change how a stored value was interpreted.
    """
    result = models.ForeignKey(LabResult, on_delete=models.CASCADE, related_name="parameters")
    test_parameter = models.ForeignKey(LabTestParameter, on_delete=models.PROTECT, related_name="result_values")

    parameter_code = models.CharField(max_length=32)
    parameter_name = models.CharField(max_length=255)
    unit = models.CharField(max_length=32, blank=True, default="")
    reference_low = models.DecimalField(max_digits=14, decimal_places=4, null=True, blank=True)
    reference_high = models.DecimalField(max_digits=14, decimal_places=4, null=True, blank=True)
    reference_text = models.CharField(max_length=255, blank=True, default="")

    result_value = models.CharField(max_length=255, blank=True, default="")
    numeric_value = models.DecimalField(max_digits=14, decimal_places=4, null=True, blank=True)
    text_value = models.TextField(blank=True, default="")

    interpretation_flag = models.CharField(max_length=16, choices=InterpretationFlag.choices, blank=True, default="")

    previous_value = models.DecimalField(max_digits=14, decimal_places=4, null=True, blank=True)
    delta_percentage = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    delta_check_flagged = models.BooleanField(default=False)

    notes = models.TextField(blank=True, default="")

    class Meta:
        db_table = "lab_result_parameter"
        ordering = ["created_at", "parameter_code"]
        constraints = [
            models.UniqueConstraint(fields=["result", "parameter_code"], name="uq_result_parameter_code"),
        ]

    def __str__(self) -> str:
        return f"{self.parameter_code}={self.result_value}"
