# lab_core/validation/models.py
from django.db import models

from lab_core.common.models import UUIDModel
from lab_core.lab.models import LabResult


class ValidationLevel(models.IntegerChoices):
    TECHNICIAN = 1, "Technician"
    SENIOR_TECH = 2, "Senior Technician"
    PATHOLOGIST = 3, "Pathologist"
    CLINICAL_REVIEWER = 4, "Clinical Reviewer"


class ValidationStatus(models.TextChoices):
    APPROVED = "APPROVED", "Approved"
    REJECTED = "REJECTED", "Rejected"
    NEEDS_REVIEW = "NEEDS_REVIEW", "Needs review"
    NEEDS_REPEAT = "NEEDS_REPEAT", "Needs repeat"


class ResultValidation(UUIDModel):
    """
    One sign-off decision on a result. Rows are insert-only; the history of a
    result is read back ordered by validation_step.
    """
    result = models.ForeignKey(LabResult, on_delete=models.CASCADE, related_name="validations")

    validation_level = models.PositiveSmallIntegerField(choices=ValidationLevel.choices)
    validation_step = models.PositiveIntegerField()
    validation_status = models.CharField(max_length=16, choices=ValidationStatus.choices, db_index=True)

    validated_by = models.UUIDField(null=True, blank=True)
    validator_name = models.CharField(max_length=255, blank=True, default="")
    validated_at = models.DateTimeField()
    comments = models.TextField(blank=True, default="")

    class Meta:
        db_table = "validation_result_validation"
        ordering = ["validation_step"]
        constraints = [
            models.UniqueConstraint(fields=["result", "validation_step"], name="uq_result_validation_step"),
        ]

    def __str__(self) -> str:
        return f"{self.result_id}#{self.validation_step} {self.get_validation_level_display()} {self.validation_status}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("ResultValidation rows are append-only")
        super().save(*args, **kwargs)
