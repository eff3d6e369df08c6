# lab_core/catalog/models.py
"""
Read-only lab configuration consumed by the workflow engine.

Catalog management (create/edit screens, categories, pricing rules) belongs to
a separate collaborator; the engine only reads these rows.
"""
from decimal import Decimal

from django.db import models

from lab_core.common.models import UUIDModel


class SampleType(models.TextChoices):
    BLOOD = "BLOOD", "Whole blood"
    SERUM = "SERUM", "Serum"
    PLASMA = "PLASMA", "Plasma"
    URINE = "URINE", "Urine"
    STOOL = "STOOL", "Stool"
    CSF = "CSF", "Cerebrospinal fluid"
    SPUTUM = "SPUTUM", "Sputum"
    SWAB = "SWAB", "Swab"
    TISSUE = "TISSUE", "Tissue"
    OTHER = "OTHER", "Other"


class ParameterDataType(models.TextChoices):
    NUMERIC = "NUMERIC", "Numeric"
    TEXT = "TEXT", "Text"


class LabTest(UUIDModel):
    code = models.CharField(max_length=32, unique=True)
    name = models.CharField(max_length=255)
    sample_type = models.CharField(max_length=16, choices=SampleType.choices, default=SampleType.BLOOD)
    base_cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    requires_pathologist_review = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True, db_index=True)

    class Meta:
        db_table = "catalog_lab_test"

    def __str__(self) -> str:
        return f"{self.code} {self.name}"


class LabPanel(UUIDModel):
    code = models.CharField(max_length=32, unique=True)
    name = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True, db_index=True)

    tests = models.ManyToManyField(LabTest, through="LabPanelItem", related_name="panels")

    class Meta:
        db_table = "catalog_lab_panel"

    def __str__(self) -> str:
        return f"{self.code} {self.name}"


class LabPanelItem(models.Model):
    panel = models.ForeignKey(LabPanel, on_delete=models.CASCADE, related_name="panel_items")
    test = models.ForeignKey(LabTest, on_delete=models.PROTECT, related_name="panel_items")
    display_order = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "catalog_lab_panel_item"
        ordering = ["display_order", "id"]
        constraints = [
            models.UniqueConstraint(fields=["panel", "test"], name="uq_panel_item_panel_test"),
        ]


class LabTestParameter(UUIDModel):
    """
    One analyte of a test: reference range, critical/panic thresholds and
    delta-check configuration. Thresholds left empty are simply not evaluated.
    """
    test = models.ForeignKey(LabTest, on_delete=models.CASCADE, related_name="parameters")
    code = models.CharField(max_length=32)
    name = models.CharField(max_length=255)
    unit = models.CharField(max_length=32, blank=True, default="")
    data_type = models.CharField(max_length=16, choices=ParameterDataType.choices, default=ParameterDataType.NUMERIC)

    normal_low = models.DecimalField(max_digits=14, decimal_places=4, null=True, blank=True)
    normal_high = models.DecimalField(max_digits=14, decimal_places=4, null=True, blank=True)
    normal_range_text = models.CharField(max_length=255, blank=True, default="")

    critical_low = models.DecimalField(max_digits=14, decimal_places=4, null=True, blank=True)
    critical_high = models.DecimalField(max_digits=14, decimal_places=4, null=True, blank=True)
    panic_low = models.DecimalField(max_digits=14, decimal_places=4, null=True, blank=True)
    panic_high = models.DecimalField(max_digits=14, decimal_places=4, null=True, blank=True)

    delta_check_enabled = models.BooleanField(default=False)
    delta_check_percentage = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    delta_check_absolute = models.DecimalField(max_digits=14, decimal_places=4, null=True, blank=True)

    display_order = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "catalog_lab_test_parameter"
        ordering = ["display_order", "code"]
        constraints = [
            models.UniqueConstraint(fields=["test", "code"], name="uq_test_parameter_code"),
        ]

    def __str__(self) -> str:
        return f"{self.test_id}:{self.code}"

    @property
    def is_numeric(self) -> bool:
        return self.data_type == ParameterDataType.NUMERIC
