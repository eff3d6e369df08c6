# lab_core/lab/constants.py
from django.db import models


class InterpretationFlag(models.TextChoices):
    NORMAL = "NORMAL", "Normal"
    ABNORMAL = "ABNORMAL", "Abnormal"
    CRITICAL = "CRITICAL", "Critical"
    PANIC = "PANIC", "Panic"


class OverallInterpretation(models.TextChoices):
    NORMAL = "NORMAL", "Normal"
    ABNORMAL = "ABNORMAL", "Abnormal"
    CRITICAL = "CRITICAL", "Critical"


class ResultStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    PRELIMINARY = "PRELIMINARY", "Preliminary"
    FINAL = "FINAL", "Final"
    AMENDED = "AMENDED", "Amended"
    CANCELLED = "CANCELLED", "Cancelled"
    ENTERED_IN_ERROR = "ENTERED_IN_ERROR", "Entered in error"


class EntryMethod(models.TextChoices):
    MANUAL = "MANUAL", "Manual"
    INTERFACE = "INTERFACE", "Instrument interface"
    IMPORTED = "IMPORTED", "Imported"
