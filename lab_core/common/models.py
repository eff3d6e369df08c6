# lab_core/common/models.py
from __future__ import annotations

import uuid

from django.db import models


class TimeStampedModel(models.Model):
    """
    Standard timestamps for all entities.
    """
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class UUIDModel(TimeStampedModel):
    """
    UUID primary key + timestamps. People (patients, doctors, technicians) are
    referenced by UUID only; identity lives outside the lab engine.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    class Meta:
        abstract = True


# -------------------------------------------------------------------
# Persisted daily sequences (order / specimen / result numbers)
# -------------------------------------------------------------------

class DailySequence(models.Model):
    """
    One counter per (prefix, day).

    The row is locked with select_for_update while it is incremented, so two
    concurrent transactions can never hand out the same number.
    """
    prefix = models.CharField(max_length=8)
    sequence_date = models.DateField()
    last_value = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "common_daily_sequence"
        constraints = [
            models.UniqueConstraint(fields=["prefix", "sequence_date"], name="uq_daily_sequence_prefix_date"),
        ]

    def __str__(self) -> str:
        return f"{self.prefix}{self.sequence_date:%Y%m%d}#{self.last_value}"
