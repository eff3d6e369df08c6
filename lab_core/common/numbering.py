# lab_core/common/numbering.py
from __future__ import annotations

from datetime import date

from django.db import transaction
from django.utils import timezone

from lab_core.common.api.exceptions import PreconditionFailed
from lab_core.common.models import DailySequence

ORDER_PREFIX = "LO"
SPECIMEN_PREFIX = "SP"
RESULT_PREFIX = "LR"


def date_stamp(on: date | None = None) -> str:
    return (on or timezone.localdate()).strftime("%Y%m%d")


@transaction.atomic
def next_number(prefix: str, width: int, on: date | None = None) -> str:
    """
    Return `prefix + yyyyMMdd + zero-padded sequence`, e.g. LO2024031500001.

    The per-day counter row is locked for the rest of the caller's
    transaction. The increment runs in a savepoint of that transaction, so a
    caller that rolls back also releases the number for reuse.
    """
    day = on or timezone.localdate()
    seq, _ = DailySequence.objects.select_for_update().get_or_create(prefix=prefix, sequence_date=day)

    value = seq.last_value + 1
    if value >= 10 ** width:
        raise PreconditionFailed(f"Daily {prefix} sequence exhausted for {day:%Y-%m-%d}")

    seq.last_value = value
    seq.save(update_fields=["last_value"])
    return f"{prefix}{date_stamp(day)}{value:0{width}d}"


def next_order_number(on: date | None = None) -> str:
    return next_number(ORDER_PREFIX, 5, on)


def next_specimen_number(on: date | None = None) -> str:
    return next_number(SPECIMEN_PREFIX, 5, on)


def next_result_number(on: date | None = None) -> str:
    return next_number(RESULT_PREFIX, 6, on)
