# lab_core/validation/selectors.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict
from uuid import UUID

from django.db.models import Count, QuerySet

from lab_core.lab.models import LabResult
from lab_core.validation.models import ResultValidation, ValidationLevel, ValidationStatus


def validation_history(*, result_id: UUID) -> QuerySet[ResultValidation]:
    return ResultValidation.objects.filter(result_id=result_id).order_by("validation_step")


def current_validation_level(*, result_id: UUID) -> ValidationLevel | None:
    """
    Level of the most recent APPROVED record, or None when nothing is approved yet.
    """
    level = (
        ResultValidation.objects.filter(result_id=result_id, validation_status=ValidationStatus.APPROVED)
        .order_by("-validation_step")
        .values_list("validation_level", flat=True)
        .first()
    )
    return ValidationLevel(level) if level is not None else None


def has_approval(*, result_id: UUID, level: int) -> bool:
    return ResultValidation.objects.filter(
        result_id=result_id, validation_level=level, validation_status=ValidationStatus.APPROVED
    ).exists()


def is_fully_validated(*, result_id: UUID) -> bool:
    """
    Technician approval is always required; pathologist approval only when the
    result is flagged for pathologist review.
    """
    if not has_approval(result_id=result_id, level=ValidationLevel.TECHNICIAN):
        return False
    requires_review = (
        LabResult.objects.filter(id=result_id).values_list("requires_pathologist_review", flat=True).first()
    )
    if requires_review:
        return has_approval(result_id=result_id, level=ValidationLevel.PATHOLOGIST)
    return True


def validation_statistics(*, since: datetime | None = None, until: datetime | None = None) -> Dict[str, Any]:
    qs = ResultValidation.objects.all()
    if since:
        qs = qs.filter(validated_at__gte=since)
    if until:
        qs = qs.filter(validated_at__lt=until)

    by_status = {
        row["validation_status"]: row["n"]
        for row in qs.order_by().values("validation_status").annotate(n=Count("id"))
    }
    by_level = {
        ValidationLevel(row["validation_level"]).name: row["n"]
        for row in qs.order_by().values("validation_level").annotate(n=Count("id"))
    }
    return {
        "total": sum(by_status.values()),
        "by_status": {s: by_status.get(s, 0) for s in ValidationStatus.values},
        "by_level": {lvl.name: by_level.get(lvl.name, 0) for lvl in ValidationLevel},
    }
