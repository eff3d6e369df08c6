# lab_core/lab/selectors.py
from __future__ import annotations

from uuid import UUID

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db.models import F, QuerySet

from lab_core.alerts.models import AlertType
from lab_core.common.api.exceptions import NotFound
from lab_core.lab.constants import ResultStatus
from lab_core.lab.models import LabResult, LabResultParameter
from lab_core.lab.transitions import LIVE_STATUSES


def get_result(*, result_id: UUID, for_update: bool = False) -> LabResult:
    qs = LabResult.objects.select_for_update() if for_update else LabResult.objects.all()
    try:
        return qs.get(id=result_id)
    except (LabResult.DoesNotExist, ValidationError):
        raise NotFound("LabResult", result_id)


def get_result_parameter(*, result_parameter_id: UUID) -> LabResultParameter:
    try:
        return LabResultParameter.objects.select_related("result", "test_parameter").get(id=result_parameter_id)
    except (LabResultParameter.DoesNotExist, ValidationError):
        raise NotFound("LabResultParameter", result_parameter_id)


def current_result_for_item(*, order_item_id: UUID) -> LabResult | None:
    return (
        LabResult.objects.filter(order_item_id=order_item_id, status__in=LIVE_STATUSES)
        .order_by("-created_at")
        .first()
    )


def delta_eligible_statuses() -> tuple[str, ...]:
    return tuple(getattr(settings, "LAB_DELTA_CHECK_ELIGIBLE_STATUSES", (ResultStatus.FINAL,)))


def previous_parameter_for(*, result: LabResult, parameter_code: str) -> LabResultParameter | None:
    """
    Most recent prior numeric value of the same analyte for the same patient + test.

    Only results in LAB_DELTA_CHECK_ELIGIBLE_STATUSES qualify, and the result being
    entered is always excluded. Ordering is deterministic: latest validation, then
    latest entry, then id.
    """
    return (
        LabResultParameter.objects.select_related("result")
        .filter(
            result__patient_id=result.patient_id,
            result__test_id=result.test_id,
            result__status__in=delta_eligible_statuses(),
            parameter_code=parameter_code,
            numeric_value__isnull=False,
        )
        .exclude(result_id=result.id)
        .order_by(
            F("result__validated_at").desc(nulls_last=True),
            F("result__entered_at").desc(nulls_last=True),
            "-result__created_at",
            "result_id",
        )
        .first()
    )


def amendment_chain(*, result: LabResult) -> list[LabResult]:
    """
    Oldest-first list of every version of a result (originals and successors).
    """
    root = result
    while root.original_result_id:
        root = root.original_result

    chain = [root]
    current = root
    while True:
        nxt = current.amendments.order_by("created_at").first()
        if nxt is None:
            break
        chain.append(nxt)
        current = nxt
    return chain


def results_for_patient(*, patient_id: UUID, test_id: UUID | None = None) -> QuerySet[LabResult]:
    qs = LabResult.objects.filter(patient_id=patient_id).order_by("-created_at")
    if test_id:
        qs = qs.filter(test_id=test_id)
    return qs


# ----------------------------
# Worklists
# ----------------------------
def results_awaiting_validation() -> QuerySet[LabResult]:
    """
    PRELIMINARY results with entered values and no final sign-off yet.
    Empty amendment successors are still awaiting entry, not validation.
    """
    return (
        LabResult.objects.filter(
            status=ResultStatus.PRELIMINARY,
            validated_at__isnull=True,
            parameters__isnull=False,
        )
        .distinct()
        .order_by("entered_at", "id")
    )


def results_awaiting_pathologist_review() -> QuerySet[LabResult]:
    return results_awaiting_validation().filter(requires_pathologist_review=True, reviewed_by_pathologist=False)


def results_with_panic_values(*, unacknowledged_only: bool = False) -> QuerySet[LabResult]:
    qs = LabResult.objects.filter(has_panic_values=True, status__in=LIVE_STATUSES)
    if unacknowledged_only:
        qs = qs.filter(alerts__alert_type=AlertType.PANIC_VALUE, alerts__acknowledged=False).distinct()
    return qs.order_by("-entered_at", "id")
