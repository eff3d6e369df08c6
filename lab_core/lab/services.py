# lab_core/lab/services.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Iterable, Mapping
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from lab_core.audit.services import AuditService
from lab_core.catalog.models import LabTestParameter
from lab_core.catalog.selectors import parameters_for_test
from lab_core.common.api.exceptions import DuplicateKey, InvalidTransition, NotFound, PreconditionFailed
from lab_core.common.events import ORDER_ITEM_COMPLETED, PARAMETER_FLAGGED, publish
from lab_core.common.notes import append_note, stamp
from lab_core.common.numbering import next_result_number
from lab_core.lab.constants import EntryMethod, InterpretationFlag, ResultStatus
from lab_core.lab.evaluator import classify, delta_check, is_alert_worthy, overall_interpretation, to_decimal
from lab_core.lab.models import LabResult, LabResultParameter
from lab_core.lab.selectors import current_result_for_item, get_result, previous_parameter_for
from lab_core.lab.transitions import ENTRY_STATUSES, RESULT_TRANSITIONS
from lab_core.orders.models import LabOrderItem, OrderItemStatus, OrderStatus
from lab_core.orders.selectors import OrderSelector
from lab_core.specimens.models import SpecimenStatus
from lab_core.specimens.selectors import get_specimen
from lab_core.validation.selectors import is_fully_validated

logger = logging.getLogger(__name__)

NOTE_SEPARATOR = "\n\n"


class LabResultService:
    """
    Result entry and lifecycle.

    create_result opens a PENDING result for an order item; parameter entry
    classifies every numeric value against the snapshotted thresholds, runs the
    delta check and recomputes the result-level aggregates. Flagged parameters
    are published as lab.parameter.flagged in the same transaction.
    """

    # ----------------------------
    # Internal helpers
    # ----------------------------
    @staticmethod
    def _audit(result: LabResult, event_code: str, actor_id: UUID | None, **metadata: Any) -> None:
        AuditService.log(
            event_code=event_code,
            entity_type="LabResult",
            entity_id=result.id,
            actor_id=actor_id,
            metadata={"result_number": result.result_number, **metadata},
        )

    @staticmethod
    def _resolve_parameter(
        entry: Mapping[str, Any], by_id: dict[str, LabTestParameter], by_code: dict[str, LabTestParameter]
    ) -> LabTestParameter:
        if entry.get("test_parameter_id"):
            key = str(entry["test_parameter_id"])
            param = by_id.get(key)
        else:
            key = str(entry.get("parameter_code") or "")
            param = by_code.get(key)
        if param is None:
            raise NotFound("LabTestParameter", key)
        return param

    @staticmethod
    def _ensure_storable(param: LabTestParameter, value: Decimal) -> None:
        field = LabResultParameter._meta.get_field("numeric_value")
        integer_digits = field.max_digits - field.decimal_places
        if abs(value) >= Decimal(10) ** integer_digits:
            raise PreconditionFailed(
                f"Value {value} for {param.code} exceeds {integer_digits} integer digits",
                details={"parameter_code": param.code, "value": str(value)},
            )
        if value.as_tuple().exponent < -field.decimal_places:
            raise PreconditionFailed(
                f"Value {value} for {param.code} has more than {field.decimal_places} decimal places",
                details={"parameter_code": param.code, "value": str(value)},
            )

    @staticmethod
    def _recompute_aggregates(result: LabResult) -> None:
        params = list(result.parameters.all())
        flags = [p.interpretation_flag for p in params]
        result.has_panic_values = InterpretationFlag.PANIC in flags
        result.delta_check_flagged = any(p.delta_check_flagged for p in params)
        result.overall_interpretation = overall_interpretation(flags)

    @staticmethod
    def _release_order_item(result: LabResult) -> None:
        # Order item no longer points at a result that is out of play
        LabOrderItem.objects.filter(id=result.order_item_id, result_id=result.id).update(
            result_id=None, updated_at=timezone.now()
        )

    @staticmethod
    def _close(result: LabResult, target: str, *, reason: str, actor_id: UUID | None, label: str) -> LabResult:
        RESULT_TRANSITIONS.ensure(result.status, target)
        previous = result.status

        result.status = target
        result.cancelled_at = timezone.now()
        result.cancelled_by = actor_id
        result.cancellation_reason = reason or ""
        result.validation_notes = append_note(
            result.validation_notes,
            f"{label}: {reason} by user {actor_id} at {stamp(result.cancelled_at)}",
            sep=NOTE_SEPARATOR,
        )
        result.save(
            update_fields=[
                "status",
                "cancelled_at",
                "cancelled_by",
                "cancellation_reason",
                "validation_notes",
                "updated_at",
            ]
        )
        LabResultService._release_order_item(result)

        LabResultService._audit(result, f"result.{str(target).lower()}", actor_id, reason=reason, previous=previous)
        logger.info("result %s: %s -> %s", result.result_number, previous, target)
        return result

    @staticmethod
    def mark_final(
        result: LabResult,
        *,
        validated_by: UUID | None,
        pathologist_id: UUID | None = None,
        pathologist_comments: str = "",
    ) -> LabResult:
        """
        Move a locked result to FINAL and complete its order item.

        Shared by finalize_result and the validation workflow; callers hold the
        row lock and have already decided the result is ready.
        """
        RESULT_TRANSITIONS.ensure(result.status, ResultStatus.FINAL)
        now = timezone.now()

        result.status = ResultStatus.FINAL
        result.validated_at = now
        result.validated_by = validated_by
        fields = ["status", "validated_at", "validated_by"]
        if pathologist_id:
            result.reviewed_by_pathologist = True
            result.pathologist_id = pathologist_id
            result.pathologist_reviewed_at = now
            result.pathologist_comments = pathologist_comments or ""
            fields += ["reviewed_by_pathologist", "pathologist_id", "pathologist_reviewed_at", "pathologist_comments"]
        result.save(update_fields=[*fields, "updated_at"])

        item = OrderSelector.get_item(order_item_id=result.order_item_id, for_update=True)
        item.status = OrderItemStatus.COMPLETED
        item.result_id = result.id
        item.result_completed_at = now
        item.save(update_fields=["status", "result_id", "result_completed_at", "updated_at"])

        LabResultService._audit(result, "result.final", validated_by, pathologist_id=pathologist_id)
        logger.info("result %s finalized for order item %s", result.result_number, item.id)

        publish(
            ORDER_ITEM_COMPLETED,
            {
                "order_id": str(result.order_id),
                "order_item_id": str(item.id),
                "result_id": str(result.id),
                "completed_at": now.isoformat(),
            },
        )
        return result

    # ----------------------------
    # Create / entry
    # ----------------------------
    @staticmethod
    @transaction.atomic
    def create_result(
        *,
        order_item_id: UUID,
        specimen_id: UUID | None = None,
        entered_by: UUID | None,
        entry_method: str = EntryMethod.MANUAL,
    ) -> LabResult:
        item = OrderSelector.get_item(order_item_id=order_item_id, for_update=True)
        if item.status == OrderItemStatus.CANCELLED or item.order.status == OrderStatus.CANCELLED:
            raise PreconditionFailed(f"Order item {item.id} is cancelled; no result can be recorded")

        existing = current_result_for_item(order_item_id=item.id)
        if existing is not None:
            raise DuplicateKey(
                f"Order item {item.id} already has result {existing.result_number}",
                details={"order_item_id": str(item.id), "result_id": str(existing.id)},
            )

        specimen = None
        if specimen_id:
            specimen = get_specimen(specimen_id=specimen_id)
            if specimen.order_item_id != item.id:
                raise PreconditionFailed(f"Specimen {specimen.specimen_number} was not collected for this order item")
            if specimen.status in (SpecimenStatus.REJECTED, SpecimenStatus.DISCARDED):
                raise PreconditionFailed(f"Specimen {specimen.specimen_number} is {specimen.status}")

        result = LabResult.objects.create(
            result_number=next_result_number(),
            order=item.order,
            order_item=item,
            specimen=specimen,
            test=item.test,
            test_code=item.test_code,
            test_name=item.test_name,
            patient_id=item.order.patient_id,
            status=ResultStatus.PENDING,
            entry_method=entry_method,
            entered_by=entered_by,
            entered_at=timezone.now(),
            requires_pathologist_review=item.test.requires_pathologist_review,
        )

        item.result_id = result.id
        if item.status == OrderItemStatus.PENDING:
            item.status = OrderItemStatus.IN_PROGRESS
        item.save(update_fields=["result_id", "status", "updated_at"])

        LabResultService._audit(result, "result.created", entered_by, order_item_id=item.id)
        logger.info("result %s created for order %s / %s", result.result_number, item.order.order_number, item.test_code)
        return result

    @staticmethod
    @transaction.atomic
    def enter_result_parameters(
        *, result_id: UUID, parameters: Iterable[Mapping[str, Any]], entered_by: UUID | None
    ) -> LabResult:
        result = get_result(result_id=result_id, for_update=True)
        if result.status not in ENTRY_STATUSES:
            raise InvalidTransition(
                "LabResult",
                result.status,
                ResultStatus.PRELIMINARY,
                detail=f"Cannot enter parameters on {result.status} result {result.result_number}",
            )

        entries = list(parameters)
        if not entries:
            raise PreconditionFailed("At least one parameter value is required")

        catalog = list(parameters_for_test(test_id=result.test_id))
        by_id = {str(p.id): p for p in catalog}
        by_code = {p.code: p for p in catalog}
        taken = set(result.parameters.values_list("parameter_code", flat=True))

        created: list[LabResultParameter] = []
        for entry in entries:
            param = LabResultService._resolve_parameter(entry, by_id, by_code)
            if param.code in taken:
                raise DuplicateKey(
                    f"Parameter {param.code} already entered on result {result.result_number}",
                    details={"result_id": str(result.id), "parameter_code": param.code},
                )
            taken.add(param.code)

            raw = entry.get("value")
            text = "" if raw is None else str(raw).strip()
            numeric = to_decimal(text) if param.is_numeric else None
            if numeric is not None:
                LabResultService._ensure_storable(param, numeric)

            row = LabResultParameter(
                result=result,
                test_parameter=param,
                parameter_code=param.code,
                parameter_name=param.name,
                unit=param.unit,
                reference_low=param.normal_low,
                reference_high=param.normal_high,
                reference_text=param.normal_range_text,
                result_value=text,
                numeric_value=numeric,
                text_value="" if numeric is not None else text,
                notes=entry.get("notes") or "",
            )

            if numeric is not None:
                row.interpretation_flag = classify(
                    numeric,
                    param.normal_low,
                    param.normal_high,
                    param.critical_low,
                    param.critical_high,
                    param.panic_low,
                    param.panic_high,
                )
                if param.delta_check_enabled:
                    previous = previous_parameter_for(result=result, parameter_code=param.code)
                    if previous is not None:
                        delta = delta_check(
                            numeric,
                            previous.numeric_value,
                            param.delta_check_percentage,
                            param.delta_check_absolute,
                        )
                        row.previous_value = previous.numeric_value
                        row.delta_percentage = delta.delta_percentage
                        row.delta_check_flagged = delta.flagged
                        if result.previous_result_id is None:
                            result.previous_result = previous.result

            row.save()
            created.append(row)

        LabResultService._recompute_aggregates(result)
        if result.status == ResultStatus.PENDING:
            RESULT_TRANSITIONS.ensure(result.status, ResultStatus.PRELIMINARY)
            result.status = ResultStatus.PRELIMINARY
        result.entered_by = entered_by or result.entered_by
        result.entered_at = timezone.now()
        result.save(
            update_fields=[
                "status",
                "has_panic_values",
                "delta_check_flagged",
                "overall_interpretation",
                "previous_result",
                "entered_by",
                "entered_at",
                "updated_at",
            ]
        )

        LabResultService._audit(
            result, "result.parameters_entered", entered_by, codes=[p.parameter_code for p in created]
        )
        logger.info(
            "result %s: %d parameter(s) entered, overall=%s panic=%s delta=%s",
            result.result_number,
            len(created),
            result.overall_interpretation,
            result.has_panic_values,
            result.delta_check_flagged,
        )

        for row in created:
            if is_alert_worthy(row.interpretation_flag) or row.delta_check_flagged:
                publish(
                    PARAMETER_FLAGGED,
                    {
                        "result_id": str(result.id),
                        "result_parameter_id": str(row.id),
                        "parameter_code": row.parameter_code,
                        "interpretation_flag": row.interpretation_flag,
                        "delta_check_flagged": row.delta_check_flagged,
                    },
                )
        return result

    # ----------------------------
    # Lifecycle
    # ----------------------------
    @staticmethod
    @transaction.atomic
    def amend_result(*, result_id: UUID, reason: str, amended_by: UUID | None) -> LabResult:
        """
        Supersede a PRELIMINARY/FINAL result. The original is frozen as AMENDED and
        a new PRELIMINARY result takes over the order item; corrected values are
        entered on the successor.
        """
        original = get_result(result_id=result_id, for_update=True)
        RESULT_TRANSITIONS.ensure(original.status, ResultStatus.AMENDED)
        if not (reason or "").strip():
            raise PreconditionFailed("An amendment reason is required")

        now = timezone.now()
        previous_status = original.status
        original.status = ResultStatus.AMENDED
        original.is_amended = True
        original.amended_at = now
        original.amended_by = amended_by
        original.amendment_reason = reason
        original.save(update_fields=["status", "is_amended", "amended_at", "amended_by", "amendment_reason", "updated_at"])

        successor = LabResult.objects.create(
            result_number=next_result_number(),
            order_id=original.order_id,
            order_item_id=original.order_item_id,
            specimen_id=original.specimen_id,
            test_id=original.test_id,
            test_code=original.test_code,
            test_name=original.test_name,
            patient_id=original.patient_id,
            status=ResultStatus.PRELIMINARY,
            entry_method=original.entry_method,
            entered_by=amended_by,
            entered_at=now,
            requires_pathologist_review=original.requires_pathologist_review,
            original_result=original,
            amendment_reason=reason,
        )

        item = OrderSelector.get_item(order_item_id=original.order_item_id, for_update=True)
        item.result_id = successor.id
        fields = ["result_id"]
        if item.status == OrderItemStatus.COMPLETED:
            item.status = OrderItemStatus.IN_PROGRESS
            item.result_completed_at = None
            fields += ["status", "result_completed_at"]
        item.save(update_fields=[*fields, "updated_at"])

        LabResultService._audit(
            original, "result.amended", amended_by, reason=reason, previous=previous_status, successor_id=successor.id
        )
        logger.info("result %s amended by %s (%s)", original.result_number, successor.result_number, reason)
        return successor

    @staticmethod
    @transaction.atomic
    def cancel_result(*, result_id: UUID, reason: str, cancelled_by: UUID | None) -> LabResult:
        result = get_result(result_id=result_id, for_update=True)
        return LabResultService._close(
            result, ResultStatus.CANCELLED, reason=reason, actor_id=cancelled_by, label="CANCELLED"
        )

    @staticmethod
    @transaction.atomic
    def mark_entered_in_error(*, result_id: UUID, reason: str, marked_by: UUID | None) -> LabResult:
        result = get_result(result_id=result_id, for_update=True)
        return LabResultService._close(
            result, ResultStatus.ENTERED_IN_ERROR, reason=reason, actor_id=marked_by, label="ENTERED IN ERROR"
        )

    @staticmethod
    @transaction.atomic
    def finalize_result(*, result_id: UUID, finalized_by: UUID | None) -> LabResult:
        result = get_result(result_id=result_id, for_update=True)
        if result.status != ResultStatus.PRELIMINARY:
            raise InvalidTransition(
                "LabResult", result.status, ResultStatus.FINAL, detail="Only PRELIMINARY results can be finalized"
            )
        if not is_fully_validated(result_id=result.id):
            if result.requires_pathologist_review:
                raise PreconditionFailed(f"Result {result.result_number} requires pathologist review")
            raise PreconditionFailed(f"Result {result.result_number} has not been validated")
        return LabResultService.mark_final(result, validated_by=finalized_by)
