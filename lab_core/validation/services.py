# lab_core/validation/services.py
from __future__ import annotations

import logging
from uuid import UUID

from django.conf import settings
from django.db import transaction
from django.db.models import Max
from django.utils import timezone

from lab_core.audit.services import AuditService
from lab_core.common.api.exceptions import InvalidTransition, PreconditionFailed
from lab_core.common.directory import get_directory
from lab_core.common.events import REPEAT_TEST_REQUESTED, publish
from lab_core.common.notes import append_note
from lab_core.lab.constants import ResultStatus
from lab_core.lab.models import LabResult
from lab_core.lab.selectors import get_result
from lab_core.lab.services import NOTE_SEPARATOR, LabResultService
from lab_core.validation.models import ResultValidation, ValidationLevel, ValidationStatus
from lab_core.validation.selectors import current_validation_level

logger = logging.getLogger(__name__)

# Results in these states are out of the validation workflow
CLOSED_STATUSES = (ResultStatus.AMENDED, ResultStatus.CANCELLED, ResultStatus.ENTERED_IN_ERROR)


def _optional_levels() -> set[int]:
    return {int(x) for x in getattr(settings, "LAB_VALIDATION_OPTIONAL_LEVELS", (ValidationLevel.SENIOR_TECH,))}


def highest_allowed_level(current: ValidationLevel | None) -> ValidationLevel:
    """
    The furthest level a new record may target: the next required level after
    `current`, skipping optional ones. Nothing approved yet -> TECHNICIAN only.
    """
    if current is None:
        return ValidationLevel.TECHNICIAN
    optional = _optional_levels()
    nxt = int(current) + 1
    while nxt in optional and nxt < ValidationLevel.CLINICAL_REVIEWER:
        nxt += 1
    return ValidationLevel(min(nxt, ValidationLevel.CLINICAL_REVIEWER))


class ValidationService:
    """
    Multi-level sign-off for lab results.

    Levels: TECHNICIAN < SENIOR_TECH < PATHOLOGIST < CLINICAL_REVIEWER.
    Each call appends exactly one ResultValidation row and then applies its
    effect on the result (finalize, annotate, flag for review or cancel for repeat).
    """

    # ----------------------------
    # Internal helpers
    # ----------------------------
    @staticmethod
    def _coerce_level(level) -> ValidationLevel:
        try:
            return ValidationLevel(int(level))
        except (TypeError, ValueError):
            try:
                return ValidationLevel[str(level)]
            except KeyError:
                raise PreconditionFailed(f"Unknown validation level {level!r}")

    @staticmethod
    def _next_step(result: LabResult) -> int:
        current = ResultValidation.objects.filter(result=result).aggregate(m=Max("validation_step"))["m"]
        return (current or 0) + 1

    @staticmethod
    def _note(result: LabResult, text: str) -> None:
        result.validation_notes = append_note(result.validation_notes, text, sep=NOTE_SEPARATOR)

    @staticmethod
    def _stamp_pathologist(result: LabResult, pathologist_id: UUID | None, comments: str) -> None:
        result.reviewed_by_pathologist = True
        result.pathologist_id = pathologist_id
        result.pathologist_reviewed_at = timezone.now()
        result.pathologist_comments = comments or ""
        result.save(
            update_fields=[
                "reviewed_by_pathologist",
                "pathologist_id",
                "pathologist_reviewed_at",
                "pathologist_comments",
                "updated_at",
            ]
        )

    @staticmethod
    def _apply_approval(result: LabResult, level: ValidationLevel, validator_id: UUID | None, comments: str) -> None:
        finalizes = level == ValidationLevel.PATHOLOGIST or (
            level == ValidationLevel.TECHNICIAN and not result.requires_pathologist_review
        )
        if not finalizes:
            return

        if result.status == ResultStatus.FINAL:
            # Late pathologist sign-off on an already final result
            if level == ValidationLevel.PATHOLOGIST:
                ValidationService._stamp_pathologist(result, validator_id, comments)
            return

        LabResultService.mark_final(
            result,
            validated_by=validator_id,
            pathologist_id=validator_id if level == ValidationLevel.PATHOLOGIST else None,
            pathologist_comments=comments if level == ValidationLevel.PATHOLOGIST else "",
        )

    # ----------------------------
    # Validate
    # ----------------------------
    @staticmethod
    @transaction.atomic
    def validate_result(
        *,
        result_id: UUID,
        level,
        validator_id: UUID | None,
        status: str,
        comments: str = "",
        validator_name: str = "",
    ) -> ResultValidation:
        level = ValidationService._coerce_level(level)
        if status not in ValidationStatus.values:
            raise PreconditionFailed(f"Unknown validation status {status!r}")

        result = get_result(result_id=result_id, for_update=True)
        if result.status in CLOSED_STATUSES:
            raise InvalidTransition(
                "LabResult",
                result.status,
                ResultStatus.FINAL,
                detail=f"Cannot validate {result.status} result {result.result_number}",
            )
        # Amendment successors start PRELIMINARY with no values
        if not result.parameters.exists():
            raise PreconditionFailed(f"Result {result.result_number} has no entered parameters")

        current = current_validation_level(result_id=result.id)
        ceiling = highest_allowed_level(current)
        if level > ceiling:
            raise InvalidTransition(
                "ResultValidation",
                current.name if current is not None else "NONE",
                level.name,
                detail=f"Cannot skip validation levels. Current level: {current.name if current else 'NONE'}, "
                f"attempted level: {level.name}",
            )

        validator_name = validator_name or get_directory().practitioner_name(validator_id)
        record = ResultValidation.objects.create(
            result=result,
            validation_level=level,
            validation_step=ValidationService._next_step(result),
            validation_status=status,
            validated_by=validator_id,
            validator_name=validator_name,
            validated_at=timezone.now(),
            comments=comments or "",
        )

        if status == ValidationStatus.APPROVED:
            ValidationService._apply_approval(result, level, validator_id, comments)

        elif status == ValidationStatus.REJECTED:
            ValidationService._note(result, f"REJECTED at {level.label} level by {validator_name}: {comments}")
            result.save(update_fields=["validation_notes", "updated_at"])

        elif status == ValidationStatus.NEEDS_REVIEW:
            result.requires_pathologist_review = True
            ValidationService._note(result, f"NEEDS REVIEW - {level.label} level by {validator_name}: {comments}")
            result.save(update_fields=["requires_pathologist_review", "validation_notes", "updated_at"])

        elif status == ValidationStatus.NEEDS_REPEAT:
            ValidationService._note(result, f"REPEAT REQUIRED - {level.label} level by {validator_name}: {comments}")
            result.save(update_fields=["validation_notes", "updated_at"])
            LabResultService.cancel_result(
                result_id=result.id, reason=f"REPEAT TEST REQUIRED: {comments}", cancelled_by=validator_id
            )
            publish(
                REPEAT_TEST_REQUESTED,
                {
                    "result_id": str(result.id),
                    "order_id": str(result.order_id),
                    "order_item_id": str(result.order_item_id),
                    "requested_by": str(validator_id) if validator_id else None,
                    "reason": comments,
                },
            )
            logger.warning("repeat test requested for result %s: %s", result.result_number, comments)

        AuditService.log(
            event_code=f"validation.{status.lower()}",
            entity_type="LabResult",
            entity_id=result.id,
            actor_id=validator_id,
            metadata={"level": level.name, "step": record.validation_step},
        )
        logger.info(
            "result %s validation step %d: %s at %s", result.result_number, record.validation_step, status, level.name
        )
        return record

    # ----------------------------
    # Convenience wrappers
    # ----------------------------
    @staticmethod
    def approve(
        *, result_id: UUID, level, validator_id: UUID | None, validator_name: str = "", comments: str = ""
    ) -> ResultValidation:
        level = ValidationService._coerce_level(level)
        return ValidationService.validate_result(
            result_id=result_id,
            level=level,
            validator_id=validator_id,
            status=ValidationStatus.APPROVED,
            comments=comments or f"Result approved at {level.label} level",
            validator_name=validator_name,
        )

    @staticmethod
    def reject(
        *,
        result_id: UUID,
        level,
        validator_id: UUID | None,
        reason: str,
        requires_repeat: bool = False,
        validator_name: str = "",
    ) -> ResultValidation:
        return ValidationService.validate_result(
            result_id=result_id,
            level=level,
            validator_id=validator_id,
            status=ValidationStatus.NEEDS_REPEAT if requires_repeat else ValidationStatus.REJECTED,
            comments=reason,
            validator_name=validator_name,
        )

    @staticmethod
    def pathologist_validation(
        *, result_id: UUID, pathologist_id: UUID | None, comments: str = "", pathologist_name: str = ""
    ) -> ResultValidation:
        return ValidationService.validate_result(
            result_id=result_id,
            level=ValidationLevel.PATHOLOGIST,
            validator_id=pathologist_id,
            status=ValidationStatus.APPROVED,
            comments=comments,
            validator_name=pathologist_name,
        )
