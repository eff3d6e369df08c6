# lab_core/specimens/services.py
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from lab_core.audit.services import AuditService
from lab_core.common.api.exceptions import DuplicateKey, PreconditionFailed
from lab_core.common.notes import append_note, stamp
from lab_core.common.numbering import next_specimen_number
from lab_core.orders.models import OrderItemStatus, OrderStatus
from lab_core.orders.selectors import OrderSelector
from lab_core.specimens.barcodes import generate_barcode
from lab_core.specimens.models import QualityStatus, Specimen, SpecimenStatus
from lab_core.specimens.selectors import get_by_barcode, get_specimen
from lab_core.specimens.transitions import SPECIMEN_TRANSITIONS

logger = logging.getLogger(__name__)


class SpecimenService:
    """
    Write-model operations for specimens.

    Primary workflow: COLLECTED -> RECEIVED -> PROCESSING -> COMPLETED, with
    REJECTED / DISCARDED as side exits (see SPECIMEN_TRANSITIONS).
    Quality assessment, storage and notes do not move the primary status.
    """

    # ----------------------------
    # Internal helpers
    # ----------------------------
    @staticmethod
    def _transition(
        specimen: Specimen, target: str, *, actor_id: UUID | None, fields: list[str], metadata: dict | None = None
    ) -> Specimen:
        previous = specimen.status
        SPECIMEN_TRANSITIONS.ensure(previous, target)

        specimen.status = target
        specimen.save(update_fields=["status", *fields, "updated_at"])

        AuditService.log(
            event_code=f"specimen.{str(target).lower()}",
            entity_type="Specimen",
            entity_id=specimen.id,
            actor_id=actor_id,
            metadata={"from": previous, "to": target, "barcode": specimen.barcode, **(metadata or {})},
        )
        logger.info("specimen %s: %s -> %s", specimen.specimen_number, previous, target)
        return specimen

    @staticmethod
    def _ensure_not_discarded(specimen: Specimen, action: str) -> None:
        if specimen.status == SpecimenStatus.DISCARDED:
            raise PreconditionFailed(f"Cannot {action} discarded specimen {specimen.specimen_number}")

    # ----------------------------
    # Collection / receipt
    # ----------------------------
    @staticmethod
    @transaction.atomic
    def collect_specimen(
        *,
        order_item_id: UUID,
        collected_by: UUID | None,
        collected_at: datetime | None = None,
        collection_site: str = "",
        volume_ml: Decimal | None = None,
    ) -> Specimen:
        item = OrderSelector.get_item(order_item_id=order_item_id)
        if item.status == OrderItemStatus.CANCELLED or item.order.status == OrderStatus.CANCELLED:
            raise PreconditionFailed(f"Order item {item.id} is cancelled; no specimen can be collected")

        fields = dict(
            specimen_number=next_specimen_number(),
            order=item.order,
            order_item=item,
            patient_id=item.order.patient_id,
            specimen_type=item.test.sample_type,
            status=SpecimenStatus.COLLECTED,
            quality_status=QualityStatus.ACCEPTABLE,
            collected_at=collected_at or timezone.now(),
            collected_by=collected_by,
            collection_site=collection_site,
            volume_ml=volume_ml,
        )

        # A concurrent collection may take the same free barcode between the
        # existence check and the insert; the unique constraint decides.
        attempts = int(getattr(settings, "LAB_BARCODE_MAX_ATTEMPTS", 10))
        for attempt in range(1, attempts + 1):
            barcode = generate_barcode()
            try:
                with transaction.atomic():
                    specimen = Specimen.objects.create(barcode=barcode, **fields)
                break
            except IntegrityError:
                if not Specimen.objects.filter(barcode=barcode).exists():
                    raise
                logger.warning("barcode %s taken concurrently (attempt %d/%d)", barcode, attempt, attempts)
        else:
            raise DuplicateKey(f"Could not store a unique specimen barcode after {attempts} attempts")

        AuditService.log(
            event_code="specimen.collected",
            entity_type="Specimen",
            entity_id=specimen.id,
            actor_id=collected_by,
            metadata={"barcode": specimen.barcode, "order_item_id": item.id},
        )
        logger.info("specimen %s collected for order %s", specimen.specimen_number, item.order.order_number)
        return specimen

    @staticmethod
    @transaction.atomic
    def receive_specimen(*, barcode: str, received_by: UUID | None) -> Specimen:
        specimen = get_by_barcode(barcode=barcode, for_update=True)
        specimen.received_at = timezone.now()
        specimen.received_by = received_by
        return SpecimenService._transition(
            specimen, SpecimenStatus.RECEIVED, actor_id=received_by, fields=["received_at", "received_by"]
        )

    # ----------------------------
    # Quality
    # ----------------------------
    @staticmethod
    @transaction.atomic
    def perform_quality_check(
        *,
        specimen_id: UUID,
        quality_status: str,
        checked_by: UUID | None,
        hemolyzed: bool = False,
        lipemic: bool = False,
        icteric: bool = False,
        notes: str = "",
    ) -> Specimen:
        if quality_status not in QualityStatus.values:
            raise PreconditionFailed(f"Unknown quality status {quality_status!r}")

        specimen = get_specimen(specimen_id=specimen_id, for_update=True)
        SpecimenService._ensure_not_discarded(specimen, "quality-check")

        specimen.quality_status = quality_status
        specimen.hemolyzed = hemolyzed
        specimen.lipemic = lipemic
        specimen.icteric = icteric
        specimen.quality_checked_at = timezone.now()
        specimen.quality_checked_by = checked_by
        if notes:
            specimen.quality_notes = append_note(specimen.quality_notes, f"[{stamp()}] QC: {notes}")
        specimen.save(
            update_fields=[
                "quality_status",
                "hemolyzed",
                "lipemic",
                "icteric",
                "quality_checked_at",
                "quality_checked_by",
                "quality_notes",
                "updated_at",
            ]
        )

        AuditService.log(
            event_code="specimen.quality_checked",
            entity_type="Specimen",
            entity_id=specimen.id,
            actor_id=checked_by,
            metadata={"quality_status": quality_status, "hemolyzed": hemolyzed, "lipemic": lipemic, "icteric": icteric},
        )
        return specimen

    @staticmethod
    @transaction.atomic
    def add_quality_note(*, specimen_id: UUID, note: str, author_id: UUID | None) -> Specimen:
        specimen = get_specimen(specimen_id=specimen_id, for_update=True)
        specimen.quality_notes = append_note(specimen.quality_notes, f"[{stamp()}] {note}")
        specimen.save(update_fields=["quality_notes", "updated_at"])
        return specimen

    # ----------------------------
    # Processing
    # ----------------------------
    @staticmethod
    @transaction.atomic
    def process_specimen(*, specimen_id: UUID, processed_by: UUID | None) -> Specimen:
        specimen = get_specimen(specimen_id=specimen_id, for_update=True)
        SPECIMEN_TRANSITIONS.ensure(specimen.status, SpecimenStatus.PROCESSING)
        if specimen.quality_status != QualityStatus.ACCEPTABLE:
            raise PreconditionFailed(
                f"Specimen {specimen.specimen_number} quality is {specimen.quality_status}; only ACCEPTABLE can be processed"
            )

        specimen.processing_started_at = timezone.now()
        return SpecimenService._transition(
            specimen, SpecimenStatus.PROCESSING, actor_id=processed_by, fields=["processing_started_at"]
        )

    @staticmethod
    @transaction.atomic
    def complete_specimen(*, specimen_id: UUID, completed_by: UUID | None) -> Specimen:
        specimen = get_specimen(specimen_id=specimen_id, for_update=True)
        specimen.processed_at = timezone.now()
        return SpecimenService._transition(
            specimen, SpecimenStatus.COMPLETED, actor_id=completed_by, fields=["processed_at"]
        )

    @staticmethod
    @transaction.atomic
    def reject_specimen(*, specimen_id: UUID, reason: str, rejected_by: UUID | None) -> Specimen:
        specimen = get_specimen(specimen_id=specimen_id, for_update=True)
        specimen.quality_status = QualityStatus.REJECTED
        specimen.rejection_reason = reason or ""
        specimen.rejected_at = timezone.now()
        specimen.rejected_by = rejected_by
        return SpecimenService._transition(
            specimen,
            SpecimenStatus.REJECTED,
            actor_id=rejected_by,
            fields=["quality_status", "rejection_reason", "rejected_at", "rejected_by"],
            metadata={"reason": reason},
        )

    # ----------------------------
    # Storage / disposal
    # ----------------------------
    @staticmethod
    @transaction.atomic
    def store_specimen(
        *,
        specimen_id: UUID,
        storage_location: str,
        storage_temperature: str = "",
        stored_by: UUID | None = None,
    ) -> Specimen:
        specimen = get_specimen(specimen_id=specimen_id, for_update=True)
        SpecimenService._ensure_not_discarded(specimen, "store")

        specimen.storage_location = storage_location
        specimen.storage_temperature = storage_temperature
        specimen.stored_at = timezone.now()
        specimen.save(update_fields=["storage_location", "storage_temperature", "stored_at", "updated_at"])

        AuditService.log(
            event_code="specimen.stored",
            entity_type="Specimen",
            entity_id=specimen.id,
            actor_id=stored_by,
            metadata={"location": storage_location, "temperature": storage_temperature},
        )
        return specimen

    @staticmethod
    @transaction.atomic
    def dispose_specimen(*, specimen_id: UUID, disposal_method: str, disposed_by: UUID | None) -> Specimen:
        specimen = get_specimen(specimen_id=specimen_id, for_update=True)
        specimen.disposed_at = timezone.now()
        specimen.disposed_by = disposed_by
        specimen.disposal_method = disposal_method
        return SpecimenService._transition(
            specimen,
            SpecimenStatus.DISCARDED,
            actor_id=disposed_by,
            fields=["disposed_at", "disposed_by", "disposal_method"],
            metadata={"method": disposal_method},
        )
