# lab_core/specimens/selectors.py
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from django.core.exceptions import ValidationError
from django.db.models import QuerySet

from lab_core.common.api.exceptions import NotFound
from lab_core.specimens.models import QualityStatus, Specimen, SpecimenStatus


def get_specimen(*, specimen_id: UUID, for_update: bool = False) -> Specimen:
    qs = Specimen.objects.select_for_update() if for_update else Specimen.objects.all()
    try:
        return qs.get(id=specimen_id)
    except (Specimen.DoesNotExist, ValidationError):
        raise NotFound("Specimen", specimen_id)


def get_by_barcode(*, barcode: str, for_update: bool = False) -> Specimen:
    qs = Specimen.objects.select_for_update() if for_update else Specimen.objects.all()
    try:
        return qs.get(barcode=(barcode or "").strip())
    except Specimen.DoesNotExist:
        raise NotFound("Specimen", barcode)


def specimens_for_order_item(*, order_item_id: UUID) -> QuerySet[Specimen]:
    return Specimen.objects.filter(order_item_id=order_item_id).order_by("collected_at")


# ----------------------------
# Worklists
# ----------------------------
def pending_specimens() -> QuerySet[Specimen]:
    """Specimens collected or received but not yet in processing."""
    return Specimen.objects.filter(status__in=(SpecimenStatus.COLLECTED, SpecimenStatus.RECEIVED)).order_by(
        "collected_at", "id"
    )


def rejected_specimens(*, start: datetime, end: datetime) -> QuerySet[Specimen]:
    return Specimen.objects.filter(status=SpecimenStatus.REJECTED, collected_at__range=(start, end)).order_by(
        "collected_at", "id"
    )


def specimens_with_quality_issues() -> QuerySet[Specimen]:
    return Specimen.objects.filter(
        quality_status__in=(QualityStatus.COMPROMISED, QualityStatus.REJECTED)
    ).order_by("collected_at", "id")
