from datetime import timedelta

import pytest
from django.utils import timezone

from lab_core.audit.selectors import audit_trail
from lab_core.catalog.models import SampleType
from lab_core.common.api.exceptions import InvalidTransition, NotFound, PreconditionFailed
from lab_core.orders.services import OrderService
from lab_core.specimens.models import QualityStatus, SpecimenStatus
from lab_core.specimens.services import SpecimenService

pytestmark = pytest.mark.django_db


def test_collect_derives_type_and_identifiers(make_order, lipid_panel, tech_id, patient_id):
    _, items = make_order(panel_ids=[lipid_panel.id])
    collected_at = timezone.now() - timedelta(minutes=5)

    specimen = SpecimenService.collect_specimen(
        order_item_id=items[0].id, collected_by=tech_id, collected_at=collected_at, collection_site="Left antecubital"
    )

    today = timezone.localdate().strftime("%Y%m%d")
    assert specimen.specimen_number.startswith("SP" + today)
    assert len(specimen.specimen_number) == 15
    assert specimen.barcode.startswith("SP" + today)
    assert len(specimen.barcode) == 16
    assert specimen.specimen_type == SampleType.SERUM
    assert specimen.status == SpecimenStatus.COLLECTED
    assert specimen.quality_status == QualityStatus.ACCEPTABLE
    assert specimen.collected_at == collected_at
    assert specimen.patient_id == patient_id


def test_collect_refuses_cancelled_order(hb_order, tech_id, doctor_id):
    order, item = hb_order
    OrderService.cancel_order(order_id=order.id, cancelled_by=doctor_id, reason="wrong patient")

    with pytest.raises(PreconditionFailed):
        SpecimenService.collect_specimen(order_item_id=item.id, collected_by=tech_id)


def test_receive_requires_collected(received_specimen, tech_id):
    assert received_specimen.status == SpecimenStatus.RECEIVED
    assert received_specimen.received_by == tech_id
    assert received_specimen.received_at is not None

    with pytest.raises(InvalidTransition) as exc:
        SpecimenService.receive_specimen(barcode=received_specimen.barcode, received_by=tech_id)
    assert exc.value.current_state == SpecimenStatus.RECEIVED


def test_receive_unknown_barcode_is_not_found(tech_id):
    with pytest.raises(NotFound):
        SpecimenService.receive_specimen(barcode="SP20240101999999", received_by=tech_id)


def test_full_workflow_with_storage_and_disposal(received_specimen, tech_id):
    s = SpecimenService.process_specimen(specimen_id=received_specimen.id, processed_by=tech_id)
    assert s.status == SpecimenStatus.PROCESSING
    assert s.processing_started_at is not None

    s = SpecimenService.complete_specimen(specimen_id=s.id, completed_by=tech_id)
    assert s.status == SpecimenStatus.COMPLETED

    s = SpecimenService.store_specimen(
        specimen_id=s.id, storage_location="Fridge B / Rack 4", storage_temperature="2-8C", stored_by=tech_id
    )
    assert s.status == SpecimenStatus.COMPLETED
    assert s.storage_location == "Fridge B / Rack 4"
    assert s.stored_at is not None

    s = SpecimenService.dispose_specimen(specimen_id=s.id, disposal_method="Autoclave", disposed_by=tech_id)
    assert s.status == SpecimenStatus.DISCARDED
    assert s.disposal_method == "Autoclave"

    with pytest.raises(PreconditionFailed):
        SpecimenService.store_specimen(specimen_id=s.id, storage_location="Freezer", stored_by=tech_id)

    codes = list(audit_trail(entity_type="Specimen", entity_id=s.id).values_list("event_code", flat=True))
    assert codes == [
        "specimen.collected",
        "specimen.received",
        "specimen.processing",
        "specimen.completed",
        "specimen.stored",
        "specimen.discarded",
    ]


def test_process_requires_acceptable_quality(received_specimen, tech_id):
    SpecimenService.perform_quality_check(
        specimen_id=received_specimen.id,
        quality_status=QualityStatus.COMPROMISED,
        hemolyzed=True,
        notes="Grossly hemolyzed",
        checked_by=tech_id,
    )

    with pytest.raises(PreconditionFailed):
        SpecimenService.process_specimen(specimen_id=received_specimen.id, processed_by=tech_id)

    received_specimen.refresh_from_db()
    assert received_specimen.status == SpecimenStatus.RECEIVED
    assert received_specimen.hemolyzed is True
    assert "Grossly hemolyzed" in received_specimen.quality_notes


def test_process_requires_received(hb_order, tech_id):
    _, item = hb_order
    specimen = SpecimenService.collect_specimen(order_item_id=item.id, collected_by=tech_id)

    with pytest.raises(InvalidTransition):
        SpecimenService.process_specimen(specimen_id=specimen.id, processed_by=tech_id)


def test_quality_check_does_not_move_status(received_specimen, tech_id):
    s = SpecimenService.perform_quality_check(
        specimen_id=received_specimen.id,
        quality_status=QualityStatus.ACCEPTABLE,
        lipemic=True,
        checked_by=tech_id,
    )
    assert s.status == SpecimenStatus.RECEIVED
    assert s.lipemic is True
    assert s.quality_checked_by == tech_id


@pytest.mark.parametrize("steps", [0, 1, 2])
def test_reject_from_any_active_state(hb_order, tech_id, steps):
    _, item = hb_order
    s = SpecimenService.collect_specimen(order_item_id=item.id, collected_by=tech_id)
    if steps >= 1:
        s = SpecimenService.receive_specimen(barcode=s.barcode, received_by=tech_id)
    if steps >= 2:
        s = SpecimenService.process_specimen(specimen_id=s.id, processed_by=tech_id)

    s = SpecimenService.reject_specimen(specimen_id=s.id, reason="Clotted", rejected_by=tech_id)
    assert s.status == SpecimenStatus.REJECTED
    assert s.quality_status == QualityStatus.REJECTED
    assert s.rejection_reason == "Clotted"

    with pytest.raises(InvalidTransition):
        SpecimenService.reject_specimen(specimen_id=s.id, reason="again", rejected_by=tech_id)


def test_quality_notes_are_append_only(received_specimen, tech_id):
    SpecimenService.add_quality_note(specimen_id=received_specimen.id, note="Label re-printed", author_id=tech_id)
    s = SpecimenService.add_quality_note(specimen_id=received_specimen.id, note="Volume low", author_id=tech_id)

    lines = s.quality_notes.splitlines()
    assert len(lines) == 2
    assert lines[0].endswith("Label re-printed")
    assert lines[1].endswith("Volume low")
