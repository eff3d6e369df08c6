# conftest.py
import uuid
from decimal import Decimal

import pytest

from lab_core.catalog.models import LabPanel, LabPanelItem, LabTest, LabTestParameter, SampleType


def _uuid():
    return uuid.uuid4()


@pytest.fixture
def patient_id():
    return _uuid()


@pytest.fixture
def doctor_id():
    return _uuid()


@pytest.fixture
def tech_id():
    return _uuid()


@pytest.fixture
def pathologist_id():
    return _uuid()


@pytest.fixture
def make_test(db):
    """
    Factory for catalog tests with one or more parameters.
    Parameters are dicts of LabTestParameter fields (code/name required).
    """
    def _make(code, name=None, *, sample_type=SampleType.BLOOD, base_cost="50000.00",
              requires_pathologist_review=False, parameters=()):
        test = LabTest.objects.create(
            code=code,
            name=name or code,
            sample_type=sample_type,
            base_cost=Decimal(base_cost),
            requires_pathologist_review=requires_pathologist_review,
        )
        for idx, p in enumerate(parameters):
            LabTestParameter.objects.create(test=test, display_order=idx, **p)
        return test
    return _make


@pytest.fixture
def hb_test(make_test):
    """
    Hemoglobin with the full band ladder and a 20% delta check.
    """
    return make_test(
        "HB",
        "Hemoglobin",
        base_cost="40000.00",
        parameters=[
            dict(
                code="HGB",
                name="Hemoglobin",
                unit="g/dL",
                normal_low=Decimal("12"),
                normal_high=Decimal("16"),
                critical_low=Decimal("7"),
                critical_high=Decimal("20"),
                panic_low=Decimal("5"),
                panic_high=Decimal("25"),
                delta_check_enabled=True,
                delta_check_percentage=Decimal("20"),
            ),
            dict(
                code="WBC",
                name="Leukocytes",
                unit="10^3/uL",
                normal_low=Decimal("4"),
                normal_high=Decimal("11"),
                critical_low=Decimal("2"),
                critical_high=Decimal("30"),
            ),
            dict(code="MORPH", name="Morphology", data_type="TEXT", normal_range_text="Normocytic"),
        ],
    )


@pytest.fixture
def biopsy_test(make_test):
    return make_test(
        "BX",
        "Bone marrow biopsy",
        sample_type=SampleType.TISSUE,
        base_cost="750000.00",
        requires_pathologist_review=True,
        parameters=[dict(code="BLAST", name="Blast %", unit="%", normal_low=Decimal("0"), normal_high=Decimal("5"))],
    )


@pytest.fixture
def lipid_panel(make_test):
    chol = make_test("CHOL", "Cholesterol", sample_type=SampleType.SERUM, base_cost="30000.00",
                     parameters=[dict(code="CHOL", name="Total cholesterol", unit="mg/dL", normal_high=Decimal("200"))])
    tg = make_test("TG", "Triglycerides", sample_type=SampleType.SERUM, base_cost="35000.00",
                   parameters=[dict(code="TG", name="Triglycerides", unit="mg/dL", normal_high=Decimal("150"))])
    panel = LabPanel.objects.create(code="LIPID", name="Lipid profile")
    LabPanelItem.objects.create(panel=panel, test=chol, display_order=1)
    LabPanelItem.objects.create(panel=panel, test=tg, display_order=2)
    return panel


@pytest.fixture
def make_order(db, patient_id, doctor_id):
    from lab_core.orders.services import OrderService

    def _make(*, test_ids=(), panel_ids=(), patient=None, **kwargs):
        return OrderService.create_order(
            patient_id=patient or patient_id,
            ordering_doctor_id=kwargs.pop("ordering_doctor_id", doctor_id),
            test_ids=test_ids,
            panel_ids=panel_ids,
            **kwargs,
        )
    return _make


@pytest.fixture
def hb_order(make_order, hb_test):
    order, items = make_order(test_ids=[hb_test.id])
    return order, items[0]


@pytest.fixture
def received_specimen(hb_order, tech_id):
    """
    HB specimen collected and received (ready for processing / result entry).
    """
    from lab_core.specimens.services import SpecimenService

    _, item = hb_order
    specimen = SpecimenService.collect_specimen(order_item_id=item.id, collected_by=tech_id)
    return SpecimenService.receive_specimen(barcode=specimen.barcode, received_by=tech_id)


@pytest.fixture
def enter_result(tech_id):
    """
    Create a result for an order item and enter parameter values in one call.
    values: {"HGB": "13.2", ...}
    """
    from lab_core.lab.services import LabResultService

    def _enter(item, values, specimen=None):
        result = LabResultService.create_result(
            order_item_id=item.id,
            specimen_id=getattr(specimen, "id", None),
            entered_by=tech_id,
        )
        return LabResultService.enter_result_parameters(
            result_id=result.id,
            parameters=[{"parameter_code": code, "value": value} for code, value in values.items()],
            entered_by=tech_id,
        )
    return _enter


@pytest.fixture
def captured_events():
    """
    Subscribe a recorder to the given event names for the duration of a test.
    Usage: events = captured_events("lab.order_item.completed"); ...; events[0]["order_item_id"]
    """
    from lab_core.common.events import subscribe, unsubscribe

    registered = []

    def _capture(*event_names):
        seen = []

        def _record(payload):
            seen.append(payload)

        for name in event_names:
            subscribe(name)(_record)
            registered.append((name, _record))
        return seen

    yield _capture

    for name, fn in registered:
        unsubscribe(name, fn)
