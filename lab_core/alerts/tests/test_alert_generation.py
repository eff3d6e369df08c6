import logging
from decimal import Decimal

import pytest

from lab_core.alerts.models import AlertSeverity, AlertType, CriticalValueAlert, Notification
from lab_core.alerts.services import CriticalValueAlertService, severity_for
from lab_core.validation.models import ValidationLevel
from lab_core.validation.services import ValidationService

pytestmark = pytest.mark.django_db


class RecordingNotifier:
    calls = []

    def notify(self, recipient_id, summary):
        RecordingNotifier.calls.append((recipient_id, summary))


class ExplodingNotifier:
    def notify(self, recipient_id, summary):
        raise RuntimeError("pager gateway down")


@pytest.fixture
def recording_notifier(settings):
    RecordingNotifier.calls = []
    settings.LAB_ALERT_NOTIFIER = f"{__name__}.RecordingNotifier"
    return RecordingNotifier.calls


def test_panic_value_raises_alert_and_notifies_ordering_doctor(hb_order, enter_result, doctor_id, patient_id):
    _, item = hb_order
    result = enter_result(item, {"HGB": "4.2", "WBC": "7"})

    alert = CriticalValueAlert.objects.get()
    assert alert.result_id == result.id
    assert alert.alert_type == AlertType.PANIC_VALUE
    assert alert.severity == AlertSeverity.CRITICAL
    assert alert.test_name == "Hemoglobin"
    assert alert.parameter_name == "Hemoglobin"
    assert alert.result_value == "4.2"
    assert alert.critical_threshold == "Panic: < 5.00 or > 25.00 g/dL"
    assert alert.message == "Panic value detected: Hemoglobin = 4.2 (Normal range: 12.00 - 16.00 g/dL)"
    assert alert.patient_id == patient_id
    assert alert.patient_name == f"Patient-{str(patient_id)[:8]}"
    assert alert.notified_to == doctor_id
    assert alert.notified_to_name == f"Doctor-{str(doctor_id)[:8]}"
    assert alert.created_by == "SYSTEM"
    assert alert.acknowledged is False

    note = Notification.objects.get(recipient_id=doctor_id)
    assert note.alert_id == alert.id
    assert note.title.startswith("[CRITICAL] Hemoglobin")
    assert note.meta["alert_type"] == AlertType.PANIC_VALUE


def test_critical_value_alert_is_high_severity(hb_order, enter_result):
    _, item = hb_order
    enter_result(item, {"WBC": "1.5"})

    alert = CriticalValueAlert.objects.get()
    assert alert.alert_type == AlertType.CRITICAL_VALUE
    assert alert.severity == AlertSeverity.HIGH
    assert alert.critical_threshold == "Critical: < 2.00 or > 30.00 10^3/uL"


def test_abnormal_values_raise_no_alert(hb_order, enter_result):
    _, item = hb_order
    result = enter_result(item, {"HGB": "11.0", "WBC": "12"})

    assert not CriticalValueAlert.objects.exists()
    assert CriticalValueAlertService.check_for_critical_values(result_id=result.id) == []


def test_delta_flag_raises_delta_alert(hb_order, make_order, hb_test, enter_result, tech_id):
    _, item = hb_order
    first = enter_result(item, {"HGB": "14.0"})
    ValidationService.approve(result_id=first.id, level=ValidationLevel.TECHNICIAN, validator_id=tech_id)

    _, items = make_order(test_ids=[hb_test.id])
    enter_result(items[0], {"HGB": "10.0"})

    alert = CriticalValueAlert.objects.get()
    assert alert.alert_type == AlertType.DELTA_CHECK
    assert alert.severity == AlertSeverity.MEDIUM
    assert alert.message == "Unusual change detected: Hemoglobin changed from 14.00 to 10.00 (-28.6% change)"
    assert alert.critical_threshold == "Previous: 14.00, Change: -28.6%"


def test_panic_with_delta_yields_one_alert_per_type(hb_order, make_order, hb_test, enter_result, tech_id):
    _, item = hb_order
    first = enter_result(item, {"HGB": "14.0"})
    ValidationService.approve(result_id=first.id, level=ValidationLevel.TECHNICIAN, validator_id=tech_id)

    _, items = make_order(test_ids=[hb_test.id])
    enter_result(items[0], {"HGB": "4.0"})

    types = set(CriticalValueAlert.objects.values_list("alert_type", flat=True))
    assert types == {AlertType.PANIC_VALUE, AlertType.DELTA_CHECK}


@pytest.mark.parametrize(
    "alert_type, pct, expected",
    [
        (AlertType.PANIC_VALUE, None, AlertSeverity.CRITICAL),
        (AlertType.CRITICAL_VALUE, None, AlertSeverity.HIGH),
        (AlertType.DELTA_CHECK, Decimal("150"), AlertSeverity.HIGH),
        (AlertType.DELTA_CHECK, Decimal("-150"), AlertSeverity.HIGH),
        (AlertType.DELTA_CHECK, Decimal("100"), AlertSeverity.MEDIUM),
        (AlertType.DELTA_CHECK, None, AlertSeverity.MEDIUM),
    ],
)
def test_severity_mapping(alert_type, pct, expected):
    assert severity_for(alert_type, pct) == expected


def test_rescan_never_duplicates(hb_order, enter_result, doctor_id):
    _, item = hb_order
    result = enter_result(item, {"HGB": "4.2", "WBC": "1.0"})
    assert CriticalValueAlert.objects.count() == 2

    first = CriticalValueAlertService.check_for_critical_values(result_id=result.id)
    second = CriticalValueAlertService.check_for_critical_values(result_id=result.id)

    assert {a.id for a in first} == {a.id for a in second}
    assert CriticalValueAlert.objects.count() == 2
    assert Notification.objects.filter(recipient_id=doctor_id).count() == 2


def test_notifier_receives_summary(recording_notifier, hb_order, enter_result, doctor_id):
    _, item = hb_order
    enter_result(item, {"HGB": "30"})

    assert len(recording_notifier) == 1
    recipient, summary = recording_notifier[0]
    assert recipient == doctor_id
    assert summary.alert_type == AlertType.PANIC_VALUE
    assert summary.result_value == "30"
    assert summary.escalation is False
    assert not Notification.objects.exists()


def test_notifier_failure_never_rolls_back_alert(settings, caplog, hb_order, enter_result):
    settings.LAB_ALERT_NOTIFIER = f"{__name__}.ExplodingNotifier"
    _, item = hb_order

    with caplog.at_level(logging.ERROR, logger="lab_core.alerts"):
        result = enter_result(item, {"HGB": "4.2"})

    assert result.has_panic_values is True
    alert = CriticalValueAlert.objects.get()
    assert alert.result_id == result.id
    assert any("notifier failed" in r.getMessage() for r in caplog.records)
