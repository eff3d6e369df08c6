import pytest

from lab_core.catalog.models import LabTest
from lab_core.catalog.selectors import get_panels, get_test, panel_tests, parameters_for_test
from lab_core.common.api.exceptions import NotFound

pytestmark = pytest.mark.django_db


def test_get_test_returns_active_only(hb_test):
    assert get_test(test_id=hb_test.id) == hb_test

    hb_test.is_active = False
    hb_test.save(update_fields=["is_active"])
    with pytest.raises(NotFound):
        get_test(test_id=hb_test.id)


def test_get_test_with_malformed_id_is_not_found():
    with pytest.raises(NotFound):
        get_test(test_id="not-a-uuid")


def test_parameters_for_test_skips_retired_analytes(hb_test):
    assert set(parameters_for_test(test_id=hb_test.id).values_list("code", flat=True)) == {"HGB", "WBC", "MORPH"}

    hb_test.parameters.filter(code="MORPH").update(is_active=False)
    assert set(parameters_for_test(test_id=hb_test.id).values_list("code", flat=True)) == {"HGB", "WBC"}


def test_panel_tests_skip_inactive_members(lipid_panel):
    (panel,) = get_panels(panel_ids=[lipid_panel.id])
    assert [t.code for t in panel_tests(panel=panel)] == ["CHOL", "TG"]

    LabTest.objects.filter(code="TG").update(is_active=False)
    assert [t.code for t in panel_tests(panel=panel)] == ["CHOL"]
