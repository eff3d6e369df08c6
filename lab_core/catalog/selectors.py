# lab_core/catalog/selectors.py
from __future__ import annotations

from typing import Iterable
from uuid import UUID

from django.db.models import QuerySet

from lab_core.catalog.models import LabPanel, LabTest, LabTestParameter
from lab_core.common.api.exceptions import NotFound


def _as_uuid(value) -> UUID | None:
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except ValueError:
        return None


def _get_active(model, label: str, ids: Iterable) -> list:
    """
    Active rows in the order requested; any unknown/inactive id raises NotFound.
    """
    wanted = [(raw, _as_uuid(raw)) for raw in ids]
    found = {
        obj.id: obj
        for obj in model.objects.filter(id__in=[u for _, u in wanted if u is not None], is_active=True)
    }
    out = []
    for raw, uid in wanted:
        obj = found.get(uid)
        if obj is None:
            raise NotFound(label, raw)
        out.append(obj)
    return out


def get_test(*, test_id: UUID) -> LabTest:
    return _get_active(LabTest, "LabTest", [test_id])[0]


def get_tests(*, test_ids: Iterable[UUID]) -> list[LabTest]:
    return _get_active(LabTest, "LabTest", test_ids)


def get_panels(*, panel_ids: Iterable[UUID]) -> list[LabPanel]:
    return _get_active(LabPanel, "LabPanel", panel_ids)


def panel_tests(*, panel: LabPanel) -> list[LabTest]:
    return [pi.test for pi in panel.panel_items.select_related("test").filter(test__is_active=True)]


def parameters_for_test(*, test_id: UUID) -> QuerySet[LabTestParameter]:
    return LabTestParameter.objects.filter(test_id=test_id, is_active=True)
