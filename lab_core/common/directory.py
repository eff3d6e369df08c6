# lab_core/common/directory.py
from __future__ import annotations

from functools import lru_cache
from uuid import UUID

from django.conf import settings
from django.utils.module_loading import import_string

DEFAULT_DIRECTORY = "lab_core.common.directory.PlaceholderDirectory"


class PlaceholderDirectory:
    """
    Display names for people referenced by UUID.

    Patient / practitioner registries live outside the lab engine; deployments
    point LAB_IDENTITY_DIRECTORY at a class exposing the same two methods.
    """

    def patient_name(self, patient_id: UUID | None) -> str:
        return f"Patient-{str(patient_id)[:8]}" if patient_id else "Unknown patient"

    def practitioner_name(self, practitioner_id: UUID | None) -> str:
        return f"Doctor-{str(practitioner_id)[:8]}" if practitioner_id else "Unknown practitioner"


@lru_cache(maxsize=None)
def _load(path: str):
    return import_string(path)()


def get_directory():
    return _load(getattr(settings, "LAB_IDENTITY_DIRECTORY", DEFAULT_DIRECTORY))
