# lab_core/common/notes.py
from __future__ import annotations

from datetime import datetime

from django.utils import timezone


def stamp(at: datetime | None = None) -> str:
    return timezone.localtime(at or timezone.now()).strftime("%Y-%m-%d %H:%M:%S")


def append_note(existing: str | None, note: str, sep: str = "\n") -> str:
    """
    Append-only free-text trail: existing text is never rewritten.
    """
    note = (note or "").strip()
    if not note:
        return existing or ""
    if not existing:
        return note
    return f"{existing}{sep}{note}"
