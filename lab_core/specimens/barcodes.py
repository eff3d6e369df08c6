# lab_core/specimens/barcodes.py
"""
Specimen barcodes: SP + yyyyMMdd + 6 random digits, optionally followed by a
Luhn check digit computed over every digit after the prefix.

    SP20240315482913     (16 chars)
    SP202403154829137    (17 chars, LAB_BARCODE_CHECK_DIGIT = True)
"""
from __future__ import annotations

import logging
import re
import secrets
from datetime import date

from django.conf import settings

from lab_core.common.api.exceptions import DuplicateKey
from lab_core.common.numbering import SPECIMEN_PREFIX, date_stamp

logger = logging.getLogger(__name__)

SUFFIX_DIGITS = 6
_BARCODE_RE = re.compile(rf"^{SPECIMEN_PREFIX}(\d{{8}})(\d{{{SUFFIX_DIGITS}}})(\d?)$")


def luhn_check_digit(digits: str) -> int:
    """
    Luhn (mod 10) check digit for a string of digits: double every second
    digit starting from the rightmost, subtract 9 from doubled values above 9.
    """
    if not digits.isdigit():
        raise ValueError(f"luhn_check_digit() needs digits only, got {digits!r}")

    total = 0
    for idx, ch in enumerate(reversed(digits)):
        d = int(ch)
        if idx % 2 == 0:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return (10 - total % 10) % 10


def verify_check_digit(barcode: str) -> bool:
    m = _BARCODE_RE.match(barcode or "")
    if not m or not m.group(3):
        return False
    body = m.group(1) + m.group(2)
    return luhn_check_digit(body) == int(m.group(3))


def is_valid_barcode(barcode: str, with_check_digit: bool | None = None) -> bool:
    """
    Layout check; with_check_digit defaults to LAB_BARCODE_CHECK_DIGIT.
    """
    if with_check_digit is None:
        with_check_digit = getattr(settings, "LAB_BARCODE_CHECK_DIGIT", False)

    m = _BARCODE_RE.match(barcode or "")
    if not m:
        return False
    if with_check_digit:
        return verify_check_digit(barcode)
    return m.group(3) == ""


def _random_suffix() -> str:
    return f"{secrets.randbelow(10 ** SUFFIX_DIGITS):0{SUFFIX_DIGITS}d}"


def build_barcode(suffix: str, on: date | None = None, with_check_digit: bool | None = None) -> str:
    if with_check_digit is None:
        with_check_digit = getattr(settings, "LAB_BARCODE_CHECK_DIGIT", False)
    body = f"{date_stamp(on)}{suffix}"
    check = str(luhn_check_digit(body)) if with_check_digit else ""
    return f"{SPECIMEN_PREFIX}{body}{check}"


def generate_barcode(on: date | None = None) -> str:
    """
    Random, collision-checked barcode. Retries with a fresh suffix up to
    LAB_BARCODE_MAX_ATTEMPTS times; the unique constraint on Specimen.barcode
    stays the final guard against a concurrent insert.
    """
    from lab_core.specimens.models import Specimen

    attempts = int(getattr(settings, "LAB_BARCODE_MAX_ATTEMPTS", 10))
    for attempt in range(1, attempts + 1):
        candidate = build_barcode(_random_suffix(), on=on)
        if not Specimen.objects.filter(barcode=candidate).exists():
            return candidate
        logger.warning("barcode collision on %s (attempt %d/%d)", candidate, attempt, attempts)

    raise DuplicateKey(f"Could not generate a unique specimen barcode after {attempts} attempts")
