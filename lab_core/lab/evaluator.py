# lab_core/lab/evaluator.py
"""
Threshold & delta evaluation for numeric lab parameters.

Pure functions: no database access, no settings. Result entry snapshots the
configured thresholds and calls these per parameter.

Boundary semantics are exclusive:
  value < panic_low or value > panic_high        -> PANIC
  value < critical_low or value > critical_high  -> CRITICAL
  value < normal_low or value > normal_high      -> ABNORMAL
  otherwise                                      -> NORMAL

A threshold given as None is not evaluated.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Iterable, NamedTuple, Optional, Union

from lab_core.lab.constants import InterpretationFlag, OverallInterpretation

Number = Union[int, float, Decimal, str]

PERCENT_PLACES = Decimal("0.01")


def to_decimal(value: Optional[Number]) -> Optional[Decimal]:
    """
    Parse a raw value into Decimal. Returns None for blanks and non-numeric text
    (e.g. "positive", ">1000" stays textual).
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    text = str(value).strip()
    if not text:
        return None
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def _outside(value: Decimal, low: Optional[Number], high: Optional[Number]) -> bool:
    lo = to_decimal(low)
    hi = to_decimal(high)
    if lo is not None and value < lo:
        return True
    if hi is not None and value > hi:
        return True
    return False


def classify(
    value: Number,
    normal_low: Optional[Number] = None,
    normal_high: Optional[Number] = None,
    critical_low: Optional[Number] = None,
    critical_high: Optional[Number] = None,
    panic_low: Optional[Number] = None,
    panic_high: Optional[Number] = None,
) -> InterpretationFlag:
    v = to_decimal(value)
    if v is None:
        raise ValueError(f"classify() needs a numeric value, got {value!r}")

    if _outside(v, panic_low, panic_high):
        return InterpretationFlag.PANIC
    if _outside(v, critical_low, critical_high):
        return InterpretationFlag.CRITICAL
    if _outside(v, normal_low, normal_high):
        return InterpretationFlag.ABNORMAL
    return InterpretationFlag.NORMAL


class DeltaResult(NamedTuple):
    delta_percentage: Optional[Decimal]
    delta_absolute: Optional[Decimal]
    flagged: bool


def delta_check(
    current: Number,
    previous: Optional[Number],
    percent_threshold: Optional[Number] = None,
    absolute_threshold: Optional[Number] = None,
) -> DeltaResult:
    """
    Compare a value to the patient's previous value for the same analyte.

    delta_percentage is signed, (current - previous) / previous * 100, and is
    None when there is no previous value or it is zero. Flagged when
    |delta_percentage| >= percent_threshold or |current - previous| >= absolute_threshold,
    for whichever thresholds are configured.
    """
    cur = to_decimal(current)
    prev = to_decimal(previous)
    if cur is None or prev is None:
        return DeltaResult(None, None, False)

    diff = cur - prev
    pct: Optional[Decimal] = None
    if prev != 0:
        pct = (diff / prev * 100).quantize(PERCENT_PLACES)

    flagged = False
    pct_limit = to_decimal(percent_threshold)
    if pct_limit is not None and pct is not None and abs(pct) >= pct_limit:
        flagged = True

    abs_limit = to_decimal(absolute_threshold)
    if abs_limit is not None and abs(diff) >= abs_limit:
        flagged = True

    return DeltaResult(pct, diff, flagged)


def is_alert_worthy(flag: Optional[str]) -> bool:
    return flag in (InterpretationFlag.CRITICAL, InterpretationFlag.PANIC)


def overall_interpretation(flags: Iterable[Optional[str]]) -> OverallInterpretation:
    """
    Escalate across parameters: any CRITICAL/PANIC -> CRITICAL, any ABNORMAL -> ABNORMAL.
    """
    seen = {f for f in flags if f}
    if seen & {InterpretationFlag.CRITICAL, InterpretationFlag.PANIC}:
        return OverallInterpretation.CRITICAL
    if InterpretationFlag.ABNORMAL in seen:
        return OverallInterpretation.ABNORMAL
    return OverallInterpretation.NORMAL
