from decimal import Decimal

import pytest

from lab_core.lab.constants import InterpretationFlag, OverallInterpretation
from lab_core.lab.evaluator import classify, delta_check, overall_interpretation, to_decimal

THRESHOLDS = dict(
    normal_low=10,
    normal_high=20,
    critical_low=5,
    critical_high=40,
    panic_low=2,
    panic_high=50,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        (1, InterpretationFlag.PANIC),
        (3, InterpretationFlag.CRITICAL),
        (8, InterpretationFlag.ABNORMAL),
        (15, InterpretationFlag.NORMAL),
        (45, InterpretationFlag.CRITICAL),
        (60, InterpretationFlag.PANIC),
    ],
)
def test_classify_bands(value, expected):
    assert classify(value, **THRESHOLDS) == expected


def test_classify_boundaries_stay_in_milder_band():
    assert classify(10, **THRESHOLDS) == InterpretationFlag.NORMAL
    assert classify(20, **THRESHOLDS) == InterpretationFlag.NORMAL
    assert classify(5, **THRESHOLDS) == InterpretationFlag.ABNORMAL
    assert classify(50, **THRESHOLDS) == InterpretationFlag.CRITICAL


def test_classify_ignores_missing_thresholds():
    assert classify(1000, normal_low=10, normal_high=20) == InterpretationFlag.ABNORMAL
    assert classify(1000) == InterpretationFlag.NORMAL
    assert classify("3.5", critical_low=Decimal("4.0")) == InterpretationFlag.CRITICAL


def test_classify_rejects_non_numeric():
    with pytest.raises(ValueError):
        classify("positive", **THRESHOLDS)


def test_delta_check_flags_by_percentage():
    res = delta_check(150, 100, percent_threshold=30, absolute_threshold=None)
    assert res.delta_percentage == Decimal("50.0")
    assert res.flagged is True

    res = delta_check(105, 100, percent_threshold=30, absolute_threshold=None)
    assert res.delta_percentage == Decimal("5")
    assert res.flagged is False


def test_delta_check_is_signed_and_inclusive():
    res = delta_check(70, 100, percent_threshold=30)
    assert res.delta_percentage == Decimal("-30")
    assert res.flagged is True


def test_delta_check_absolute_threshold():
    res = delta_check(12, 10, percent_threshold=None, absolute_threshold=2)
    assert res.delta_absolute == Decimal("2")
    assert res.flagged is True

    res = delta_check(11, 10, percent_threshold=None, absolute_threshold=2)
    assert res.flagged is False


def test_delta_check_without_usable_previous():
    assert delta_check(5, None, 10, 1).flagged is False

    res = delta_check(5, 0, percent_threshold=10)
    assert res.delta_percentage is None
    assert res.flagged is False

    # absolute threshold still applies against a zero baseline
    assert delta_check(5, 0, percent_threshold=10, absolute_threshold=3).flagged is True


def test_overall_interpretation_escalates():
    assert overall_interpretation([]) == OverallInterpretation.NORMAL
    assert overall_interpretation(["NORMAL", None, "ABNORMAL"]) == OverallInterpretation.ABNORMAL
    assert overall_interpretation(["ABNORMAL", "PANIC"]) == OverallInterpretation.CRITICAL


def test_to_decimal_handles_text_values():
    assert to_decimal(" 4.20 ") == Decimal("4.20")
    assert to_decimal(">1000") is None
    assert to_decimal("") is None
    assert to_decimal(2.5) == Decimal("2.5")
