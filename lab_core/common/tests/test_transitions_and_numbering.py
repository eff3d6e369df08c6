from datetime import date

import pytest
from django.db import transaction

from lab_core.common.api.exceptions import InvalidTransition, PreconditionFailed
from lab_core.common.models import DailySequence
from lab_core.common.notes import append_note
from lab_core.common.numbering import next_number, next_order_number, next_result_number
from lab_core.common.transitions import TransitionTable
from lab_core.lab.constants import ResultStatus
from lab_core.lab.transitions import RESULT_TRANSITIONS
from lab_core.specimens.models import SpecimenStatus
from lab_core.specimens.transitions import SPECIMEN_TRANSITIONS

TABLE = TransitionTable("Widget", {"NEW": {"OPEN"}, "OPEN": {"DONE", "NEW"}, "DONE": set()})


def test_table_guards_edges():
    assert TABLE.can_transition("NEW", "OPEN")
    assert not TABLE.can_transition("NEW", "DONE")
    assert not TABLE.can_transition("OPEN", "OPEN")
    assert TABLE.is_terminal("DONE")
    assert TABLE.is_terminal("UNKNOWN")

    with pytest.raises(InvalidTransition) as exc:
        TABLE.ensure("DONE", "OPEN")
    assert exc.value.entity == "Widget"
    assert exc.value.current_state == "DONE"
    assert exc.value.attempted_state == "OPEN"


def test_result_table_terminal_states():
    for state in (ResultStatus.AMENDED, ResultStatus.CANCELLED, ResultStatus.ENTERED_IN_ERROR):
        assert RESULT_TRANSITIONS.is_terminal(state)
    assert RESULT_TRANSITIONS.can_transition(ResultStatus.FINAL, ResultStatus.AMENDED)
    assert not RESULT_TRANSITIONS.can_transition(ResultStatus.PENDING, ResultStatus.FINAL)


def test_specimen_table_side_exits():
    assert SPECIMEN_TRANSITIONS.can_transition(SpecimenStatus.COMPLETED, SpecimenStatus.DISCARDED)
    assert SPECIMEN_TRANSITIONS.can_transition(SpecimenStatus.REJECTED, SpecimenStatus.DISCARDED)
    assert not SPECIMEN_TRANSITIONS.can_transition(SpecimenStatus.COMPLETED, SpecimenStatus.REJECTED)
    assert SPECIMEN_TRANSITIONS.is_terminal(SpecimenStatus.DISCARDED)


@pytest.mark.django_db
def test_numbers_are_sequential_per_prefix_and_day():
    day = date(2024, 3, 15)
    assert next_order_number(day) == "LO2024031500001"
    assert next_order_number(day) == "LO2024031500002"
    assert next_result_number(day) == "LR20240315000001"
    assert next_order_number(date(2024, 3, 16)) == "LO2024031600001"

    assert DailySequence.objects.get(prefix="LO", sequence_date=day).last_value == 2


@pytest.mark.django_db
def test_exhausted_sequence_is_refused():
    day = date(2024, 3, 15)
    DailySequence.objects.create(prefix="ZZ", sequence_date=day, last_value=99)

    with pytest.raises(PreconditionFailed):
        next_number("ZZ", 2, day)


def test_append_note_never_rewrites():
    assert append_note("", "first") == "first"
    assert append_note("first", "second") == "first\nsecond"
    assert append_note("first", "second", sep="\n\n") == "first\n\nsecond"
    assert append_note("first", "   ") == "first"


@pytest.mark.django_db
def test_rolled_back_caller_releases_the_number():
    day = date(2024, 3, 15)
    with pytest.raises(RuntimeError):
        with transaction.atomic():
            assert next_order_number(day) == "LO2024031500001"
            raise RuntimeError("caller failed")

    assert next_order_number(day) == "LO2024031500001"
