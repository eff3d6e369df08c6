# lab_core/lab/transitions.py
from lab_core.common.transitions import TransitionTable
from lab_core.lab.constants import ResultStatus

RESULT_TRANSITIONS = TransitionTable(
    "LabResult",
    {
        ResultStatus.PENDING: {ResultStatus.PRELIMINARY, ResultStatus.CANCELLED, ResultStatus.ENTERED_IN_ERROR},
        ResultStatus.PRELIMINARY: {
            ResultStatus.FINAL,
            ResultStatus.AMENDED,
            ResultStatus.CANCELLED,
            ResultStatus.ENTERED_IN_ERROR,
        },
        ResultStatus.FINAL: {ResultStatus.AMENDED, ResultStatus.CANCELLED, ResultStatus.ENTERED_IN_ERROR},
        ResultStatus.AMENDED: set(),
        ResultStatus.CANCELLED: set(),
        ResultStatus.ENTERED_IN_ERROR: set(),
    },
)

# Results that still count as the order item's current result
LIVE_STATUSES = (ResultStatus.PENDING, ResultStatus.PRELIMINARY, ResultStatus.FINAL)

# Parameter values may only be entered while the result is open
ENTRY_STATUSES = (ResultStatus.PENDING, ResultStatus.PRELIMINARY)
