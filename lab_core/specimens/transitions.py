# lab_core/specimens/transitions.py
from lab_core.common.transitions import TransitionTable
from lab_core.specimens.models import SpecimenStatus

SPECIMEN_TRANSITIONS = TransitionTable(
    "Specimen",
    {
        SpecimenStatus.COLLECTED: {SpecimenStatus.RECEIVED, SpecimenStatus.REJECTED},
        SpecimenStatus.RECEIVED: {SpecimenStatus.PROCESSING, SpecimenStatus.REJECTED, SpecimenStatus.DISCARDED},
        SpecimenStatus.PROCESSING: {SpecimenStatus.COMPLETED, SpecimenStatus.REJECTED, SpecimenStatus.DISCARDED},
        # disposal after the primary workflow has ended
        SpecimenStatus.COMPLETED: {SpecimenStatus.DISCARDED},
        SpecimenStatus.REJECTED: {SpecimenStatus.DISCARDED},
        SpecimenStatus.DISCARDED: set(),
    },
)
