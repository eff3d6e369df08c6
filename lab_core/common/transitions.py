# lab_core/common/transitions.py
from __future__ import annotations

from typing import Iterable, Mapping

from lab_core.common.api.exceptions import InvalidTransition


class TransitionTable:
    """
    Explicit from-state -> allowed to-states table for one entity.

    States missing from the table (or mapped to an empty set) are terminal.
    Self-loops are never implied: a transition to the current state must be
    listed to be legal.
    """

    def __init__(self, entity: str, edges: Mapping[str, Iterable[str]]):
        self.entity = entity
        self._edges: dict[str, frozenset[str]] = {str(k): frozenset(str(v) for v in vs) for k, vs in edges.items()}

    def allowed(self, current: str) -> frozenset[str]:
        return self._edges.get(str(current), frozenset())

    def is_terminal(self, state: str) -> bool:
        return not self.allowed(state)

    def can_transition(self, current: str, target: str) -> bool:
        return str(target) in self.allowed(current)

    def ensure(self, current: str, target: str) -> None:
        """
        Single guard for every status change of this entity.
        """
        if not self.can_transition(current, target):
            raise InvalidTransition(self.entity, str(current), str(target))
