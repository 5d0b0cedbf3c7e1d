"""Outbreak and Person entities.

Each entity owns an append-only sequence of sealed state snapshots and
one of sealed history records, plus a StateMachine holding its active
variant. During a period the entity carries two open builders (the scratch
buffers for the next snapshot and the history record); they are published
at the end of their phase and never reopened.

The Outbreak owns its persons. A Person keeps a weak (non-owning)
back-reference to its Outbreak.
"""

from __future__ import annotations

import weakref
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Type

import numpy as np

from outbreak_control.behaviour import NonCompliant, adjusted_compliance, is_compliant
from outbreak_control.errors import SealedSnapshotError
from outbreak_control.statemachine import StateMachine, StateMachineContext, Transition
from outbreak_control.types import (
    Builder, OutbreakHistory, OutbreakState, PersonHistory, PersonState,
    counts_to_tuple, history_from_state,
)


@dataclass(frozen=True)
class PersonBaseline:
    """Per-person parameters supplied at population setup."""
    compliance_baseline: float = 0.7
    self_isolation_depth: float = 0.1


class Entity:
    """Common snapshot/history lifecycle of Outbreak and Person."""

    state_type: Type = OutbreakState
    history_type: Type = OutbreakHistory
    variant_field = 'policy'

    def __init__(self, machine: StateMachine, rng: np.random.Generator):
        self.machine = machine
        self.rng = rng
        self._states: List = []
        self._history: List = []
        self._next_state: Optional[Builder] = None
        self._next_history: Optional[Builder] = None

    # ── sequences ────────────────────────────────────────────────────

    @property
    def current_state(self):
        if not self._states:
            raise RuntimeError(f"{self!r} has no initial snapshot")
        return self._states[-1]

    @property
    def current_history(self):
        return self._history[-1] if self._history else None

    @property
    def time(self) -> int:
        return self.current_state.time

    @property
    def states(self) -> Tuple:
        return tuple(self._states)

    @property
    def history(self) -> Tuple:
        return tuple(self._history)

    def state_at(self, time: int):
        index = time - self._states[0].time if self._states else -1
        if not 0 <= index < len(self._states):
            raise IndexError(f"{self!r} has no snapshot at t={time}")
        return self._states[index]

    def history_at(self, time: int):
        """History record of the period ending at ``time`` (None if absent)."""
        if not self._history:
            return None
        index = time - self._history[0].time
        if 0 <= index < len(self._history):
            return self._history[index]
        return None

    # ── builders ─────────────────────────────────────────────────────

    @property
    def next_state(self) -> Builder:
        return self._require(self._next_state, 'state')

    @property
    def next_history(self) -> Builder:
        return self._require(self._next_history, 'history')

    def _require(self, builder: Optional[Builder], what: str) -> Builder:
        if builder is None:
            raise SealedSnapshotError(f"{self!r} has no open {what} builder")
        return builder

    def initialise(self, builder: Builder):
        """Seal and append the time-0 snapshot."""
        if self._states:
            raise SealedSnapshotError(f"{self!r} is already initialised")
        builder.set(**{self.variant_field: self.machine.state.qualified_name})
        record = builder.build()
        self._states.append(record)
        return record

    def prepare_update(self) -> None:
        if self._next_state is not None or self._next_history is not None:
            raise SealedSnapshotError(f"{self!r} already has an update in progress")
        current = self.current_state
        self._next_state = Builder.from_record(current, time=current.time + 1)
        self._next_history = history_from_state(
            current, self.history_type, time=current.time + 1
        )

    def context(self) -> StateMachineContext:
        return StateMachineContext(self, self.machine)

    # ── phases ───────────────────────────────────────────────────────

    def update_history(self) -> None:
        self.machine.perform_history_update(
            self.next_history, self.current_state, self.context(), self.rng
        )

    def publish_history(self):
        record = self.next_history.build()
        self._history.append(record)
        self._next_history = None
        return record

    def update_state(self) -> Transition:
        return self.machine.perform_state_update(
            self.next_state, self.current_state, self.context(), self.rng
        )

    def publish_state(self):
        builder = self.next_state
        builder.set(**{self.variant_field: self.machine.state.qualified_name})
        record = builder.build()
        self._states.append(record)
        self._next_state = None
        return record


class Outbreak(Entity):
    """The whole population and its active policy."""

    def __init__(self, config, machine: StateMachine, rng: np.random.Generator):
        super().__init__(machine, rng)
        self.config = config
        self._people: List["Person"] = []
        self._by_id: Dict[int, "Person"] = {}

    def __repr__(self) -> str:
        return f"Outbreak({self.machine.state.qualified_name}, n={len(self._people)})"

    @property
    def outbreak(self) -> "Outbreak":
        return self

    @property
    def people(self) -> Tuple["Person", ...]:
        return tuple(self._people)

    def add_people(self, people: Iterable["Person"]) -> None:
        for person in people:
            if person.person_id in self._by_id:
                raise ValueError(f"Duplicate person id {person.person_id}")
            self._people.append(person)
            self._by_id[person.person_id] = person

    def person(self, person_id: int) -> "Person":
        return self._by_id[person_id]

    def live_people(self) -> List["Person"]:
        return [p for p in self._people if not p.current_state.dead]

    def behaviour_counts(self) -> Tuple[Tuple[str, int], ...]:
        """Persons per active behaviour variant name."""
        counts = Counter(p.machine.state.qualified_name for p in self._people)
        return counts_to_tuple(counts)


class Person(Entity):
    """One agent with its behaviour state machine."""

    state_type = PersonState
    history_type = PersonHistory
    variant_field = 'behaviour'

    def __init__(
        self,
        person_id: int,
        outbreak: Outbreak,
        machine: StateMachine,
        rng: np.random.Generator,
        baseline: Optional[PersonBaseline] = None,
    ):
        super().__init__(machine, rng)
        self.person_id = person_id
        self._outbreak = weakref.ref(outbreak)
        self.baseline = baseline or PersonBaseline()

    def __repr__(self) -> str:
        return f"Person({self.person_id}, {self.machine.state.qualified_name})"

    @property
    def outbreak(self) -> Outbreak:
        outbreak = self._outbreak()
        if outbreak is None:
            raise RuntimeError(f"Person {self.person_id} outlived its outbreak")
        return outbreak

    def adjusted_compliance(self) -> float:
        return adjusted_compliance(self.current_state, self.baseline)

    def is_compliant(self, rng: Optional[np.random.Generator] = None) -> bool:
        return is_compliant(self.current_state, self.baseline, rng or self.rng)

    def update_history(self) -> None:
        """Record the outbreak's screening of this person, then phase 1."""
        builder = self.next_history
        record = self.outbreak.history_at(builder.time)
        if record is not None and self.person_id in record.screened:
            builder.set(
                screened=True,
                test_positive=self.person_id in record.screened_positive,
            )
        super().update_history()

    def update_state(self) -> Transition:
        if self.current_state.dead and self.machine.state is not NonCompliant.DEAD:
            self.machine.reset_to(NonCompliant.DEAD)
        return super().update_state()
