"""Core data records for the reactive control loop.

This module is the single source of truth for:
  - OutbreakState / PersonState: immutable per-period snapshots
  - OutbreakHistory / PersonHistory: immutable per-period action summaries
  - Builder: the mutable scratch record that is sealed into a snapshot

Lifecycle (one period, t → t+1):
  - a state builder is seeded from the snapshot at t with time = t+1
  - a history builder is seeded from the snapshot at t with time = t+1
  - phase 1 writes the history builder; phase 2 writes the state builder
  - both are sealed and appended to the entity's sequences

Invariant: exactly one state snapshot and one history record per
(entity, time) once the first period has run. History at time t describes
the actions taken while the snapshot at t-1 was current.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Generic, Mapping, Optional, Tuple, Type, TypeVar

from outbreak_control.binomial import EMPTY, Binomial
from outbreak_control.errors import SealedSnapshotError


# ═══════════════════════════════════════════════════════════════════════
# PERSON RECORDS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PersonState:
    """Snapshot of one person at one period.

    Epidemiological flags (infected, symptomatic, requires_hospitalisation,
    dead) are inputs written by external collaborators; the modifiers are
    written by behaviour transitions.
    """
    person_id: int
    time: int
    behaviour: str = "NonCompliant.ALIVE"

    # Observed / collaborator inputs
    infected: bool = False
    symptomatic: bool = False
    requires_hospitalisation: bool = False
    dead: bool = False

    # Behaviour-controlled modifiers (1.0 = baseline)
    mobility_modifier: float = 1.0
    transmissibility_modifier: float = 1.0
    compliance_modifier: float = 1.0

    # Latent infection risk signal (kernel-accumulated evidence)
    exposure: float = 0.0


@dataclass(frozen=True)
class PersonHistory:
    """Actions taken for one person in the period ending at ``time``."""
    person_id: int
    time: int
    behaviour: str = "NonCompliant.ALIVE"
    infected: bool = False
    symptomatic: bool = False
    screened: bool = False
    test_positive: Optional[bool] = None


# ═══════════════════════════════════════════════════════════════════════
# OUTBREAK RECORDS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class OutbreakState:
    """Snapshot of the whole outbreak at one period.

    The Binomial indicators are the observed inputs consumed by triggers.
    """
    time: int
    policy: str = "NoControl.DEFAULT"
    population_size: int = 0
    screening_probability: float = 0.0

    cumulative_infections: int = 0
    hospitalisation_rate: Binomial = EMPTY
    presumed_test_positivity: Binomial = EMPTY
    screening_test_positivity: Binomial = EMPTY
    presumed_test_positive_prevalence: Binomial = EMPTY

    behaviour_counts: Tuple[Tuple[str, int], ...] = ()

    def behaviour_count(self, name: str) -> int:
        return dict(self.behaviour_counts).get(name, 0)


@dataclass(frozen=True)
class OutbreakHistory:
    """Actions taken at outbreak level in the period ending at ``time``."""
    time: int
    policy: str = "NoControl.DEFAULT"
    screened: FrozenSet[int] = frozenset()
    screened_positive: FrozenSet[int] = frozenset()
    screening_result: Binomial = EMPTY


# ═══════════════════════════════════════════════════════════════════════
# BUILDER
# ═══════════════════════════════════════════════════════════════════════

R = TypeVar('R')


class Builder(Generic[R]):
    """Mutable scratch copy of a frozen record, sealed exactly once.

    Fields are read and written as attributes. Unknown field names raise
    AttributeError; writes after ``build()`` raise SealedSnapshotError.

    Example:
        >>> b = Builder.from_record(state, time=state.time + 1)
        >>> b.mobility_modifier = 0.1
        >>> sealed = b.build()
    """

    __slots__ = ('_record_type', '_values', '_sealed')

    def __init__(self, record_type: Type[R], **values: Any):
        names = {f.name for f in dataclasses.fields(record_type)}
        unknown = set(values) - names
        if unknown:
            raise AttributeError(
                f"{record_type.__name__} has no field(s) {sorted(unknown)}"
            )
        object.__setattr__(self, '_record_type', record_type)
        object.__setattr__(self, '_values', dict(values))
        object.__setattr__(self, '_sealed', False)

    @classmethod
    def from_record(cls, record: Any, record_type: Optional[Type[R]] = None,
                    **changes: Any) -> "Builder[R]":
        """Seed a builder from an existing record.

        When ``record_type`` differs from the record's own type, only the
        fields the two have in common are copied.
        """
        target = record_type or type(record)
        names = {f.name for f in dataclasses.fields(target)}
        values = {
            f.name: getattr(record, f.name)
            for f in dataclasses.fields(record) if f.name in names
        }
        values.update(changes)
        return cls(target, **values)

    @property
    def record_type(self) -> Type[R]:
        return self._record_type

    @property
    def sealed(self) -> bool:
        return self._sealed

    def __getattr__(self, name: str) -> Any:
        values = object.__getattribute__(self, '_values')
        if name in values:
            return values[name]
        record_type = object.__getattribute__(self, '_record_type')
        for f in dataclasses.fields(record_type):
            if f.name == name:
                if f.default is not dataclasses.MISSING:
                    return f.default
                if f.default_factory is not dataclasses.MISSING:
                    return f.default_factory()
                raise AttributeError(f"{record_type.__name__}.{name} has not been set")
        raise AttributeError(f"{record_type.__name__} has no field '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        self.set(**{name: value})

    def set(self, **values: Any) -> "Builder[R]":
        """Write several fields at once. Returns self for chaining."""
        if self._sealed:
            raise SealedSnapshotError(
                f"{self._record_type.__name__} builder is already sealed"
            )
        names = {f.name for f in dataclasses.fields(self._record_type)}
        unknown = set(values) - names
        if unknown:
            raise AttributeError(
                f"{self._record_type.__name__} has no field(s) {sorted(unknown)}"
            )
        self._values.update(values)
        return self

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def build(self) -> R:
        """Seal the builder into its immutable record."""
        if self._sealed:
            raise SealedSnapshotError(
                f"{self._record_type.__name__} builder is already sealed"
            )
        record = self._record_type(**self._values)
        object.__setattr__(self, '_sealed', True)
        return record

    def __repr__(self) -> str:
        state = "sealed" if self._sealed else "open"
        return f"Builder[{self._record_type.__name__}]({state}, {self._values})"


def history_from_state(state: Any, history_type: Type[R], **changes: Any) -> Builder[R]:
    """Seed a history builder from a state snapshot; ``changes`` override fields."""
    return Builder.from_record(state, record_type=history_type, **changes)


def counts_to_tuple(counts: Mapping[str, int]) -> Tuple[Tuple[str, int], ...]:
    """Sorted, hashable form of a name → count mapping."""
    return tuple(sorted(counts.items()))
