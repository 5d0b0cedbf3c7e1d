"""Generic two-phase state-machine protocol for Outbreak and Person entities.

Policy (Outbreak) and Behaviour (Person) models share one protocol. Each
model family is a closed ``Enum`` whose members are stateless variants;
what a variant does is looked up in a dispatch table populated with the
``@transition`` and ``@history_update`` decorators:

    class ReactiveLockdown(PolicyState, Enum):
        MONITOR = 'MONITOR'
        LOCKDOWN = 'LOCKDOWN'

    @transition(ReactiveLockdown.MONITOR)
    def _monitor(builder, current, context, rng):
        ...
        return ReactiveLockdown.LOCKDOWN

Per period, for the entity's *current* variant:
  1. update_history(history_builder, current, context, rng)
     writes only through the history builder; default no-op.
  2. next_state(state_builder, current, context, rng) -> Transition
     returns the variant for the following period. A Policy transition may
     carry a Broadcast: a Behaviour variant the driver forces onto every
     live Person before any Person runs its own phase 2.

A variant with no registered transition raises UndefinedTransitionError
when asked for one. ``undefined_transitions()`` reports such gaps up front.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any, Callable, ClassVar, Dict, List, Optional, Tuple, Type, Union,
)

import numpy as np

from outbreak_control.errors import UndefinedTransitionError


# ═══════════════════════════════════════════════════════════════════════
# VARIANTS
# ═══════════════════════════════════════════════════════════════════════

POLICY = "Policy"
BEHAVIOUR = "Behaviour"

_FAMILIES: Dict[str, Type[Enum]] = {}
_TRANSITIONS: Dict["StateVariant", Callable[..., Any]] = {}
_HISTORY_UPDATES: Dict["StateVariant", Callable[..., None]] = {}


class StateVariant:
    """Mixin for the enum members of a state-machine model family."""

    kind: ClassVar[str] = ""

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if issubclass(cls, Enum):
            existing = _FAMILIES.get(cls.__name__)
            if existing is not None and existing.__module__ != cls.__module__:
                raise ValueError(
                    f"State-machine family '{cls.__name__}' already defined "
                    f"in {existing.__module__}"
                )
            _FAMILIES[cls.__name__] = cls

    @property
    def family(self) -> Type[Enum]:
        return type(self)

    @property
    def qualified_name(self) -> str:
        """Stable configured name, e.g. ``'ReactiveLockdown.MONITOR'``."""
        return f"{type(self).__name__}.{self.name}"

    def update_history(self, builder, current, context, rng) -> None:
        handler = _HISTORY_UPDATES.get(self)
        if handler is not None:
            handler(builder, current, context, rng)

    def next_state(self, builder, current, context, rng) -> "Transition":
        handler = _TRANSITIONS.get(self)
        if handler is None:
            raise UndefinedTransitionError(
                f"{self.qualified_name} has no transition defined"
            )
        return Transition.of(handler(builder, current, context, rng), self)


class PolicyState(StateVariant):
    """Marker for Outbreak-level (policy) variants."""
    kind = POLICY


class BehaviourState(StateVariant):
    """Marker for Person-level (behaviour) variants."""
    kind = BEHAVIOUR


def transition(*variants: StateVariant):
    """Register the decorated function as the transition of ``variants``."""
    def decorator(fn):
        for variant in variants:
            if variant in _TRANSITIONS:
                raise ValueError(f"{variant.qualified_name} already has a transition")
            _TRANSITIONS[variant] = fn
        return fn
    return decorator


def history_update(*variants: StateVariant):
    """Register the decorated function as the phase-1 hook of ``variants``."""
    def decorator(fn):
        for variant in variants:
            if variant in _HISTORY_UPDATES:
                raise ValueError(f"{variant.qualified_name} already has a history update")
            _HISTORY_UPDATES[variant] = fn
        return fn
    return decorator


def undefined_transitions(*families: Type[Enum]) -> List[str]:
    """Qualified names of variants in ``families`` lacking a transition."""
    return [
        member.qualified_name
        for family in families
        for member in family
        if member not in _TRANSITIONS
    ]


def variant_from_name(name: str, kind: Optional[str] = None) -> StateVariant:
    """Resolve ``'Family.MEMBER'`` to its variant.

    Raises:
        ValueError: If the family or member is unknown, or the variant is not
            of the requested kind (POLICY or BEHAVIOUR).
    """
    family_name, _, member_name = name.partition('.')
    family = _FAMILIES.get(family_name)
    if family is None or not member_name:
        raise ValueError(
            f"Unknown state-machine variant '{name}'. "
            f"Known families: {sorted(_FAMILIES)}"
        )
    try:
        variant = family[member_name]
    except KeyError:
        raise ValueError(
            f"'{family_name}' has no variant '{member_name}'. "
            f"Available: {[m.name for m in family]}"
        ) from None
    if kind is not None and variant.kind != kind:
        raise ValueError(f"'{name}' is a {variant.kind} variant, expected {kind}")
    return variant


def families(kind: Optional[str] = None) -> Dict[str, Type[Enum]]:
    """Registered model families, optionally filtered by kind."""
    return {
        name: fam for name, fam in _FAMILIES.items()
        if kind is None or fam.kind == kind
    }


# ═══════════════════════════════════════════════════════════════════════
# TRANSITION RESULTS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Broadcast:
    """Population-wide forced transition issued by a Policy variant.

    ``include`` optionally restricts which persons are forced; dead
    persons are never forced.
    """
    variant: BehaviourState
    include: Optional[Callable[[Any], bool]] = None


@dataclass(frozen=True)
class Transition:
    """Outcome of phase 2: the next variant and an optional broadcast."""
    next: StateVariant
    broadcast: Optional[Broadcast] = None

    @classmethod
    def of(cls, result: Union["Transition", StateVariant],
           source: StateVariant) -> "Transition":
        if isinstance(result, Transition):
            out = result
        elif isinstance(result, StateVariant):
            out = cls(result)
        else:
            raise UndefinedTransitionError(
                f"{source.qualified_name} returned {result!r}, not a variant"
            )
        if out.next.kind != source.kind:
            raise UndefinedTransitionError(
                f"{source.qualified_name} transitioned to "
                f"{out.next.qualified_name} of a different kind"
            )
        if out.broadcast is not None and source.kind != POLICY:
            raise UndefinedTransitionError(
                f"{source.qualified_name}: only policy transitions may broadcast"
            )
        return out


# ═══════════════════════════════════════════════════════════════════════
# STATE MACHINE
# ═══════════════════════════════════════════════════════════════════════

class StateMachineContext:
    """Read-only view handed to every variant handler.

    Gives cross-entity lookups (the owning outbreak, its configuration, the
    population) and the machine's own branch stack.
    """

    __slots__ = ('entity', 'machine')

    def __init__(self, entity, machine: "StateMachine"):
        self.entity = entity
        self.machine = machine

    @property
    def outbreak(self):
        return self.entity.outbreak

    @property
    def params(self):
        """The simulation configuration of the owning outbreak."""
        return self.entity.outbreak.config

    @property
    def people(self):
        return self.entity.outbreak.people

    @property
    def baseline(self):
        """Per-entity baseline parameters (persons only)."""
        return getattr(self.entity, 'baseline', None)

    def branch_to(self, variant: StateVariant) -> StateVariant:
        """Enter ``variant``, remembering the current one if it is from
        another model family."""
        self.machine.remember(variant)
        return variant

    def pull_branch(self) -> StateVariant:
        """Return to the last remembered variant (or the baseline)."""
        return self.machine.pull_branch()


class StateMachine:
    """Holds the single active variant of one entity.

    The active variant is replaced wholesale each period, never mutated.
    Forcing a machine into a variant of a different model family pushes the
    current variant onto a branch stack so it can be returned to later.
    """

    def __init__(self, baseline: StateVariant):
        if not isinstance(baseline, StateVariant):
            raise TypeError(f"{baseline!r} is not a state-machine variant")
        self._kind = baseline.kind
        self._baseline = baseline
        self._state = baseline
        self._branches: List[StateVariant] = []
        self._forced = False
        self._lock = threading.RLock()

    @property
    def kind(self) -> str:
        return self._kind

    @property
    def state(self) -> StateVariant:
        return self._state

    @property
    def baseline(self) -> StateVariant:
        return self._baseline

    @property
    def branches(self) -> Tuple[StateVariant, ...]:
        """Remembered variants, most recent first."""
        return tuple(reversed(self._branches))

    @property
    def forced(self) -> bool:
        """True between a forced transition and the next phase 2."""
        return self._forced

    def __repr__(self) -> str:
        return f"StateMachine({self._state.qualified_name})"

    def _check_kind(self, variant: StateVariant) -> None:
        if not isinstance(variant, StateVariant) or variant.kind != self._kind:
            raise TypeError(
                f"Cannot put a {self._kind} machine into {variant!r}"
            )

    def perform_history_update(self, builder, current, context, rng) -> None:
        self._state.update_history(builder, current, context, rng)

    def perform_state_update(self, builder, current, context,
                             rng: np.random.Generator) -> Transition:
        """Run phase 2 and make the returned variant current.

        A forced variant pending from a broadcast this period is kept as the
        next variant without running the pre-broadcast variant's decision.
        """
        with self._lock:
            if self._forced:
                self._forced = False
                return Transition(self._state)
            result = self._state.next_state(builder, current, context, rng)
            self._state = result.next
            return result

    def force_to(self, variant: StateVariant) -> None:
        """Force the machine into ``variant`` for the next period."""
        self._check_kind(variant)
        with self._lock:
            self.remember(variant)
            self._state = variant
            self._forced = True

    def reset_to(self, variant: StateVariant) -> None:
        """Replace the active variant without remembering the old one."""
        self._check_kind(variant)
        with self._lock:
            self._state = variant
            self._forced = False

    def remember(self, variant: StateVariant) -> None:
        """Push the current variant if ``variant`` is from another family.

        Returning to a variant that is already remembered unwinds the stack
        back to it rather than pushing it again, so repeated lockdown cycles
        keep the stack bounded by the number of distinct variants.
        """
        if variant.family is self._state.family:
            return
        if self._state in self._branches:
            del self._branches[self._branches.index(self._state) + 1:]
            return
        self._branches.append(self._state)

    def pull_branch(self) -> StateVariant:
        if self._branches:
            return self._branches.pop()
        return self._baseline

    def return_from_branch(self) -> None:
        with self._lock:
            self._state = self.pull_branch()
