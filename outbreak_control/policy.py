"""Outbreak-level policy models.

NoControl
    DEFAULT     does nothing; the baseline arm of an experiment.

ReactiveLockdown
    MONITOR     routine screening; locks down once the configured trigger
                is confidently above ``lockdown_start_trigger``.
    LOCKDOWN    routine screening continues; releases once the trigger is
                confidently below ``lockdown_release_trigger``.

Entering LOCKDOWN broadcasts the configured isolation variant to every live
person, leaving it broadcasts the release variant. The gap between the two
thresholds is the hysteresis band: an indicator hovering near either
threshold cannot flip the policy back and forth.
"""

from __future__ import annotations

import logging
from enum import Enum

import numpy as np

from outbreak_control.binomial import Binomial
from outbreak_control.statemachine import (
    BEHAVIOUR, Broadcast, PolicyState, Transition,
    history_update, transition, variant_from_name,
)
from outbreak_control.triggers import Trigger

logger = logging.getLogger(__name__)


class NoControl(PolicyState, Enum):
    DEFAULT = 'DEFAULT'


class ReactiveLockdown(PolicyState, Enum):
    MONITOR = 'MONITOR'
    LOCKDOWN = 'LOCKDOWN'


# ═══════════════════════════════════════════════════════════════════════
# SCREENING
# ═══════════════════════════════════════════════════════════════════════

def randomly_screen(builder, current, context, rng: np.random.Generator) -> None:
    """Screen each live person with the outbreak's screening probability.

    One uniform draw per live person (in population order) decides who is
    screened, then one draw per screened person decides the test outcome
    from the configured sensitivity and specificity. Writes the screened
    ids, the positive ids and the positives-among-screened Binomial onto
    the outbreak history builder.
    """
    params = context.params.policy
    people = [p for p in context.people if not p.current_state.dead]
    selected = rng.random(len(people)) < current.screening_probability
    screened = [p for p, chosen in zip(people, selected) if chosen]
    outcomes = rng.random(len(screened))

    positives = []
    for person, u in zip(screened, outcomes):
        if person.current_state.infected:
            positive = u < params.screening_sensitivity
        else:
            positive = u >= params.screening_specificity
        if positive:
            positives.append(person.person_id)

    builder.set(
        screened=frozenset(p.person_id for p in screened),
        screened_positive=frozenset(positives),
        screening_result=Binomial(len(positives), len(screened)),
    )


# ═══════════════════════════════════════════════════════════════════════
# NoControl
# ═══════════════════════════════════════════════════════════════════════

@transition(NoControl.DEFAULT)
def _no_control(builder, current, context, rng):
    return NoControl.DEFAULT


# ═══════════════════════════════════════════════════════════════════════
# ReactiveLockdown
# ═══════════════════════════════════════════════════════════════════════

def _indicator(current, params) -> Binomial:
    return Trigger.from_name(params.lockdown_trigger_value).select(current)


@history_update(ReactiveLockdown.MONITOR, ReactiveLockdown.LOCKDOWN)
def _routine_screening(builder, current, context, rng):
    randomly_screen(builder, current, context, rng)


@transition(ReactiveLockdown.MONITOR)
def _monitor(builder, current, context, rng):
    params = context.params.policy
    indicator = _indicator(current, params)
    if indicator.confidently_greater_than(params.lockdown_start_trigger,
                                          params.confidence):
        logger.info(
            "t=%d: %s %d/%d %s confidently above %.3f, locking down",
            current.time, params.lockdown_trigger_value,
            indicator.successes, indicator.trials,
            indicator.wilson(params.confidence), params.lockdown_start_trigger,
        )
        isolate = variant_from_name(params.lockdown_behaviour, kind=BEHAVIOUR)
        return Transition(ReactiveLockdown.LOCKDOWN, Broadcast(isolate))
    return ReactiveLockdown.MONITOR


@transition(ReactiveLockdown.LOCKDOWN)
def _lockdown(builder, current, context, rng):
    params = context.params.policy
    indicator = _indicator(current, params)
    if indicator.confidently_less_than(params.lockdown_release_trigger,
                                       params.confidence):
        logger.info(
            "t=%d: %s %d/%d %s confidently below %.3f, releasing lockdown",
            current.time, params.lockdown_trigger_value,
            indicator.successes, indicator.trials,
            indicator.wilson(params.confidence), params.lockdown_release_trigger,
        )
        release = variant_from_name(params.release_behaviour, kind=BEHAVIOUR)
        return Transition(ReactiveLockdown.MONITOR, Broadcast(release))
    return ReactiveLockdown.LOCKDOWN
