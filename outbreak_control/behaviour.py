"""Person-level behaviour models.

Two model families drive a person's conduct:

  NonCompliant        the default family: the person lives normally.
    ALIVE             modifiers held at baseline (1.0).
    DEAD              absorbing; every modifier is 0.

  LockdownIsolation   entered when a policy broadcasts a lockdown.
    ISOLATE           strict self-isolation, then WAIT.
    WAIT              isolating; compliance decays each period and a
                      failed compliance draw branches to NonCompliant.
    RELEASE           restore mobility and transmissibility, then RELAX.
    RELAX             compliance recovers; on symptoms the person returns
                      to whatever variant they branched from.

Compliance is a probability scaled on the odds scale: the person's
baseline probability of complying is multiplied (as odds) by the
``compliance_modifier`` of their current snapshot.
"""

from __future__ import annotations

import logging
from enum import Enum

import numpy as np

from outbreak_control.statemachine import BehaviourState, transition

logger = logging.getLogger(__name__)


class NonCompliant(BehaviourState, Enum):
    ALIVE = 'ALIVE'
    DEAD = 'DEAD'


class LockdownIsolation(BehaviourState, Enum):
    ISOLATE = 'ISOLATE'
    WAIT = 'WAIT'
    RELEASE = 'RELEASE'
    RELAX = 'RELAX'


# ═══════════════════════════════════════════════════════════════════════
# COMPLIANCE
# ═══════════════════════════════════════════════════════════════════════

def scale_probability_by_odds_ratio(probability: float, odds_ratio: float) -> float:
    """Apply an odds ratio to a probability.

    >>> scale_probability_by_odds_ratio(0.5, 3.0)
    0.75
    """
    if probability <= 0.0 or odds_ratio <= 0.0:
        return 0.0
    if probability >= 1.0:
        return 1.0
    odds = probability / (1.0 - probability) * odds_ratio
    return odds / (1.0 + odds)


def adjusted_compliance(state, baseline) -> float:
    """Probability that the person complies in the period of ``state``."""
    return scale_probability_by_odds_ratio(
        baseline.compliance_baseline, state.compliance_modifier
    )


def is_compliant(state, baseline, rng: np.random.Generator) -> bool:
    return rng.random() < adjusted_compliance(state, baseline)


def _restore_sociability(builder) -> None:
    builder.set(mobility_modifier=1.0, transmissibility_modifier=1.0)


# ═══════════════════════════════════════════════════════════════════════
# NonCompliant
# ═══════════════════════════════════════════════════════════════════════

@transition(NonCompliant.ALIVE)
def _alive(builder, current, context, rng):
    builder.set(
        mobility_modifier=1.0,
        transmissibility_modifier=1.0,
        compliance_modifier=1.0,
    )
    return NonCompliant.ALIVE


@transition(NonCompliant.DEAD)
def _dead(builder, current, context, rng):
    builder.set(
        mobility_modifier=0.0,
        transmissibility_modifier=0.0,
        compliance_modifier=0.0,
    )
    return NonCompliant.DEAD


# ═══════════════════════════════════════════════════════════════════════
# LockdownIsolation
# ═══════════════════════════════════════════════════════════════════════

@transition(LockdownIsolation.ISOLATE)
def _isolate(builder, current, context, rng):
    builder.mobility_modifier = context.baseline.self_isolation_depth
    return LockdownIsolation.WAIT


@transition(LockdownIsolation.WAIT)
def _wait(builder, current, context, rng):
    if not is_compliant(current, context.baseline, rng):
        logger.debug("person %s stopped isolating at t=%d",
                     context.entity.person_id, current.time)
        _restore_sociability(builder)
        return context.branch_to(NonCompliant.ALIVE)
    rate = context.params.behaviour.compliance_deterioration_rate
    builder.compliance_modifier = max(0.0, current.compliance_modifier - rate)
    return LockdownIsolation.WAIT


@transition(LockdownIsolation.RELEASE)
def _release(builder, current, context, rng):
    _restore_sociability(builder)
    return LockdownIsolation.RELAX


@transition(LockdownIsolation.RELAX)
def _relax(builder, current, context, rng):
    if current.symptomatic:
        return context.pull_branch()
    rate = context.params.behaviour.compliance_improvement_rate
    builder.compliance_modifier = min(1.0, current.compliance_modifier + rate)
    return LockdownIsolation.RELAX
