"""Outbreak construction and the simulation loop.

``run_simulation`` wires the pieces together:
  - one Outbreak with the configured policy variant and one Person per
    population slot with the configured behaviour variant
  - per-stream random generators from the master seed
  - an Updater whose processors feed observations (scripted or derived
    from the population) and kernel risk evidence
and returns a SimulationResult with the control timeline as arrays.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from outbreak_control.config import OutbreakConfig, default_config, validate_config
from outbreak_control.entities import Outbreak, Person, PersonBaseline
from outbreak_control.observations import KernelRiskEstimator, PopulationObservations
from outbreak_control.rng import (
    OBSERVATION_STREAM, OUTBREAK_STREAM, create_rng_hierarchy, get_person_rng,
)
from outbreak_control.statemachine import BEHAVIOUR, POLICY, StateMachine, variant_from_name
from outbreak_control.triggers import Trigger
from outbreak_control.types import Builder, OutbreakState, PersonState
from outbreak_control.updater import Processor, Updater


# ═══════════════════════════════════════════════════════════════════════
# RESULT
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationResult:
    """Control timeline of one run.

    Every array has one entry per snapshot, t = 0..n_periods. The policy at
    t is the variant active during period t; a decision taken at t shows up
    at t+1.
    """
    n_periods: int = 0
    trigger: str = ""
    policy: Optional[np.ndarray] = None            # (n_periods+1,) variant names
    indicator_successes: Optional[np.ndarray] = None
    indicator_trials: Optional[np.ndarray] = None
    indicator_proportion: Optional[np.ndarray] = None
    indicator_lower: Optional[np.ndarray] = None   # Wilson bounds
    indicator_upper: Optional[np.ndarray] = None
    isolating: Optional[np.ndarray] = None         # persons in the lockdown family
    population: Optional[np.ndarray] = None        # live persons
    cumulative_infections: Optional[np.ndarray] = None
    transitions: List[Tuple[int, str, str]] = field(default_factory=list)
    outbreak: Optional[Outbreak] = None

    def periods_in(self, policy_name: str) -> np.ndarray:
        """Snapshot times at which ``policy_name`` was active."""
        return np.flatnonzero(self.policy == policy_name)


# ═══════════════════════════════════════════════════════════════════════
# CONSTRUCTION
# ═══════════════════════════════════════════════════════════════════════

def build_outbreak(
    config: OutbreakConfig,
    rngs: Optional[Dict[str, np.random.Generator]] = None,
    baselines: Optional[Sequence[PersonBaseline]] = None,
) -> Outbreak:
    """Create the outbreak and its persons (not yet initialised).

    Args:
        config: Validated configuration.
        rngs: Stream hierarchy; created from simulation.seed if None.
        baselines: Optional per-person baseline parameters, one per person.
    """
    n = config.simulation.population_size
    if rngs is None:
        rngs = create_rng_hierarchy(config.simulation.seed, n)
    if baselines is not None and len(baselines) != n:
        raise ValueError(f"Expected {n} person baselines, got {len(baselines)}")

    policy = variant_from_name(config.policy.model, kind=POLICY)
    behaviour = variant_from_name(config.behaviour.model, kind=BEHAVIOUR)
    shared = PersonBaseline(
        compliance_baseline=config.behaviour.compliance_baseline,
        self_isolation_depth=config.behaviour.self_isolation_depth,
    )

    outbreak = Outbreak(config, StateMachine(policy), rngs[OUTBREAK_STREAM])
    outbreak.add_people(
        Person(
            person_id=i,
            outbreak=outbreak,
            machine=StateMachine(behaviour),
            rng=get_person_rng(rngs, i),
            baseline=baselines[i] if baselines is not None else shared,
        )
        for i in range(n)
    )
    return outbreak


def build_updater(
    config: OutbreakConfig,
    observations: Optional[Processor] = None,
    person_processors: Sequence[Processor] = (),
    observation_rng: Optional[np.random.Generator] = None,
) -> Updater:
    """Updater with the observation source and kernel risk estimation.

    ``observations`` defaults to PopulationObservations over the configured
    test window.
    """
    if observations is None:
        observations = PopulationObservations(test_window=config.risk.test_window)
    return Updater(
        outbreak_processors=[observations],
        person_processors=[KernelRiskEstimator(config.risk.kernels()), *person_processors],
        parallel_workers=config.simulation.parallel_workers,
        observation_rng=observation_rng,
    )


def initialise_outbreak(
    outbreak: Outbreak,
    updater: Updater,
    infected: Iterable[int] = (),
) -> None:
    """Seal the t=0 snapshots; ``infected`` lists initially infected ids."""
    infected = set(infected)
    person_states = [
        Builder(PersonState, person_id=p.person_id, time=0,
                infected=p.person_id in infected)
        for p in outbreak.people
    ]
    outbreak_state = Builder(
        OutbreakState,
        time=0,
        screening_probability=outbreak.config.policy.screening_probability,
    )
    updater.initialise(outbreak, person_states, outbreak_state)


# ═══════════════════════════════════════════════════════════════════════
# SIMULATION LOOP
# ═══════════════════════════════════════════════════════════════════════

def run_simulation(
    config: Optional[OutbreakConfig] = None,
    observations: Optional[Processor] = None,
    n_periods: Optional[int] = None,
    person_processors: Sequence[Processor] = (),
    initial_infected: Iterable[int] = (),
    baselines: Optional[Sequence[PersonBaseline]] = None,
) -> SimulationResult:
    """Run the reactive control loop.

    Args:
        config: Configuration; defaults to default_config(). Validated here.
        observations: Outbreak processor feeding observed indicators; see
            ScriptedObservations and PopulationObservations.
        n_periods: Overrides simulation.n_periods.
        person_processors: Collaborators writing person inputs (infection,
            symptoms, hospitalisation, death) each period.
        initial_infected: Person ids infected at t=0.
        baselines: Optional per-person baseline parameters.

    Returns:
        SimulationResult with per-snapshot arrays and the policy transitions.
    """
    if config is None:
        config = default_config()
    validate_config(config)
    if n_periods is None:
        n_periods = config.simulation.n_periods

    rngs = create_rng_hierarchy(config.simulation.seed, config.simulation.population_size)
    outbreak = build_outbreak(config, rngs=rngs, baselines=baselines)
    updater = build_updater(
        config, observations, person_processors,
        observation_rng=rngs[OBSERVATION_STREAM],
    )
    initialise_outbreak(outbreak, updater, infected=initial_infected)

    transitions: List[Tuple[int, str, str]] = []
    for _ in range(n_periods):
        t = outbreak.time
        before = outbreak.machine.state
        step = updater.update(outbreak)
        if step.next is not before:
            transitions.append((t, before.qualified_name, step.next.qualified_name))

    return summarise(outbreak, transitions)


def summarise(outbreak: Outbreak,
              transitions: Sequence[Tuple[int, str, str]] = ()) -> SimulationResult:
    """Collect the outbreak's snapshots into a SimulationResult."""
    params = outbreak.config.policy
    trigger = Trigger.from_name(params.lockdown_trigger_value)
    lockdown_family = params.lockdown_behaviour.partition('.')[0] + '.'
    states = outbreak.states

    indicators = [trigger.select(s) for s in states]
    bounds = np.array([b.wilson(params.confidence) for b in indicators], dtype=np.float64)
    return SimulationResult(
        n_periods=len(states) - 1,
        trigger=trigger.name,
        policy=np.array([s.policy for s in states], dtype=object),
        indicator_successes=np.array([b.successes for b in indicators], dtype=np.int64),
        indicator_trials=np.array([b.trials for b in indicators], dtype=np.int64),
        indicator_proportion=np.array([b.probability() for b in indicators]),
        indicator_lower=bounds[:, 0],
        indicator_upper=bounds[:, 1],
        isolating=np.array([
            sum(n for name, n in s.behaviour_counts if name.startswith(lockdown_family))
            for s in states
        ], dtype=np.int64),
        population=np.array([s.population_size for s in states], dtype=np.int64),
        cumulative_infections=np.array(
            [s.cumulative_infections for s in states], dtype=np.int64
        ),
        transitions=list(transitions),
        outbreak=outbreak,
    )
