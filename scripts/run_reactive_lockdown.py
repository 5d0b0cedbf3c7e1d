#!/usr/bin/env python3
"""Run the reactive lockdown control loop and print its timeline.

Two observation sources are available:
  - scripted: a hospital-burden trace (0% for 5 periods, 10% for 5, then
    0%) observed with a fixed number of trials per period
  - population: indicators derived from a toy infection process over the
    configured population, with routine screening

Usage:
    python scripts/run_reactive_lockdown.py
    python scripts/run_reactive_lockdown.py --trials 100
    python scripts/run_reactive_lockdown.py --source population --config configs/default.yaml
"""

import argparse
import logging
from pathlib import Path

from outbreak_control.config import default_config, load_config
from outbreak_control.model import run_simulation
from outbreak_control.observations import ScriptedObservations

BURDEN = [0.0] * 5 + [0.10] * 5 + [0.0] * 10


def toy_infection(builder, person, rng):
    """Infection pressure scaled by the person's mobility modifier."""
    state = person.current_state
    if state.infected:
        builder.set(
            symptomatic=state.symptomatic or rng.random() < 0.4,
            requires_hospitalisation=rng.random() < 0.1,
            infected=rng.random() > 0.1,
        )
    elif rng.random() < 0.05 * builder.mobility_modifier:
        builder.infected = True


def main():
    parser = argparse.ArgumentParser(
        description="Reactive lockdown control-loop demo",
    )
    parser.add_argument(
        '--config', type=Path, default=None,
        help="Base YAML configuration (defaults built in if omitted)",
    )
    parser.add_argument(
        '--source', choices=('scripted', 'population'), default='scripted',
        help="Where observed indicators come from",
    )
    parser.add_argument(
        '--trials', type=int, default=1000,
        help="Observations per period for the scripted burden trace",
    )
    parser.add_argument(
        '--workers', type=int, default=None,
        help="Threads for per-person phases",
    )
    parser.add_argument('-v', '--verbose', action='store_true')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config) if args.config else default_config()
    if args.workers is not None:
        config.simulation.parallel_workers = args.workers

    if args.source == 'scripted':
        config.policy.lockdown_trigger_value = 'HOSPITAL_BURDEN'
        script = ScriptedObservations.from_proportions(
            'hospitalisation_rate', BURDEN, trials=args.trials,
        )
        result = run_simulation(config, observations=script, n_periods=len(BURDEN) - 1)
    else:
        result = run_simulation(
            config,
            person_processors=[toy_infection],
            initial_infected=range(max(1, config.simulation.population_size // 20)),
        )

    print("=" * 60)
    print(f"Trigger: {result.trigger}  "
          f"(start {config.policy.lockdown_start_trigger}, "
          f"release {config.policy.lockdown_release_trigger})")
    print("=" * 60)
    for t in range(result.n_periods + 1):
        print(f"  t={t:3d}  {result.policy[t]:<26} "
              f"{result.indicator_successes[t]:5d}/{result.indicator_trials[t]:<5d} "
              f"[{result.indicator_lower[t]:.3f} - {result.indicator_upper[t]:.3f}]  "
              f"lockdown behaviour: {result.isolating[t]}")
    print(f"\nTransitions: {result.transitions}")


if __name__ == '__main__':
    main()
