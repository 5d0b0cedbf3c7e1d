"""Seeded random streams for reproducible control-loop runs.

Every entity draws from its own NumPy Generator, spawned from a single
master SeedSequence. Because each person has a private stream, the result
of a run does not depend on the order in which persons are updated or on
how many worker threads update them.

Stream layout:
  - 'outbreak':      policy decisions and routine screening draws
  - 'observations':  observation processors (synthetic indicators)
  - 'person_0' ..    one stream per person for behaviour draws
"""

from __future__ import annotations

from typing import Dict

import numpy as np

OUTBREAK_STREAM = 'outbreak'
OBSERVATION_STREAM = 'observations'


def _generator(seed: np.random.SeedSequence) -> np.random.Generator:
    return np.random.Generator(np.random.PCG64(seed))


def create_rng_hierarchy(
    master_seed: int,
    n_people: int,
) -> Dict[str, np.random.Generator]:
    """Create independent streams for the outbreak and each person.

    Person streams are spawned from their own child sequence, so growing
    the population appends streams without changing existing ones.

    Args:
        master_seed: Master seed (non-negative integer).
        n_people: Number of persons in the population.

    Returns:
        Dictionary mapping stream names to Generator instances.

    Example:
        >>> rngs = create_rng_hierarchy(42, n_people=100)
        >>> rngs['outbreak'].random()
        >>> rngs['person_7'].random()
    """
    if master_seed < 0:
        raise ValueError(f"master_seed must be non-negative, got {master_seed}")
    outbreak_seed, observation_seed, people_seed = (
        np.random.SeedSequence(master_seed).spawn(3)
    )
    rngs: Dict[str, np.random.Generator] = {
        OUTBREAK_STREAM: _generator(outbreak_seed),
        OBSERVATION_STREAM: _generator(observation_seed),
    }
    for i, child in enumerate(people_seed.spawn(n_people)):
        rngs[f'person_{i}'] = _generator(child)
    return rngs


def get_person_rng(
    rngs: Dict[str, np.random.Generator],
    person_id: int,
) -> np.random.Generator:
    """Stream for one person.

    Raises:
        KeyError: If person_id has no stream.
    """
    key = f'person_{person_id}'
    if key not in rngs:
        n = sum(1 for k in rngs if k.startswith('person_'))
        raise KeyError(
            f"No RNG stream for person {person_id}; hierarchy has {n} persons"
        )
    return rngs[key]


def rng_state_snapshot(
    rngs: Dict[str, np.random.Generator],
) -> Dict[str, dict]:
    """Capture the state of every stream (picklable) for checkpointing."""
    return {name: rng.bit_generator.state for name, rng in rngs.items()}


def restore_rng_state(
    rngs: Dict[str, np.random.Generator],
    states: Dict[str, dict],
) -> None:
    """Restore streams from an rng_state_snapshot() checkpoint.

    Raises:
        KeyError: If a snapshot stream is missing from rngs.
    """
    for name, state in states.items():
        if name not in rngs:
            raise KeyError(f"Cannot restore RNG state for unknown stream '{name}'")
        rngs[name].bit_generator.state = state
