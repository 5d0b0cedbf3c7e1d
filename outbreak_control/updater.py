"""Period driver for the reactive control loop.

One call to ``Updater.update(outbreak)`` advances every entity from t to
t+1 in strictly ordered steps:

  1. prepare     open next-state (t+1) and history (t+1) builders
  2. phase 1     outbreak history, sealed; then every person's history
  3. phase 2     outbreak transition
  4. broadcast   apply the policy's forced transition to all live persons
  5. phase 2     every person's transition and person processors, sealed
  6. processors  outbreak processors write observed quantities, sealed

Phase 1 finishes for every entity before phase 2 starts for any, and the
broadcast is applied completely before any person runs phase 2. Persons
within a phase are independent and may be run on a thread pool; each
draws from its own random stream, so results do not depend on
``parallel_workers``.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence

import numpy as np

from outbreak_control.statemachine import Broadcast, Transition
from outbreak_control.types import Builder

logger = logging.getLogger(__name__)

Processor = Callable[[Builder, object, np.random.Generator], None]


class Updater:
    """Drives Outbreak and Person entities through one period at a time.

    Args:
        outbreak_processors: Run in order after the policy transition, with
            the outbreak's state builder. Use them to feed observations.
        person_processors: Run in order after each person's transition,
            with that person's state builder and random stream.
        parallel_workers: Threads used for per-person phases (1 = serial).
        observation_rng: Stream handed to outbreak processors (defaults to
            the outbreak's own stream).
    """

    def __init__(
        self,
        outbreak_processors: Sequence[Processor] = (),
        person_processors: Sequence[Processor] = (),
        parallel_workers: int = 1,
        observation_rng: Optional[np.random.Generator] = None,
    ):
        if parallel_workers < 1:
            raise ValueError(f"parallel_workers must be >= 1, got {parallel_workers}")
        self.outbreak_processors: List[Processor] = list(outbreak_processors)
        self.person_processors: List[Processor] = list(person_processors)
        self.parallel_workers = parallel_workers
        self.observation_rng = observation_rng

    def with_outbreak_processor(self, processor: Processor) -> "Updater":
        self.outbreak_processors.append(processor)
        return self

    def with_person_processor(self, processor: Processor) -> "Updater":
        self.person_processors.append(processor)
        return self

    # ── helpers ──────────────────────────────────────────────────────

    def _for_each_person(self, people, fn) -> None:
        if self.parallel_workers == 1 or len(people) < 2:
            for person in people:
                fn(person)
            return
        with ThreadPoolExecutor(max_workers=self.parallel_workers) as pool:
            # list() re-raises the first worker exception here
            list(pool.map(fn, people))

    def _observation_rng(self, outbreak) -> np.random.Generator:
        return self.observation_rng if self.observation_rng is not None else outbreak.rng

    def _run_outbreak_processors(self, builder: Builder, outbreak) -> None:
        rng = self._observation_rng(outbreak)
        for processor in self.outbreak_processors:
            processor(builder, outbreak, rng)

    def _person_phase_two(self, person) -> None:
        person.update_state()
        builder = person.next_state
        for processor in self.person_processors:
            processor(builder, person, person.rng)

    # ── lifecycle ────────────────────────────────────────────────────

    def initialise(self, outbreak, person_states, outbreak_state: Builder) -> None:
        """Seal the time-0 snapshots.

        Args:
            outbreak: Outbreak whose persons are already attached.
            person_states: One PersonState builder per person, in order.
            outbreak_state: OutbreakState builder for t=0; outbreak
                processors run on it before it is sealed.
        """
        for person, builder in zip(outbreak.people, person_states):
            person.initialise(builder)
        outbreak_state.set(
            population_size=len(outbreak.live_people()),
            behaviour_counts=outbreak.behaviour_counts(),
        )
        self._run_outbreak_processors(outbreak_state, outbreak)
        outbreak.initialise(outbreak_state)

    def apply_broadcast(self, outbreak, broadcast: Broadcast) -> int:
        """Force every live person into the broadcast variant.

        Returns:
            Number of persons forced.
        """
        forced = 0
        for person in outbreak.people:
            if person.current_state.dead:
                continue
            if broadcast.include is not None and not broadcast.include(person):
                continue
            person.machine.force_to(broadcast.variant)
            forced += 1
        logger.info(
            "t=%d: %s forced %d person(s) to %s",
            outbreak.time, outbreak.machine.state.qualified_name,
            forced, broadcast.variant.qualified_name,
        )
        return forced

    def update(self, outbreak) -> Transition:
        """Advance the outbreak and its population by one period."""
        people = outbreak.people
        before = outbreak.machine.state
        logger.debug("t=%d: updating %d person(s) under %s",
                     outbreak.time, len(people), before.qualified_name)

        outbreak.prepare_update()
        for person in people:
            person.prepare_update()

        # phase 1: outbreak first, persons read its sealed record
        outbreak.update_history()
        outbreak.publish_history()
        self._for_each_person(people, lambda p: p.update_history())
        for person in people:
            person.publish_history()

        # phase 2
        result = outbreak.update_state()
        if result.next is not before:
            logger.info("t=%d: policy %s -> %s", outbreak.time,
                        before.qualified_name, result.next.qualified_name)
        if result.broadcast is not None:
            self.apply_broadcast(outbreak, result.broadcast)
        self._for_each_person(people, self._person_phase_two)
        for person in people:
            person.publish_state()

        builder = outbreak.next_state
        builder.set(
            population_size=sum(1 for p in people if not p.current_state.dead),
            behaviour_counts=outbreak.behaviour_counts(),
        )
        self._run_outbreak_processors(builder, outbreak)
        outbreak.publish_state()
        return result

    def run(self, outbreak, n_periods: int,
            on_period: Optional[Callable[[object, Transition], None]] = None) -> None:
        """Run ``n_periods`` updates, calling ``on_period`` after each."""
        for _ in range(n_periods):
            result = self.update(outbreak)
            if on_period is not None:
                on_period(outbreak, result)
