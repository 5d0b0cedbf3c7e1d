"""Adapters that feed observed quantities into the control loop.

The policy never computes its own indicators: each period an outbreak
processor writes them onto the next OutbreakState builder. Two sources are
provided, plus a person processor for kernel-based risk evidence:

  ScriptedObservations     replay a predetermined per-period sequence
  PopulationObservations   summarise the persons' sealed snapshots
  KernelRiskEstimator      convolve a person's dated evidence into
                           PersonState.exposure

Processors are callables ``(builder, entity, rng)`` run by the Updater
after the entity's own transition and before its snapshot is sealed.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np

from outbreak_control.binomial import EMPTY, Binomial
from outbreak_control.kernel import Kernel, default_kernels


def _as_binomial(value: Any) -> Binomial:
    """Accept a Binomial, a (successes, trials) pair or a mapping."""
    if isinstance(value, Binomial):
        return value
    if isinstance(value, Mapping):
        return Binomial(int(value['successes']), int(value['trials']))
    successes, trials = value
    return Binomial(int(successes), int(trials))


@dataclass(frozen=True)
class OutbreakObservation:
    """Observed quantities for one period; None leaves a field untouched."""
    cumulative_infections: Optional[int] = None
    hospitalisation_rate: Optional[Binomial] = None
    presumed_test_positivity: Optional[Binomial] = None
    screening_test_positivity: Optional[Binomial] = None
    presumed_test_positive_prevalence: Optional[Binomial] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "OutbreakObservation":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown observation fields: {sorted(unknown)}")
        values: Dict[str, Any] = {}
        for name, value in data.items():
            if value is None:
                continue
            if name == 'cumulative_infections':
                values[name] = int(value)
            else:
                values[name] = _as_binomial(value)
        return cls(**values)

    def as_updates(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self) if getattr(self, f.name) is not None
        }


class ScriptedObservations:
    """Outbreak processor replaying a fixed observation sequence.

    Entry ``i`` applies to the snapshot at ``start + i``. Times past the end
    of the script repeat its last entry; times before ``start`` are left
    untouched.

    Example:
        >>> script = ScriptedObservations.from_proportions(
        ...     'hospitalisation_rate', [0.0] * 5 + [0.1] * 5 + [0.0], trials=1000)
        >>> script.at(6).hospitalisation_rate
        Binomial(successes=100, trials=1000)
    """

    def __init__(
        self,
        observations: Sequence[Union[OutbreakObservation, Mapping[str, Any]]],
        start: int = 0,
    ):
        if not observations:
            raise ValueError("ScriptedObservations needs at least one entry")
        self._observations: List[OutbreakObservation] = [
            o if isinstance(o, OutbreakObservation) else OutbreakObservation.from_mapping(o)
            for o in observations
        ]
        self.start = start

    @classmethod
    def from_proportions(
        cls, field_name: str, proportions: Iterable[float], trials: int, start: int = 0,
    ) -> "ScriptedObservations":
        """Script one indicator as ``round(p * trials)`` successes per period."""
        return cls(
            [{field_name: Binomial(int(round(p * trials)), trials)} for p in proportions],
            start=start,
        )

    def __len__(self) -> int:
        return len(self._observations)

    def at(self, time: int) -> Optional[OutbreakObservation]:
        index = time - self.start
        if index < 0:
            return None
        return self._observations[min(index, len(self._observations) - 1)]

    def __call__(self, builder, outbreak, rng: np.random.Generator) -> None:
        observation = self.at(builder.time)
        if observation is not None:
            builder.set(**observation.as_updates())


def _state_before(person, time: int):
    try:
        return person.state_at(time - 1)
    except IndexError:
        return None


class PopulationObservations:
    """Outbreak processor deriving indicators from the population.

    hospitalisation_rate               needing hospital among live persons
    presumed_test_positivity           persons with a positive result among
                                       persons tested within ``test_window``
    presumed_test_positive_prevalence  the same positives among live persons
    screening_test_positivity          the period's screening record
    cumulative_infections              running count of new infections
    """

    def __init__(self, test_window: int = 7):
        if test_window < 1:
            raise ValueError(f"test_window must be >= 1, got {test_window}")
        self.test_window = test_window

    def __call__(self, builder, outbreak, rng: np.random.Generator) -> None:
        now = builder.time
        live = [p for p in outbreak.people if not p.state_at(now).dead]

        tested = positive = new_infections = 0
        for person in live:
            results = [
                record.test_positive
                for record in (
                    person.history_at(t) for t in range(now - self.test_window + 1, now + 1)
                )
                if record is not None and record.screened
            ]
            if results:
                tested += 1
                positive += any(results)
        for person in outbreak.people:
            previous = _state_before(person, now)
            if person.state_at(now).infected and not (previous and previous.infected):
                new_infections += 1

        screening = outbreak.history_at(now)
        previous_total = (
            outbreak.current_state.cumulative_infections if outbreak.states else 0
        )
        builder.set(
            hospitalisation_rate=Binomial.from_outcomes(
                p.state_at(now).requires_hospitalisation for p in live
            ),
            presumed_test_positivity=Binomial(positive, tested),
            presumed_test_positive_prevalence=Binomial(positive, len(live)),
            screening_test_positivity=(
                screening.screening_result if screening is not None else EMPTY
            ),
            cumulative_infections=previous_total + new_infections,
        )


class KernelRiskEstimator:
    """Person processor accumulating dated evidence into ``exposure``.

    Symptom onsets (first symptomatic period after a symptom-free one) and
    positive screening results are read from the person's history. A
    history record stamped t+1 covers the period when snapshot t was
    current, so its events are dated t. Contact days come from an optional
    ``contact_days(person, now)`` callable supplied by the contact-network
    collaborator.
    """

    def __init__(
        self,
        kernels: Optional[Mapping[str, Kernel]] = None,
        contact_days: Optional[Callable[[Any, int], Iterable[int]]] = None,
    ):
        defaults = default_kernels()
        kernels = dict(kernels or {})
        self.symptom_kernel = kernels.get('symptom', defaults['symptom_onset'])
        self.test_kernel = kernels.get('test', defaults['test_sample'])
        self.contact_kernel = kernels.get('contact', defaults['contact'])
        self.contact_days = contact_days

    def evidence_days(self, person):
        """Onset days and positive-test days from the person's history."""
        onsets, positives = [], []
        was_symptomatic = False
        for record in person.history:
            if record.symptomatic and not was_symptomatic:
                onsets.append(record.time - 1)
            was_symptomatic = record.symptomatic
            if record.test_positive:
                positives.append(record.time - 1)
        return onsets, positives

    def __call__(self, builder, person, rng: np.random.Generator) -> None:
        now = builder.time
        onsets, positives = self.evidence_days(person)
        exposure = (
            self.symptom_kernel.convolve(onsets, now)
            + self.test_kernel.convolve(positives, now)
        )
        if self.contact_days is not None:
            exposure += self.contact_kernel.convolve(self.contact_days(person, now), now)
        builder.exposure = exposure
