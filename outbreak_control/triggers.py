"""Named trigger indicators for policy decisions.

A Trigger selects exactly one Binomial indicator from an OutbreakState.
Triggers are stateless and referentially stable by name: configuration
refers to them as ``"TEST_POSITIVITY"``, ``"HOSPITAL_BURDEN"`` etc.
"""

from __future__ import annotations

from enum import Enum

from outbreak_control.binomial import Binomial
from outbreak_control.types import OutbreakState


class Trigger(Enum):
    """Outbreak indicators a policy can monitor.

    TEST_POSITIVITY            positives among people tested (any test type)
    SCREENING_TEST_POSITIVITY  positives among routinely screened people
    TEST_COUNT                 people with a positive test among the whole
                               live population (test-positive prevalence)
    HOSPITAL_BURDEN            people requiring hospitalisation among the
                               live population
    """
    TEST_POSITIVITY = 'presumed_test_positivity'
    SCREENING_TEST_POSITIVITY = 'screening_test_positivity'
    TEST_COUNT = 'presumed_test_positive_prevalence'
    HOSPITAL_BURDEN = 'hospitalisation_rate'

    @property
    def field_name(self) -> str:
        """OutbreakState field this trigger reads."""
        return self.value

    def select(self, state: OutbreakState) -> Binomial:
        return getattr(state, self.value)

    @classmethod
    def from_name(cls, name: str) -> "Trigger":
        """Look up a trigger by its configured name (case-insensitive)."""
        try:
            return cls[name.upper()]
        except KeyError:
            raise ValueError(
                f"Unknown trigger '{name}'. Available: {[t.name for t in cls]}"
            ) from None
