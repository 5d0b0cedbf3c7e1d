"""Binomial observations and confidence-bounded threshold comparisons.

A Binomial is an observed (successes, trials) pair. Policy decisions never
compare a point estimate against a threshold; they ask whether the whole
Wilson score interval lies past it. With few trials the interval is wide
and neither comparison holds, so the control loop does not react to
sampling noise.

Wilson interval for p̂ = k/n at two-sided coverage c, z = Φ⁻¹(1 - (1-c)/2):

    centre = (p̂ + z²/2n) / (1 + z²/n)
    half   = z/(2n) · sqrt(4n·p̂(1-p̂) + z²) / (1 + z²/n)

References:
  - Wilson (1927), J. Am. Stat. Assoc. 22:209-212
  - Brown, Cai & DasGupta (2001) on interval coverage at small n
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, NamedTuple

from scipy.stats import norm

DEFAULT_CONFIDENCE = 0.95


@lru_cache(maxsize=32)
def z_quantile(confidence: float) -> float:
    """Two-sided standard-normal quantile for a coverage level in (0, 1)."""
    if not 0.0 < confidence < 1.0:
        raise ValueError(f"confidence must be in (0, 1), got {confidence}")
    return float(norm.ppf(1.0 - (1.0 - confidence) / 2.0))


class Confidence(NamedTuple):
    """Lower and upper bound of a proportion confidence interval."""
    lower: float
    upper: float

    def __str__(self) -> str:
        return f"[{self.lower * 100:.1f} - {self.upper * 100:.1f}]"


@dataclass(frozen=True)
class Binomial:
    """An observed count of successes out of a number of trials.

    trials == 0 is a valid observation carrying no information: both
    confident comparisons are False for every threshold.
    """
    successes: int = 0
    trials: int = 0

    def __post_init__(self):
        if self.successes < 0 or self.trials < 0:
            raise ValueError(
                f"Binomial counts must be non-negative, got "
                f"{self.successes}/{self.trials}"
            )
        if self.successes > self.trials:
            raise ValueError(
                f"successes ({self.successes}) must not exceed "
                f"trials ({self.trials})"
            )

    # ── construction ─────────────────────────────────────────────────

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[bool]) -> "Binomial":
        """Collect boolean outcomes: True counts as a success."""
        k = n = 0
        for outcome in outcomes:
            n += 1
            if outcome:
                k += 1
        return cls(k, n)

    @staticmethod
    def combine(*observations: "Binomial") -> "Binomial":
        """Pool observations by summing successes and trials."""
        return Binomial(
            sum(b.successes for b in observations),
            sum(b.trials for b in observations),
        )

    def __add__(self, other: "Binomial") -> "Binomial":
        if not isinstance(other, Binomial):
            return NotImplemented
        return Binomial.combine(self, other)

    # ── point estimates ──────────────────────────────────────────────

    def probability(self) -> float:
        """Observed proportion; 0 when there are no trials."""
        if self.trials == 0:
            return 0.0
        return self.successes / self.trials

    def odds(self) -> float:
        p = self.probability()
        if p >= 1.0:
            return math.inf
        return p / (1.0 - p)

    # ── intervals ────────────────────────────────────────────────────

    def wilson(self, confidence: float = DEFAULT_CONFIDENCE) -> Confidence:
        """Wilson score interval at the given two-sided coverage.

        Returns the uninformative interval [0, 1] when trials == 0.
        """
        n = self.trials
        if n == 0:
            return Confidence(0.0, 1.0)
        z = z_quantile(confidence)
        p = self.probability()
        z2 = z * z
        denom = 1.0 + z2 / n
        centre = p + z2 / (2.0 * n)
        half = z / (2.0 * n) * math.sqrt(4.0 * n * p * (1.0 - p) + z2)
        lower = max(0.0, (centre - half) / denom)
        upper = min(1.0, (centre + half) / denom)
        return Confidence(lower, upper)

    def confidently_greater_than(
        self, threshold: float, confidence: float = DEFAULT_CONFIDENCE,
    ) -> bool:
        """True iff the lower Wilson bound exceeds the threshold."""
        if self.trials == 0:
            return False
        return self.wilson(confidence).lower > threshold

    def confidently_less_than(
        self, threshold: float, confidence: float = DEFAULT_CONFIDENCE,
    ) -> bool:
        """True iff the upper Wilson bound is below the threshold."""
        if self.trials == 0:
            return False
        return self.wilson(confidence).upper < threshold

    def __str__(self) -> str:
        return (
            f"{self.probability() * 100:.1f} {self.wilson()} "
            f"({self.successes}/{self.trials})"
        )


EMPTY = Binomial(0, 0)
