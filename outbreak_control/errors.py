"""Error taxonomy for the reactive control loop.

Configuration-time errors (kernel normalisation, malformed thresholds)
abort experiment setup before the first period. Once the period loop is
running every exception is a logic defect and propagates to the caller.
"""

from __future__ import annotations


class OutbreakControlError(Exception):
    """Base class for all errors raised by outbreak_control."""


class DegenerateKernelError(OutbreakControlError, ValueError):
    """A kernel's raw density sums to zero and cannot be normalised."""


class UndefinedTransitionError(OutbreakControlError, RuntimeError):
    """A state-machine variant has no transition for a reachable condition."""


class SealedSnapshotError(OutbreakControlError, RuntimeError):
    """A builder was written to, or published, after it was sealed."""
