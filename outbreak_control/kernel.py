"""Discrete convolution kernels for time-displaced risk evidence.

A kernel maps an integer time lag to a contribution weight. A dated event
(symptom onset on day d, test sample on day d, contact on day d) contributes
``kernel.evaluate(now - d)`` to a running latent-infection risk signal, so
a single observation is spread over the days it is informative about.

Lag convention: ``density[i]`` is the weight at lag ``offset + i``. The
support is therefore ``[offset, offset + len(density))``; positive lags are
in the past, negative lags in the future (prospective evidence). Evaluating
outside the support returns 0.

Construction always normalises: every density value is multiplied by
``target_sum / raw_sum`` so the weights over the full support add up to
``target_sum``. A zero raw sum has no sensible normalisation and raises
DegenerateKernelError at configuration time.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, Mapping, Sequence, Union

import numpy as np

from outbreak_control.errors import DegenerateKernelError


class Kernel:
    """Normalised, immutable discrete kernel over integer lags."""

    __slots__ = ('_offset', '_density', '_target_sum')

    def __init__(
        self,
        offset: int,
        density: Sequence[float],
        target_sum: float = 1.0,
    ):
        values = np.asarray(density, dtype=np.float64)
        if values.ndim != 1:
            raise ValueError(
                f"kernel density must be one-dimensional, got shape {values.shape}"
            )
        if np.any(values < 0) or not np.all(np.isfinite(values)):
            raise ValueError("kernel density values must be finite and non-negative")
        if not target_sum > 0:
            raise ValueError(f"kernel target_sum must be positive, got {target_sum}")
        raw_sum = float(values.sum())
        if raw_sum == 0.0:
            raise DegenerateKernelError(
                f"kernel density {list(values)} sums to zero; "
                f"cannot normalise to {target_sum}"
            )
        values = values * (target_sum / raw_sum)
        values.setflags(write=False)
        self._offset = int(offset)
        self._density = values
        self._target_sum = float(target_sum)

    # ── alternative constructors ─────────────────────────────────────

    @classmethod
    def square(cls, offset: int, length: int, target_sum: float = 1.0) -> "Kernel":
        """Flat kernel of the given length."""
        return cls(offset, np.ones(length), target_sum)

    @classmethod
    def from_zero_index(
        cls, zero_index: int, density: Sequence[float], target_sum: float = 1.0,
    ) -> "Kernel":
        """Build from a density whose lag-zero weight sits at ``zero_index``."""
        return cls(-zero_index, density, target_sum)

    # ── accessors ────────────────────────────────────────────────────

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def density(self) -> np.ndarray:
        """Normalised weights (read-only view)."""
        return self._density

    @property
    def target_sum(self) -> float:
        return self._target_sum

    @property
    def size(self) -> int:
        return len(self._density)

    @property
    def support(self) -> range:
        """Lags with a defined weight."""
        return range(self._offset, self._offset + self.size)

    def __len__(self) -> int:
        return self.size

    def __repr__(self) -> str:
        return (
            f"Kernel(offset={self._offset}, size={self.size}, "
            f"target_sum={self._target_sum:g})"
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, Kernel):
            return NotImplemented
        return (
            self._offset == other._offset
            and self._target_sum == other._target_sum
            and np.array_equal(self._density, other._density)
        )

    def __hash__(self) -> int:
        return hash((self._offset, self._target_sum, self._density.tobytes()))

    # ── evaluation ───────────────────────────────────────────────────

    def evaluate(self, lag: int) -> float:
        """Weight at an integer lag; 0 outside the support."""
        index = int(lag) - self._offset
        if index < 0 or index >= self.size:
            return 0.0
        return float(self._density[index])

    def convolve(self, event_days: Iterable[int], now: int) -> float:
        """Accumulated contribution of dated events as seen from ``now``."""
        return float(sum(self.evaluate(now - day) for day in event_days))

    def scale(self, factor: float) -> "Kernel":
        """Kernel with every weight multiplied by ``factor``."""
        return Kernel(self._offset, self._density, self._target_sum * factor)

    def normalise_to(self, target_sum: float) -> "Kernel":
        return Kernel(self._offset, self._density, target_sum)


# ═══════════════════════════════════════════════════════════════════════
# BUILT-IN KERNELS
# ═══════════════════════════════════════════════════════════════════════

class DefaultKernel(Enum):
    """Reference kernels for the three kinds of dated evidence.

    Symptom onset evidence is spread over 4 days ahead and 7 days behind the
    onset; test samples over 6 days ahead and 10 behind; contacts only look
    back over the following week.
    """
    SYMPTOM_ONSET = (4, (0.1, 0.2, 0.4, 0.8, 1, 1, 1, 0.8, 0.6, 0.4, 0.2), 5.0)
    TEST_SAMPLE = (
        6,
        (0.1, 0.2, 0.4, 0.6, 0.8, 0.9, 1, 1, 1, 1, 1, 1, 0.8, 0.6, 0.4, 0.2),
        10.0,
    )
    CONTACT = (0, (1, 1, 1, 1, 0.8, 0.6, 0.4, 0.2), 7.5)

    @property
    def kernel(self) -> Kernel:
        zero_index, density, target_sum = self.value
        return Kernel.from_zero_index(zero_index, density, target_sum)


KernelSpec = Union[str, Mapping[str, object], Kernel]


def resolve_kernel(spec: KernelSpec) -> Kernel:
    """Turn a configuration entry into a Kernel.

    Accepts a built-in kernel name (``"SYMPTOM_ONSET"``), a mapping with
    ``offset``, ``density`` and optional ``target_sum``, or a Kernel.

    Raises:
        KeyError: If a name does not match a built-in kernel.
        DegenerateKernelError: If a provided density sums to zero.
    """
    if isinstance(spec, Kernel):
        return spec
    if isinstance(spec, str):
        try:
            return DefaultKernel[spec.upper()].kernel
        except KeyError:
            raise KeyError(
                f"Unknown kernel '{spec}'. "
                f"Available: {[k.name for k in DefaultKernel]}"
            ) from None
    if isinstance(spec, Mapping):
        missing = {'offset', 'density'} - set(spec)
        if missing:
            raise ValueError(f"kernel mapping missing keys: {sorted(missing)}")
        return Kernel(
            int(spec['offset']),
            list(spec['density']),
            float(spec.get('target_sum', 1.0)),
        )
    raise TypeError(f"Cannot build a kernel from {type(spec).__name__}")


def default_kernels() -> Dict[str, Kernel]:
    """Built-in kernels keyed by lower-case name."""
    return {k.name.lower(): k.kernel for k in DefaultKernel}
