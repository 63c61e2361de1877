"""Finite-difference uncertainty propagation.

A :class:`Bundle` carries a nominal value together with one perturbed copy per
real and imaginary part of each uncertain input. Arithmetic replays on every
copy, so any expression built from bundles yields the sensitivity of the
result to each input. :func:`collapse` combines the deviations by
root-sum-of-squares.

Column layout for ``total`` inputs: column ``0`` is nominal, input ``i`` owns
column ``2*i + 1`` (value shifted by the real part of its uncertainty) and
column ``2*i + 2`` (value shifted by ``1j`` times the imaginary part).
"""
from __future__ import annotations

import numpy as np

from .errors import ConsistencyError


class Bundle:
    """Nominal value plus perturbed copies, shaped ``(N, 2*total + 1)``."""

    # let numpy defer to the reflected operators below
    __array_ufunc__ = None

    def __init__(self, columns: np.ndarray) -> None:
        columns = np.asarray(columns, dtype=complex)
        if columns.ndim != 2 or columns.shape[1] % 2 != 1:
            raise ConsistencyError(f"Bundle needs (N, 2K+1) columns, got shape {columns.shape}")
        self.columns = columns

    @property
    def width(self) -> int:
        return self.columns.shape[1]

    @property
    def total(self) -> int:
        return (self.width - 1) // 2

    def __len__(self) -> int:
        return self.columns.shape[0]

    @property
    def nominal(self) -> np.ndarray:
        return self.columns[:, 0]

    def __repr__(self) -> str:
        return f"Bundle(rows={len(self)}, inputs={self.total})"

    def _operand(self, other) -> np.ndarray:
        if isinstance(other, Bundle):
            if other.width != self.width:
                raise ConsistencyError(
                    f"Cannot combine bundles of width {self.width} and {other.width}"
                )
            if len(other) != len(self) and 1 not in (len(other), len(self)):
                raise ConsistencyError(
                    f"Cannot combine bundles with {len(self)} and {len(other)} rows"
                )
            return other.columns
        arr = np.asarray(other)
        if arr.ndim == 0:
            return arr
        if arr.ndim == 1:
            if arr.size not in (1, len(self)):
                raise ConsistencyError(
                    f"Vector of length {arr.size} does not match bundle with {len(self)} rows"
                )
            return arr[:, None]
        if arr.ndim == 2 and arr.shape[1] == 1:
            return arr
        raise ConsistencyError(f"Cannot combine bundle with array of shape {arr.shape}")

    def __add__(self, other) -> "Bundle":
        return Bundle(self.columns + self._operand(other))

    def __radd__(self, other) -> "Bundle":
        return Bundle(self._operand(other) + self.columns)

    def __sub__(self, other) -> "Bundle":
        return Bundle(self.columns - self._operand(other))

    def __rsub__(self, other) -> "Bundle":
        return Bundle(self._operand(other) - self.columns)

    def __mul__(self, other) -> "Bundle":
        return Bundle(self.columns * self._operand(other))

    def __rmul__(self, other) -> "Bundle":
        return Bundle(self._operand(other) * self.columns)

    def __truediv__(self, other) -> "Bundle":
        return Bundle(self.columns / self._operand(other))

    def __rtruediv__(self, other) -> "Bundle":
        return Bundle(self._operand(other) / self.columns)

    def __pow__(self, other) -> "Bundle":
        return Bundle(self.columns ** self._operand(other))

    def __rpow__(self, other) -> "Bundle":
        return Bundle(self._operand(other) ** self.columns)

    def __neg__(self) -> "Bundle":
        return Bundle(-self.columns)

    def __pos__(self) -> "Bundle":
        return self

    def __abs__(self) -> "Bundle":
        return Bundle(np.abs(self.columns))

    def exp(self) -> "Bundle":
        return Bundle(np.exp(self.columns))

    def sqrt(self) -> "Bundle":
        return Bundle(np.sqrt(self.columns))

    def conj(self) -> "Bundle":
        return Bundle(np.conj(self.columns))

    @property
    def real(self) -> "Bundle":
        return Bundle(self.columns.real)

    @property
    def imag(self) -> "Bundle":
        return Bundle(self.columns.imag)

    def angle(self) -> "Bundle":
        """Phase angle; probes are taken relative to the nominal so they never wrap."""

        nominal = self.columns[:, :1]
        # a zero nominal has phase 0, its probes keep their own phase
        zero = nominal == 0
        base = np.where(zero, 0.0, np.angle(nominal))
        delta = np.angle(self.columns / np.where(zero, 1.0, nominal))
        return Bundle(base + delta)


def seed(value, uncertainty, index: int, total: int) -> Bundle:
    """Create a bundle for input *index* (0-based) out of *total* inputs."""

    if not 0 <= index < total:
        raise ConsistencyError(f"Input index {index} outside 0..{total - 1}")
    value = np.atleast_1d(np.asarray(value, dtype=complex)).ravel()
    uncertainty = np.broadcast_to(
        np.asarray(uncertainty, dtype=complex), value.shape
    )
    columns = np.repeat(value[:, None], 2 * total + 1, axis=1)
    columns[:, 2 * index + 1] += uncertainty.real
    columns[:, 2 * index + 2] += 1j * uncertainty.imag
    return Bundle(columns)


def constant(value, total: int) -> Bundle:
    """Bundle of a value without uncertainty."""

    value = np.atleast_1d(np.asarray(value, dtype=complex)).ravel()
    return Bundle(np.repeat(value[:, None], 2 * total + 1, axis=1))


def collapse(bundle: Bundle) -> tuple[np.ndarray, np.ndarray]:
    """Return nominal value and RSS uncertainty ``u_re + 1j*u_im``."""

    nominal = bundle.columns[:, 0]
    deviation = bundle.columns[:, 1:] - bundle.columns[:, :1]
    u_re = np.sqrt(np.sum(deviation.real**2, axis=1))
    u_im = np.sqrt(np.sum(deviation.imag**2, axis=1))
    return nominal, u_re + 1j * u_im


def collapse_real(bundle: Bundle) -> tuple[np.ndarray, np.ndarray]:
    """Collapse a real-valued result (magnitude, phase) to real arrays."""

    value, uncertainty = collapse(bundle)
    return value.real, uncertainty.real
