"""NaN-aware interpolation helpers used by the correction tables and the solver."""
from __future__ import annotations

import numpy as np
from scipy.interpolate import CubicSpline, PchipInterpolator, interp1d as _scipy_interp1d

from .errors import ConsistencyError

MODES = ("linear", "nearest", "previous", "next", "pchip", "cubic", "spline")

# relative nudge applied around each evaluation point
NUDGE = 5.0 * np.finfo(float).eps


def check_mode(mode: str) -> str:
    mode = mode.lower()
    if mode not in MODES:
        raise ConsistencyError(f"Unsupported interpolation mode '{mode}'")
    return "pchip" if mode == "cubic" else mode


def interp1(x, y, xi, mode: str = "linear", *, extrapolate: bool = False) -> np.ndarray:
    """Interpolate *y* sampled at *x* along its first axis.

    Only finite samples take part, so NaN samples at either end shrink the
    valid domain. Outside the valid domain the result is NaN unless
    *extrapolate* is set. Columns sharing the same NaN pattern are fitted
    together.
    """

    mode = check_mode(mode)
    x = np.asarray(x, dtype=float).ravel()
    y = np.asarray(y)
    xi = np.asarray(xi, dtype=float)
    if y.shape[0] != x.size:
        raise ConsistencyError(f"Sample axis of length {x.size} does not match data of shape {y.shape}")

    if np.iscomplexobj(y):
        re = interp1(x, y.real, xi, mode, extrapolate=extrapolate)
        im = interp1(x, y.imag, xi, mode, extrapolate=extrapolate)
        return re + 1j * im

    trailing = y.shape[1:]
    samples = y.reshape(x.size, -1).astype(float)
    points = xi.ravel()
    out = np.full((points.size, samples.shape[1]), np.nan)

    if samples.size and points.size:
        valid = np.isfinite(samples) & np.isfinite(x)[:, None]
        patterns, inverse = np.unique(valid.T, axis=0, return_inverse=True)
        inverse = np.asarray(inverse).reshape(-1)
        for k, pattern in enumerate(patterns):
            if not pattern.any():
                continue
            cols = np.flatnonzero(inverse == k)
            xs = x[pattern]
            ys = samples[pattern][:, cols]
            order = np.argsort(xs, kind="mergesort")
            out[:, cols] = _interp_valid(xs[order], ys[order], points, mode, extrapolate)

    return out.reshape(xi.shape + trailing)


def _interp_valid(xs: np.ndarray, ys: np.ndarray, xi: np.ndarray, mode: str, extrapolate: bool) -> np.ndarray:
    if xs.size == 1:
        if extrapolate:
            return np.repeat(ys, xi.size, axis=0)
        hit = xi == xs[0]
        return np.where(hit[:, None], ys[0][None, :], np.nan)

    if mode in ("previous", "next"):
        return _interp_step(xs, ys, xi, mode, extrapolate)
    if mode in ("linear", "nearest"):
        func = _scipy_interp1d(
            xs,
            ys,
            kind=mode,
            axis=0,
            bounds_error=False,
            fill_value="extrapolate" if extrapolate else np.nan,
            assume_sorted=True,
        )
        return func(xi)
    if mode == "pchip":
        return PchipInterpolator(xs, ys, axis=0, extrapolate=extrapolate)(xi)
    return CubicSpline(xs, ys, axis=0, extrapolate=extrapolate)(xi)


def _interp_step(xs: np.ndarray, ys: np.ndarray, xi: np.ndarray, mode: str, extrapolate: bool) -> np.ndarray:
    if mode == "next":
        idx = np.searchsorted(xs, xi, side="left")
    else:
        idx = np.searchsorted(xs, xi, side="right") - 1
    inside = (idx >= 0) & (idx < xs.size)
    out = ys[np.clip(idx, 0, xs.size - 1)]
    if not extrapolate:
        out = np.where(inside[:, None], out, np.nan)
    return out


def nanmean(stack: np.ndarray, axis: int = 0) -> np.ndarray:
    """Mean over *axis* ignoring NaN; all-NaN slices give NaN without warnings."""

    stack = np.asarray(stack)
    finite = ~np.isnan(stack)
    count = finite.sum(axis=axis)
    total = np.where(finite, stack, 0.0).sum(axis=axis)
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(count > 0, total / np.maximum(count, 1), np.nan)


def _nudged(values: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    delta = NUDGE * np.abs(values)
    return values - delta, values + delta


def interp1nan(x, y, xi, mode: str = "linear") -> np.ndarray:
    """:func:`interp1` evaluated slightly left and right of each point.

    The non-NaN candidates are averaged, so a point that coincides with a
    sample next to a NaN gap still gets the stored value.
    """

    xi = np.asarray(xi, dtype=float)
    lo, hi = _nudged(xi)
    return nanmean(np.stack([interp1(x, y, lo, mode), interp1(x, y, hi, mode)]))


def _grid(x, y, z, xi, yi, mode: str) -> np.ndarray:
    # primary (row) axis first, then the secondary (column) axis
    along_y = interp1(y, z, yi, mode)
    return interp1(x, along_y.T, xi, mode).T


def interp2nan(x, y, z, xi, yi, mode: str = "linear") -> np.ndarray:
    """Grid interpolation of ``z[len(y), len(x)]``, result ``[len(yi), len(xi)]``."""

    x = np.asarray(x, dtype=float).ravel()
    y = np.asarray(y, dtype=float).ravel()
    z = np.asarray(z)
    xi = np.atleast_1d(np.asarray(xi, dtype=float)).ravel()
    yi = np.atleast_1d(np.asarray(yi, dtype=float)).ravel()
    if z.shape != (y.size, x.size):
        raise ConsistencyError(f"Grid of shape {z.shape} does not match axes ({y.size}, {x.size})")
    candidates = [
        _grid(x, y, z, xs, ys, mode)
        for xs in _nudged(xi)
        for ys in _nudged(yi)
    ]
    return nanmean(np.stack(candidates))


def _pairs(x, y, z, xi, yi, mode: str) -> np.ndarray:
    # rows are evaluated once per distinct primary coordinate
    out = np.full(xi.size, np.nan)
    if np.iscomplexobj(z):
        out = out.astype(complex)
    unique_y, inverse = np.unique(yi, return_inverse=True)
    inverse = np.asarray(inverse).reshape(-1)
    rows = interp1(y, z, unique_y, mode)
    for k in range(unique_y.size):
        sel = np.flatnonzero(inverse == k)
        out[sel] = interp1(x, rows[k], xi[sel], mode)
    return out


def interp2nan_pairs(x, y, z, xi, yi, mode: str = "linear") -> np.ndarray:
    """Pointwise interpolation at ``(xi[k], yi[k])`` pairs."""

    x = np.asarray(x, dtype=float).ravel()
    y = np.asarray(y, dtype=float).ravel()
    z = np.asarray(z)
    xi = np.atleast_1d(np.asarray(xi, dtype=float)).ravel()
    yi = np.atleast_1d(np.asarray(yi, dtype=float)).ravel()
    if xi.size != yi.size:
        raise ConsistencyError("Pointwise interpolation needs equally long coordinate vectors")
    if z.shape != (y.size, x.size):
        raise ConsistencyError(f"Grid of shape {z.shape} does not match axes ({y.size}, {x.size})")
    candidates = [
        _pairs(x, y, z, xs, ys, mode)
        for xs in _nudged(xi)
        for ys in _nudged(yi)
    ]
    return nanmean(np.stack(candidates))


def nearest_index(x, xq) -> np.ndarray:
    """Index of the sample of ascending *x* nearest to each of *xq*."""

    x = np.asarray(x, dtype=float).ravel()
    xq = np.atleast_1d(np.asarray(xq, dtype=float)).ravel()
    right = np.clip(np.searchsorted(x, xq, side="left"), 0, x.size - 1)
    left = np.clip(right - 1, 0, x.size - 1)
    take_left = np.abs(xq - x[left]) <= np.abs(x[right] - xq)
    return np.where(take_left, left, right)
