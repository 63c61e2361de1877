from __future__ import annotations

import warnings

import numpy as np
import pytest

from pwrcorr.errors import ConsistencyError
from pwrcorr.interpolation import (
    check_mode,
    interp1,
    interp1nan,
    interp2nan,
    interp2nan_pairs,
    nanmean,
    nearest_index,
)


def test_interp1_linear_inside_and_outside() -> None:
    x = [0.0, 1.0, 2.0]
    y = [0.0, 10.0, 20.0]
    assert np.allclose(interp1(x, y, [0.5, 1.5]), [5.0, 15.0])
    assert np.isnan(interp1(x, y, [2.5])[0])
    assert interp1(x, y, [2.5], extrapolate=True)[0] == pytest.approx(25.0)


def test_trailing_nan_shrinks_domain() -> None:
    x = [0.0, 1.0, 2.0]
    y = [0.0, 10.0, np.nan]
    assert interp1(x, y, [0.5])[0] == pytest.approx(5.0)
    assert np.isnan(interp1(x, y, [1.5])[0])
    # a stored point next to the gap keeps its value
    assert interp1nan(x, y, [1.0])[0] == pytest.approx(10.0)


def test_columns_with_different_nan_patterns() -> None:
    x = [0.0, 1.0, 2.0]
    y = np.array([[0.0, np.nan], [1.0, 1.0], [2.0, 2.0]])
    out = interp1(x, y, [0.5, 1.5])
    assert out.shape == (2, 2)
    assert out[0, 0] == pytest.approx(0.5)
    assert np.isnan(out[0, 1])
    assert out[1, 1] == pytest.approx(1.5)


def test_complex_values_interpolate_per_part() -> None:
    out = interp1([0.0, 1.0], [0.0, 1.0 + 1.0j], [0.5])
    assert out[0] == pytest.approx(0.5 + 0.5j)


@pytest.mark.parametrize("mode, expected", [("previous", 0.0), ("next", 10.0), ("nearest", 10.0)])
def test_step_modes(mode: str, expected: float) -> None:
    assert interp1([0.0, 1.0, 2.0], [0.0, 10.0, 20.0], [0.6], mode)[0] == pytest.approx(expected)


def test_pchip_keeps_monotonic_data() -> None:
    x = np.array([0.0, 1.0, 2.0, 3.0])
    y = np.array([0.0, 0.0, 1.0, 1.0])
    out = interp1(x, y, np.linspace(0.0, 3.0, 31), "pchip")
    assert np.all(out >= 0.0) and np.all(out <= 1.0)


def test_check_mode() -> None:
    assert check_mode("cubic") == "pchip"
    assert check_mode("Linear") == "linear"
    with pytest.raises(ConsistencyError):
        check_mode("quadratic")


def test_interp2nan_plane() -> None:
    x = np.array([0.0, 1.0, 2.0])
    y = np.array([10.0, 20.0])
    z = y[:, None] + 100.0 * x[None, :]
    out = interp2nan(x, y, z, [0.5, 1.5], [15.0])
    assert out.shape == (1, 2)
    assert np.allclose(out, [[65.0, 165.0]])

    pairs = interp2nan_pairs(x, y, z, [0.5, 1.5], [15.0, 20.0])
    assert np.allclose(pairs, [65.0, 170.0])


def test_interp2nan_pairs_length_mismatch() -> None:
    with pytest.raises(ConsistencyError):
        interp2nan_pairs([0.0, 1.0], [0.0, 1.0], np.zeros((2, 2)), [0.5], [0.5, 0.6])


def test_nanmean_all_nan_is_silent() -> None:
    stack = np.array([[np.nan, 1.0], [np.nan, 3.0]])
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        out = nanmean(stack, axis=0)
    assert np.isnan(out[0])
    assert out[1] == pytest.approx(2.0)


def test_nearest_index() -> None:
    x = [1.0, 2.0, 4.0, 8.0]
    assert list(nearest_index(x, [0.0, 1.4, 3.5, 5.0, 100.0])) == [0, 0, 2, 2, 3]
