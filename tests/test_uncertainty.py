from __future__ import annotations

import numpy as np
import pytest

from pwrcorr.errors import ConsistencyError
from pwrcorr.uncertainty import Bundle, collapse, collapse_real, constant, seed


def test_linear_expression_scales_uncertainty() -> None:
    x = seed([1.0, 2.0], [0.1, 0.2], 0, 2)
    value, u = collapse(3 * x + 2)
    assert np.allclose(value, [5.0, 8.0])
    assert np.allclose(u.real, [0.3, 0.6])
    assert np.allclose(u.imag, 0.0)


def test_imaginary_probe_is_orthogonal() -> None:
    x = seed(1 + 1j, 0.1 + 0.2j, 0, 1)
    value, u = collapse(x * 1j)
    assert value[0] == pytest.approx(-1 + 1j)
    # real part of the input uncertainty lands in the imaginary part of the result
    assert u[0].real == pytest.approx(0.2)
    assert u[0].imag == pytest.approx(0.1)


def test_independent_inputs_add_in_quadrature() -> None:
    x = seed(2.0, 0.01, 0, 2)
    y = seed(3.0, 0.02, 1, 2)
    value, u = collapse_real(x * y)
    assert value[0] == pytest.approx(6.0)
    assert u[0] == pytest.approx(np.hypot(3 * 0.01, 2 * 0.02))


def test_quotient_matches_analytic_uncertainty() -> None:
    a = seed(2.0, 0.1, 0, 3)
    b = seed(3.0, 0.2, 1, 3)
    c = seed(5.0, 0.05, 2, 3)
    value, u = collapse_real((a + b) / c)
    assert value[0] == pytest.approx(1.0)
    analytic = np.sqrt((0.1 / 5.0) ** 2 + (0.2 / 5.0) ** 2 + (5.0 / 25.0 * 0.05) ** 2)
    assert u[0] == pytest.approx(analytic, rel=1e-3)
    # forward differences, exactly
    exact = np.sqrt((0.1 / 5.0) ** 2 + (0.2 / 5.0) ** 2 + (5.0 / 5.05 - 1.0) ** 2)
    assert u[0] == pytest.approx(exact, rel=1e-12)


def test_angle_of_zero_is_zero() -> None:
    phase, u_phase = collapse_real(seed([0.0, 1j], 1e-3, 0, 1).angle())
    assert phase[0] == 0.0
    assert phase[1] == pytest.approx(np.pi / 2)
    assert np.all(np.isfinite(u_phase))


def test_numpy_array_on_the_left_returns_bundle() -> None:
    x = seed([1.0, 2.0], 0.1, 0, 1)
    result = np.array([2.0, 3.0]) * x
    assert isinstance(result, Bundle)
    assert np.allclose(result.nominal, [2.0, 6.0])


def test_angle_does_not_wrap_near_pi() -> None:
    v = np.exp(1j * (np.pi - 1e-4))
    phase, u_phase = collapse_real(seed(v, 1e-3, 0, 1).angle())
    assert phase[0] == pytest.approx(np.pi - 1e-4)
    assert u_phase[0] < 1e-3


def test_width_mismatch_raises() -> None:
    with pytest.raises(ConsistencyError):
        seed(1.0, 0.1, 0, 1) + seed(1.0, 0.1, 0, 2)
    with pytest.raises(ConsistencyError):
        seed([1.0, 2.0], 0.1, 0, 1) * np.ones(3)


def test_seed_index_out_of_range() -> None:
    with pytest.raises(ConsistencyError):
        seed(1.0, 0.1, 2, 2)


def test_constant_has_no_uncertainty() -> None:
    value, u = collapse(constant([1.0, 2.0], 3).sqrt())
    assert np.allclose(value, [1.0, np.sqrt(2.0)])
    assert np.allclose(u, 0.0)
