from __future__ import annotations

import numpy as np
import pytest

from pwrcorr.errors import ConsistencyError, FormatError, RangeError
from pwrcorr.loading import (
    LoadingResult,
    Topology,
    TransducerKind,
    find_major_bins,
    parse_kind,
    relative_transfer,
    solve,
)
from pwrcorr.mesh import SyntheticTransducer, decimate_correction, run_selftest
from pwrcorr.tables import TableSet, load_table

RLO = {TransducerKind.RVD: 200.0, TransducerKind.SHUNT: 20.0}


def _neutral(f, A, ph, u_A=0.0, u_ph=0.0, **kwargs) -> LoadingResult:
    return solve(TableSet(), "shunt", None, f, A, ph, u_A, u_ph, **kwargs)


def test_neutral_tables_leave_the_signal_unchanged() -> None:
    f = np.array([50.0, 100.0, 150.0])
    A = np.array([1.0, 0.5, 0.25])
    ph = np.array([0.1, -0.2, 0.3])
    result = _neutral(f, A, ph, 1e-3, 2e-3)

    assert np.allclose(result.A, A, rtol=1e-12)
    assert np.allclose(result.ph, ph, rtol=1e-12)
    assert np.allclose(result.u_A, 1e-3, rtol=1e-6)
    u_method = (f / 1e6) * 5e-6 / np.sqrt(3.0)
    assert np.allclose(result.u_ph, np.hypot(2e-3, u_method), rtol=1e-6)


def test_zero_amplitude_line_keeps_finite_phase() -> None:
    result = _neutral([50.0, 100.0, 150.0], [1.0, 0.0, 0.5], [0.1, 0.0, 0.2], 1e-3, 1e-3)
    assert result.A[1] == pytest.approx(0.0)
    assert result.ph[1] == pytest.approx(0.0)
    assert np.all(np.isfinite(result.ph))
    assert np.all(np.isfinite(result.u_ph))
    assert np.allclose(result.ph[[0, 2]], [0.1, 0.2])


def test_zero_amplitude_line_in_synthetic_chain() -> None:
    transducer = SyntheticTransducer(TransducerKind.RVD, Topology.SINGLE_ENDED, Rlo=200.0, bins=100)
    A, ph = transducer.spectrum()
    A[10] = 0.0
    case = transducer.build(A=A, ph=ph)
    result = case.correct()
    assert result.A[10] == pytest.approx(0.0, abs=1e-12)
    assert np.all(np.isfinite(result.ph))
    assert np.all(np.isfinite(result.u_ph))


def test_synthetic_tables_have_zero_uncertainty_companions() -> None:
    case = SyntheticTransducer(TransducerKind.RVD, Topology.DIFFERENTIAL, Rlo=200.0, bins=50).build()
    zlo = case.tables["tr_Zlo"]
    assert set(zlo.quantity_names) == {"Rp", "Cp", "u_Rp", "u_Cp"}
    assert np.allclose(zlo.uncertainty("Rp"), 0.0)
    assert np.allclose(case.tables["tr_Zcam"].uncertainty("M"), 0.0)
    assert case.tables["tr_gain"].has_secondary
    for name in ("tr_Zca", "tr_Yca", "tr_Zcal", "Zcb", "Ycb", "adc_Yin", "lo_adc_Yin"):
        assert name in case.tables


def test_selftest_runs_synthetic_cases() -> None:
    cases = [SyntheticTransducer(TransducerKind.SHUNT, Topology.SINGLE_ENDED, Rlo=20.0, bins=100)]
    outcomes = run_selftest(cases)
    assert len(outcomes) == 1
    assert outcomes[0].bins == 100
    assert outcomes[0].passed


def test_input_order_is_restored() -> None:
    result = _neutral([150.0, 50.0, 100.0], [3.0, 1.0, 2.0], [0.3, 0.1, 0.2])
    assert np.allclose(result.A, [3.0, 1.0, 2.0])
    assert np.allclose(result.ph, [0.3, 0.1, 0.2])


@pytest.mark.parametrize("f", [[50.0, 50.0, 100.0], [-1.0, 50.0], [np.nan, 50.0]])
def test_invalid_frequencies_raise(f) -> None:
    with pytest.raises(ConsistencyError):
        _neutral(f, np.ones(len(f)), np.zeros(len(f)))


def test_argument_checks() -> None:
    with pytest.raises(ConsistencyError):
        _neutral([], [], [])
    with pytest.raises(ConsistencyError):
        _neutral([50.0, 100.0], [1.0, 1.0, 1.0], [0.0, 0.0])
    with pytest.raises(ConsistencyError):
        solve(TableSet(), "shunt", 1, [50.0, 60.0], 1.0, 0.0, 0.0, 0.0)
    with pytest.raises(ConsistencyError):
        _neutral([50.0], [1.0], [0.0], lo_A=[0.1])
    with pytest.raises(ConsistencyError):
        solve(TableSet(), "transformer", None, [50.0], 1.0, 0.0, 0.0, 0.0)


def test_rvd_needs_low_side_impedance() -> None:
    with pytest.raises(FormatError, match="tr_Zlo"):
        solve(TableSet(), TransducerKind.RVD, None, [50.0], 1.0, 0.0, 0.0, 0.0)


def test_frequency_outside_tables_raises() -> None:
    cable = load_table([[10.0, 1000.0], [0.01, 0.01], [1e-7, 1e-7]], "", ("f", "Rs", "Ls"), name="Zcb")
    tables = TableSet({"Zcb": cable})
    solve(tables, "shunt", None, [10.0, 1000.0], 1.0, 0.0, 0.0, 0.0)
    with pytest.raises(RangeError, match="Zcb"):
        solve(tables, "shunt", None, [10.0, 5000.0], 1.0, 0.0, 0.0, 0.0)


def test_parse_kind() -> None:
    assert parse_kind("SHUNT") is TransducerKind.SHUNT
    assert parse_kind(TransducerKind.RVD) is TransducerKind.RVD


@pytest.mark.parametrize("kind", list(TransducerKind))
@pytest.mark.parametrize("topology", list(Topology))
def test_correction_matches_loop_current_solution(kind: TransducerKind, topology: Topology) -> None:
    case = SyntheticTransducer(kind, topology, Rlo=RLO[kind], bins=300).build()
    gain_ratio, phase_ratio = case.deviation(case.correct())
    assert gain_ratio < 1.0
    assert phase_ratio < 1.0


@pytest.mark.parametrize("topology", list(Topology))
def test_reduced_solve_matches_loop_current_solution(topology: Topology) -> None:
    case = SyntheticTransducer(TransducerKind.RVD, topology, Rlo=200.0, bins=2000).build()
    result = case.correct(max_accurate_bins=1000)
    assert result.A.shape == case.f.shape
    gain_ratio, phase_ratio = case.deviation(result)
    assert gain_ratio < 1.0
    assert phase_ratio < 1.0


def test_reduced_differential_random_spectrum() -> None:
    transducer = SyntheticTransducer(
        TransducerKind.SHUNT,
        Topology.DIFFERENTIAL,
        Rlo=20.0,
        bins=3000,
        random_count=100,
        seed=3,
    )
    case = transducer.build()
    gain_ratio, phase_ratio = case.deviation(case.correct(max_accurate_bins=1000))
    assert gain_ratio < 1.0
    assert phase_ratio < 1.0


def test_rms_level_outside_gain_table_raises() -> None:
    case = SyntheticTransducer(TransducerKind.SHUNT, Topology.SINGLE_ENDED, Rlo=20.0, bins=50).build()
    zeros = np.zeros_like(case.f)
    with pytest.raises(RangeError, match="RMS"):
        solve(case.tables, case.kind, None, case.f, case.hi_A * 10, case.hi_ph, zeros, zeros)


def test_find_major_bins() -> None:
    hi = np.array([0.0, 5.0, 1.0, 2.0, 0.0, 9.0, 1.0])
    index, size = find_major_bins(hi, np.zeros_like(hi), 3)
    assert size == 3
    assert list(index) == [1, 5, 6]

    index, size = find_major_bins(hi, np.zeros_like(hi), 10)
    assert size == 1
    assert list(index) == list(range(7))


def test_relative_transfer() -> None:
    result = LoadingResult(
        A=np.array([2.0]), ph=np.array([0.5]), u_A=np.array([0.2]), u_ph=np.array([0.01])
    )
    gain, phase, u_gain, u_phase = relative_transfer(result, [1.0], [0.2])
    assert gain[0] == pytest.approx(2.0)
    assert phase[0] == pytest.approx(0.3)
    assert u_gain[0] == pytest.approx(0.2)
    assert u_phase[0] == pytest.approx(0.01)

    gain, _, _, _ = relative_transfer(result, [1.0], [0.0], lo_A=[1.0], lo_ph=[0.0])
    assert np.isfinite(gain[0])
    assert gain[0] == pytest.approx(2.0 / np.finfo(float).eps)


def test_decimate_linear_characteristic() -> None:
    f1 = np.linspace(10.0, 100.0, 91)
    f2 = np.linspace(10.0, 100.0, 10)
    a2, b2, u_a2, u_b2 = decimate_correction(2 * f1, 1 - f1, f1, f2)
    assert np.allclose(a2, 2 * f2)
    assert np.allclose(b2, 1 - f2)
    assert u_a2.shape == f2.shape
    assert np.allclose(u_a2, 0.0, atol=1e-12)
    assert np.allclose(u_b2, 0.0, atol=1e-12)
