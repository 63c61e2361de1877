"""Synthetic transducer chains solved by loop currents.

The loading correction in :mod:`pwrcorr.loading` works with closed-form
cascades of pi-networks. This module builds the same chains as plain 4x4
loop-current systems, solves them directly and generates the correction
tables a calibration lab would measure on such a chain. Running the
correction on the simulated digitizer readings must give back the
generated input signal.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np

from .interpolation import interp1nan, nearest_index
from .loading import LoadingResult, Topology, TransducerKind, solve
from .tables import TABLE_LAYOUTS, TableSet, load_table

logger = logging.getLogger(__name__)

F_MIN = 10.0
F_MAX = 1e6

# low-side capacitance of the divider or shunt
C_LO = 50e-12
# return path of the differential connection
R_RETURN = 1.0
L_RETURN = 5e-6
# output terminals
RS_TERM = 50e-3
LS_TERM = 1000e-9
CP_TERM = 100e-12
D_TERM = 0.01
LOW_TERM_SCALE = 1.2
M_TERM = 300e-9
# cable
CABLE_LENGTH = 0.5
RS_CABLE = 50e-3
LS_CABLE = 250e-9
CP_CABLE = 105e-12
D_CABLE = 0.02
# digitizer input
CP_INPUT = 50e-12
RP_INPUT = 1e6

SHUNT_HIGH_SIDE = 1e-15


def decimate_correction(a, b, f1, f2, mode: str = "linear"):
    """Resample the characteristics *a*, *b* from *f1* to the coarser *f2*.

    Returns ``(a2, b2, u_a2, u_b2)``. The uncertainties estimate the error of
    interpolating back from *f2* to *f1*, taken at the spot nearest to the
    centre of each *f2* section.
    """

    f1 = np.asarray(f1, dtype=float)
    f2 = np.asarray(f2, dtype=float)
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)

    a2 = interp1nan(f1, a, f2, mode)
    b2 = interp1nan(f1, b, f2, mode)
    da = np.abs(interp1nan(f2, a2, f1, mode) - a)
    db = np.abs(interp1nan(f2, b2, f1, mode) - b)

    fid = nearest_index(f1, 0.5 * (f2[:-1] + f2[1:]))
    fid = np.append(fid, fid[-1])
    return a2, b2, da[fid] / np.sqrt(3.0), db[fid] / np.sqrt(3.0)


def _complex(*values) -> list[np.ndarray]:
    return [np.asarray(v, dtype=complex) for v in np.broadcast_arrays(*values)]


def _solve_loops(L: np.ndarray) -> np.ndarray:
    # unity source in the first loop
    U = np.zeros(L.shape[:-1], dtype=complex)
    U[..., 0] = 1.0
    return np.linalg.solve(L, U[..., None])[..., 0]


def _matrix(rows) -> np.ndarray:
    return np.stack([np.stack(row, axis=-1) for row in rows], axis=-2)


def mesh_currents_single_ended(Zhi, Zlo, Zca, Yca, Zcb, Ycb, Zin) -> np.ndarray:
    """Loop currents ``(F, 4)`` of the single-ended chain driven by 1 V.

    Loops: transducer input, low side to terminal shunt, terminal shunt to
    cable shunt, cable shunt to digitizer input.
    """

    Zhi, Zlo, Zca, Yca, Zcb, Ycb, Zin = _complex(Zhi, Zlo, Zca, Yca, Zcb, Ycb, Zin)
    z = np.zeros_like(Zlo)
    Za = 1 / Yca
    Zb = 1 / Ycb
    L = _matrix([
        [Zhi + Zlo, -Zlo, z, z],
        [-Zlo, Zlo + 0.5 * Zca + Za, -Za, z],
        [z, -Za, Za + 0.5 * Zca + 0.5 * Zcb + Zb, -Zb],
        [z, z, -Zb, Zb + 0.5 * Zcb + Zin],
    ])
    return _solve_loops(L)


def mesh_currents_differential(Zhi, Zlo, Zx, Zca, Yca, Zcal, Zcam, Zih, Zil) -> np.ndarray:
    """Loop currents ``(F, 4)`` of the differential chain driven by 1 V.

    *Zih* and *Zil* are the impedances seen into the high-side and low-side
    cables, *Zx* is the return path between transducer and digitizer ground.
    """

    Zhi, Zlo, Zx, Zca, Yca, Zcal, Zcam, Zih, Zil = _complex(
        Zhi, Zlo, Zx, Zca, Yca, Zcal, Zcam, Zih, Zil
    )
    z = np.zeros_like(Zlo)
    Za = 1 / Yca
    L = _matrix([
        [Zhi + Zlo + Zx, -Zlo, z, -Zx],
        [-Zlo, Zlo + Za + 0.5 * Zca + 0.5 * Zcal, -Za, -0.5 * Zcal],
        [z, -Za, Za + 0.5 * Zca + 0.5 * Zcal + Zih + Zil - 2 * Zcam, -0.5 * Zcal - Zil + Zcam],
        [-Zx, -0.5 * Zcal, -0.5 * Zcal - Zil + Zcam, Zx + Zcal + Zil],
    ])
    return _solve_loops(L)


def _cable_joint(Yin: np.ndarray, Zcb: np.ndarray, Ycb: np.ndarray):
    """Impedance seen into a cable loaded by the digitizer and its transfer (out/in)."""

    Zin = 1 / Yin
    Zi = 1 / (1 / (Zin + 0.5 * Zcb) + Ycb)
    tfer = Zi / (Zi + 0.5 * Zcb) * Zin / (Zin + 0.5 * Zcb)
    return Zi + 0.5 * Zcb, tfer


@dataclass(frozen=True)
class _Circuit:
    w: np.ndarray
    Zhi: np.ndarray
    Zlo: np.ndarray
    Zx: np.ndarray
    Zca: np.ndarray
    Yca: np.ndarray
    Zcal: np.ndarray
    Zcam: np.ndarray
    Zcb: np.ndarray
    Ycb: np.ndarray
    Yin: np.ndarray
    Yin_lo: np.ndarray


@dataclass(frozen=True)
class SyntheticCase:
    """Generated input signal, simulated digitizer readings and tables."""

    label: str
    kind: TransducerKind
    topology: Topology
    f: np.ndarray
    A: np.ndarray
    ph: np.ndarray
    hi_A: np.ndarray
    hi_ph: np.ndarray
    tables: TableSet
    lo_A: Optional[np.ndarray] = None
    lo_ph: Optional[np.ndarray] = None

    def correct(self, max_accurate_bins: Optional[int] = None) -> LoadingResult:
        zeros = np.zeros_like(self.f)
        lo = {}
        if self.lo_A is not None:
            lo = dict(lo_A=self.lo_A, lo_ph=self.lo_ph, u_lo_A=zeros, u_lo_ph=zeros)
        return solve(
            self.tables,
            self.kind,
            max_accurate_bins,
            self.f,
            self.hi_A,
            self.hi_ph,
            zeros,
            zeros,
            **lo,
        )

    def deviation(self, result: LoadingResult) -> tuple[float, float]:
        """Worst deviation from the generated signal relative to its acceptance limit.

        Amplitude errors are accepted up to ``max(1e-6*A, 2*u_A)``, phase
        errors up to ``max(1e-6, 2*u_ph)``. Values below one pass.
        """

        gain_limit = np.maximum(1e-6 * self.A, 2 * result.u_A)
        phase_limit = np.maximum(1e-6, 2 * result.u_ph)
        gain_error = np.abs(result.A - self.A)
        phase_error = np.abs(np.angle(np.exp(1j * (result.ph - self.ph))))
        return float(np.max(gain_error / gain_limit)), float(np.max(phase_error / phase_limit))


@dataclass
class SyntheticTransducer:
    """Divider or shunt with terminals, cable and digitizer of known parameters.

    ``random_count`` switches from a flat unity spectrum to a noise floor
    with that many components of random log-uniform amplitude and random
    phase.
    """

    kind: TransducerKind
    topology: Topology
    Rlo: float
    ratio: float = 10.0
    bins: int = 500
    table_points: int = 100
    random_count: int = 0
    amplitude_max: float = 1.0
    amplitude_min: float = 10e-6
    noise: float = 1e-6
    seed: int = 0
    label: str = ""

    @property
    def differential(self) -> bool:
        return self.topology is Topology.DIFFERENTIAL

    def describe(self, bins: Optional[int] = None) -> str:
        if self.label:
            return self.label
        mode = "DIFF" if self.differential else "SE"
        return f"{mode} {self.kind.value} ({bins or self.bins} bins)"

    def spectrum(self, bins: Optional[int] = None) -> tuple[np.ndarray, np.ndarray]:
        bins = bins or self.bins
        if not self.random_count:
            return np.ones(bins), np.zeros(bins)
        rng = np.random.default_rng(self.seed)
        A = rng.random(bins) * self.noise
        picked = rng.choice(bins, size=self.random_count, replace=False)
        lo, hi = np.log10(self.amplitude_min), np.log10(self.amplitude_max)
        A[picked] = 10.0 ** (lo + (hi - lo) * rng.random(self.random_count))
        ph = (1 - 2 * rng.random(bins)) * np.pi * 0.9
        return A, ph

    def circuit(self, f: np.ndarray) -> _Circuit:
        w = 2 * np.pi * f
        Zlo = 1 / (1 / self.Rlo + 1j * w * C_LO)
        if self.kind is TransducerKind.RVD:
            C_hi = C_LO / (self.ratio - 1)
            Zhi = 1 / (1 / ((self.ratio - 1) * self.Rlo) + 1j * w * C_hi)
        else:
            Zhi = np.full(f.shape, SHUNT_HIGH_SIDE, dtype=complex)
        Zca = RS_TERM + 1j * w * LS_TERM
        Yin = 1 / RP_INPUT + 1j * w * CP_INPUT
        return _Circuit(
            w=w,
            Zhi=Zhi,
            Zlo=Zlo,
            Zx=R_RETURN + 1j * w * L_RETURN,
            Zca=Zca,
            Yca=w * CP_TERM * (1j + D_TERM),
            Zcal=LOW_TERM_SCALE * Zca,
            Zcam=1j * w * M_TERM,
            Zcb=(RS_CABLE + 1j * w * LS_CABLE) * CABLE_LENGTH,
            Ycb=w * CP_CABLE * (1j + D_CABLE) * CABLE_LENGTH,
            Yin=Yin,
            Yin_lo=Yin,
        )

    def build(self, f=None, A=None, ph=None) -> SyntheticCase:
        """Simulate the chain at *f* (default: log grid of ``bins`` spots).

        *A* and *ph* replace the generated spectrum. The correction tables
        span exactly the simulated frequency range.
        """

        if f is None:
            f = np.logspace(np.log10(F_MIN), np.log10(F_MAX), self.bins)
        f = np.asarray(f, dtype=float)
        if A is None or ph is None:
            A, ph = self.spectrum(f.size)
        A = np.asarray(A, dtype=float)
        ph = np.asarray(ph, dtype=float)
        fc = np.logspace(np.log10(f[0]), np.log10(f[-1]), min(f.size, self.table_points))
        fc[0], fc[-1] = f[0], f[-1]
        net = self.circuit(f)
        rms = float(np.sqrt(np.sum(0.5 * A**2)))
        tables = self._tables(net, f, fc, rms)

        X = A * np.exp(1j * ph)
        if self.differential:
            Zih, tf_hi = _cable_joint(net.Yin, net.Zcb, net.Ycb)
            Zil, tf_lo = _cable_joint(net.Yin_lo, net.Zcb, net.Ycb)
            I = mesh_currents_differential(
                net.Zhi, net.Zlo, net.Zx, net.Zca, net.Yca, net.Zcal, net.Zcam, Zih, Zil
            )
            I1, I3, I4 = I[:, 0], I[:, 2], I[:, 3]
            if self.kind is TransducerKind.RVD:
                k = X / (1 - (I1 - I4) * net.Zx)
            else:
                k = X / I1
            U_hi = I3 * Zih * k * tf_hi
            U_lo = (I4 - I3) * Zil * k * tf_lo
            return SyntheticCase(
                label=self.describe(f.size), kind=self.kind, topology=self.topology,
                f=f, A=A, ph=ph, hi_A=np.abs(U_hi), hi_ph=np.angle(U_hi),
                lo_A=np.abs(U_lo), lo_ph=np.angle(U_lo), tables=tables,
            )

        Zin = 1 / net.Yin
        I = mesh_currents_single_ended(net.Zhi, net.Zlo, net.Zca, net.Yca, net.Zcb, net.Ycb, Zin)
        tfer = I[:, 3] * Zin
        if self.kind is TransducerKind.SHUNT:
            tfer = tfer / I[:, 0]
        return SyntheticCase(
            label=self.describe(f.size), kind=self.kind, topology=self.topology,
            f=f, A=A, ph=ph, hi_A=A * np.abs(tfer), hi_ph=ph + np.angle(tfer),
            tables=tables,
        )

    def _tables(self, net: _Circuit, f: np.ndarray, fc: np.ndarray, rms: float) -> TableSet:
        w = net.w
        Zca = net.Zca + net.Zcal if self.differential else net.Zca
        Yca = net.Yca

        # what a calibration through the unloaded output terminals sees
        Zlo_ef = 1 / (1 / net.Zlo + 1 / (1 / Yca + 0.5 * Zca))
        k_te = (Yca * Zca + 2) / 2
        Zlo_meas = 1 / (1 / (net.Zlo + 0.5 * Zca) + Yca) + 0.5 * Zca
        if self.kind is TransducerKind.RVD:
            k_ef = (Zlo_ef + net.Zhi) / Zlo_ef * k_te
        else:
            k_ef = k_te / Zlo_ef

        gc, pc, u_gc, u_pc = decimate_correction(np.abs(k_ef), np.angle(k_ef), f, fc, "pchip")
        levels = np.array([0.0, 1.1 * rms, 2.0 * rms])
        gc, pc, u_gc, u_pc = (np.tile(v[:, None], (1, levels.size)) for v in (gc, pc, u_gc, u_pc))
        # real calibration data are rarely complete
        gc[-1, -1] = np.nan
        u_gc[-1, -1] = np.nan

        def resample(values, mode="linear"):
            return interp1nan(f, values, fc, mode)

        def table(name, values, secondary=""):
            # names of the arrays given, missing uncertainties are zero-filled
            given = len(values) - (1 if secondary else 0)
            return load_table(values, secondary, TABLE_LAYOUTS[name][1][:given], name=name)

        Y_meas = 1 / Zlo_meas
        tables = {
            "tr_gain": table("tr_gain", [fc, levels, gc, u_gc], "rms"),
            "tr_phi": table("tr_phi", [fc, levels, pc, u_pc], "rms"),
            "tr_Zlo": table(
                "tr_Zlo", [fc, resample(1 / Y_meas.real, "pchip"), resample(Y_meas.imag / w, "pchip")]
            ),
        }
        series = {"tr_Zca": net.Zca, "tr_Zcal": net.Zcal, "Zcb": net.Zcb}
        for name, Z in series.items():
            tables[name] = table(name, [fc, resample(Z.real), resample(Z.imag / w)])
        for name, Y in {"tr_Yca": net.Yca, "Ycb": net.Ycb}.items():
            tables[name] = table(name, [fc, resample(Y.imag / w), resample(Y.real / Y.imag)])
        for name, Y in {"adc_Yin": net.Yin, "lo_adc_Yin": net.Yin_lo}.items():
            tables[name] = table(name, [fc, resample(Y.imag / w), resample(Y.real)])
        tables["tr_Zcam"] = table("tr_Zcam", [fc, resample(net.Zcam.imag / w)])
        return TableSet(tables)


@dataclass(frozen=True)
class SelftestResult:
    label: str
    bins: int
    gain_ratio: float
    phase_ratio: float
    elapsed: float

    @property
    def passed(self) -> bool:
        return self.gain_ratio < 1.0 and self.phase_ratio < 1.0


def default_cases(bins: Iterable[int] = (500, 10000)) -> list[SyntheticTransducer]:
    """Divider and shunt in both topologies, plus a sparse random spectrum."""

    cases: list[SyntheticTransducer] = []
    for count in bins:
        for topology in (Topology.SINGLE_ENDED, Topology.DIFFERENTIAL):
            cases.append(SyntheticTransducer(TransducerKind.RVD, topology, Rlo=200.0, ratio=10.0, bins=count))
            cases.append(SyntheticTransducer(TransducerKind.SHUNT, topology, Rlo=20.0, bins=count))
    cases.append(
        SyntheticTransducer(
            TransducerKind.SHUNT,
            Topology.DIFFERENTIAL,
            Rlo=20.0,
            bins=20000,
            random_count=500,
            label="DIFF shunt, random spectrum (20000 bins)",
        )
    )
    return cases


def run_selftest(
    cases: Optional[Iterable[SyntheticTransducer]] = None,
    max_accurate_bins: Optional[int] = None,
) -> list[SelftestResult]:
    """Correct every synthetic case and compare with the generated input."""

    results: list[SelftestResult] = []
    for transducer in cases if cases is not None else default_cases():
        case = transducer.build()
        start = time.perf_counter()
        corrected = case.correct(max_accurate_bins)
        elapsed = time.perf_counter() - start
        gain_ratio, phase_ratio = case.deviation(corrected)
        outcome = SelftestResult(case.label, case.f.size, gain_ratio, phase_ratio, elapsed)
        logger.info(
            "%s: gain %.3g, phase %.3g of limit in %.2f s",
            outcome.label, gain_ratio, phase_ratio, elapsed,
        )
        results.append(outcome)
    return results
