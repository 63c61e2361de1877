"""Transducer loading correction.

Recovers the signal at the input terminals of a resistive divider (voltage)
or a shunt (current) from the phasors measured by the digitizer. The
transducer output terminals, the connecting cable and the digitizer input
are modelled as pi-networks described by the correction tables of a
:class:`~pwrcorr.tables.TableSet`:

``tr_gain``/``tr_phi``
    transducer transfer (input/output) vs. frequency and RMS level
``tr_Zlo``
    RVD low-side impedance (Rp-Cp), not used for shunts
``tr_Zca``/``tr_Yca``
    output terminal series impedance and shunt admittance
``tr_Zcal``/``tr_Zcam``
    low-side terminal series impedance and mutual inductance (differential)
``Zcb``/``Ycb``
    cable series impedance and shunt admittance
``adc_Yin``/``lo_adc_Yin``
    digitizer input admittance (high side, low side)

The transducer calibration is assumed to include its own terminals without
external load, so the terminal effect is first removed from the nominal
transfer, then the full terminal-cable-digitizer load is applied. Every
uncertain element takes one input slot of the finite-difference propagator.

When more than ``max_accurate_bins`` frequencies are passed, the network is
solved on a reduced set of spots and the resulting transfer is interpolated
back to all frequencies.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, fields, replace
from typing import Optional

import numpy as np

from .errors import ConsistencyError, FormatError, RangeError
from .expand import expand_tables
from .impedance import cpd_to_y, cpgp_to_y, cprp_to_z, lsrs_to_z
from .interpolation import check_mode, interp1, interp1nan, nanmean, nearest_index
from .tables import PRIMARY, CorrectionTable, TableSet
from .uncertainty import Bundle, collapse_real, seed

logger = logging.getLogger(__name__)

DEFAULT_MAX_BINS = 5000

INPUTS = 13
(
    SLOT_A,
    SLOT_PH,
    SLOT_ZLO,
    SLOT_ZCA,
    SLOT_YCA,
    SLOT_ZCB,
    SLOT_YCB,
    SLOT_YIN,
    SLOT_LO_A,
    SLOT_LO_PH,
    SLOT_ZCAL,
    SLOT_ZCAM,
    SLOT_LO_YIN,
) = range(INPUTS)

SQRT3 = np.sqrt(3.0)


class TransducerKind(str, enum.Enum):
    RVD = "rvd"
    SHUNT = "shunt"


class Topology(str, enum.Enum):
    SINGLE_ENDED = "single-ended"
    DIFFERENTIAL = "differential"


@dataclass(frozen=True)
class LoadingResult:
    """Input-referred amplitude and phase with standard uncertainties."""

    A: np.ndarray
    ph: np.ndarray
    u_A: np.ndarray
    u_ph: np.ndarray


@dataclass(frozen=True)
class _Spots:
    f: np.ndarray
    A: np.ndarray
    ph: np.ndarray
    u_A: np.ndarray
    u_ph: np.ndarray
    lo_A: Optional[np.ndarray] = None
    lo_ph: Optional[np.ndarray] = None
    u_lo_A: Optional[np.ndarray] = None
    u_lo_ph: Optional[np.ndarray] = None

    @property
    def differential(self) -> bool:
        return self.lo_A is not None

    def take(self, index: np.ndarray) -> "_Spots":
        values = {}
        for item in fields(self):
            value = getattr(self, item.name)
            values[item.name] = value[index] if value is not None else None
        return _Spots(**values)

    def difference(self) -> np.ndarray:
        """Complex high-side minus low-side phasor."""

        return self.A * np.exp(1j * self.ph) - self.lo_A * np.exp(1j * self.lo_ph)


@dataclass(frozen=True)
class _Network:
    Zca: Bundle
    Yca: Bundle
    Zcb: Bundle
    Ycb: Bundle
    Yin: Bundle
    Zlo: Optional[Bundle] = None
    Zcal: Optional[Bundle] = None
    Zcam: Optional[Bundle] = None
    Yin_lo: Optional[Bundle] = None


def parse_kind(value: TransducerKind | str) -> TransducerKind:
    if isinstance(value, TransducerKind):
        return value
    try:
        return TransducerKind(str(value).lower())
    except ValueError:
        raise ConsistencyError(f"Unknown transducer type '{value}'") from None


def required_tables(kind: TransducerKind, topology: Topology) -> list[str]:
    names = ["tr_gain", "tr_phi", "tr_Zca", "tr_Yca", "Zcb", "Ycb", "adc_Yin"]
    if kind is TransducerKind.RVD:
        names.insert(2, "tr_Zlo")
    if topology is Topology.DIFFERENTIAL:
        names += ["lo_adc_Yin", "tr_Zcal", "tr_Zcam"]
    return names


def _as_vector(name: str, values, size: int) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim == 0:
        return np.full(size, float(arr))
    arr = arr.ravel()
    if arr.size != size:
        raise ConsistencyError(f"'{name}' has {arr.size} items, expected {size}")
    return arr


def solve(
    tables: TableSet,
    transducer: TransducerKind | str,
    max_accurate_bins: Optional[int],
    f,
    A,
    ph,
    u_A,
    u_ph,
    lo_A=None,
    lo_ph=None,
    u_lo_A=None,
    u_lo_ph=None,
    *,
    mode: str = "pchip",
) -> LoadingResult:
    """Correct measured spectra for the loading of the transducer output.

    Parameters
    ----------
    tables:
        Correction tables of the channel.
    transducer:
        ``"rvd"`` or ``"shunt"``.
    max_accurate_bins:
        Highest frequency count solved spot by spot (``None`` for 5000).
    f, A, ph, u_A, u_ph:
        Frequencies and the digitizer-side amplitudes/phases (high side).
    lo_A, lo_ph, u_lo_A, u_lo_ph:
        Low-side digitizer amplitudes/phases; enables differential mode.

    Returns
    -------
    LoadingResult
        Input voltage (RVD) or current (shunt) with uncertainties, shaped
        like *f*.
    """

    kind = parse_kind(transducer)
    mode = check_mode(mode)
    n_max = DEFAULT_MAX_BINS if max_accurate_bins is None else int(max_accurate_bins)
    if n_max < 2:
        raise ConsistencyError("max_accurate_bins must be at least 2")

    shape = np.shape(f)
    f_in = np.asarray(f, dtype=float).ravel()
    size = f_in.size
    if not size:
        raise ConsistencyError("No frequencies to correct")
    topology = Topology.SINGLE_ENDED if lo_A is None else Topology.DIFFERENTIAL
    if topology is Topology.DIFFERENTIAL and (lo_ph is None or u_lo_A is None or u_lo_ph is None):
        raise ConsistencyError("Differential mode needs low-side amplitude, phase and uncertainties")

    order = np.argsort(f_in, kind="mergesort")
    vectors = {
        "A": A, "ph": ph, "u_A": u_A, "u_ph": u_ph,
        "lo_A": lo_A, "lo_ph": lo_ph, "u_lo_A": u_lo_A, "u_lo_ph": u_lo_ph,
    }
    spots = _Spots(
        f=f_in[order],
        **{
            name: (_as_vector(name, value, size)[order] if value is not None else None)
            for name, value in vectors.items()
        },
    )
    if not np.all(np.isfinite(spots.f)) or np.any(spots.f < 0):
        raise ConsistencyError("Frequencies must be finite and non-negative")
    if np.any(np.diff(spots.f) <= 0):
        raise ConsistencyError("Frequencies must be distinct")

    if kind is TransducerKind.RVD and "tr_Zlo" not in tables:
        raise FormatError("RVD loading correction needs the 'tr_Zlo' table")
    names = required_tables(kind, topology)
    expanded = expand_tables([tables[name] for name in names])
    expanded.require_primary(spots.f)
    sections = expanded.primary

    reduced = size > n_max
    if reduced and topology is Topology.SINGLE_ENDED:
        result = _solve_reduced_single_ended(kind, tables, spots, n_max, sections, mode)
    elif reduced:
        result = _solve_reduced_differential(kind, tables, spots, n_max, sections, mode)
    else:
        logger.debug("Solving %s %s loading at %d spots", topology.value, kind.value, size)
        result = _solve_spots(kind, tables, spots, sections, mode)

    A_out, ph_out, u_A_out, u_ph_out = _apply_rms_dependency(tables, spots, result, mode)

    lost = ~(np.isfinite(A_out) & np.isfinite(ph_out)) & np.isfinite(spots.A)
    if np.any(lost):
        raise RangeError(
            f"Correction data do not cover {int(lost.sum())} of {size} frequency spots"
        )

    restored = []
    for values in (A_out, ph_out, u_A_out, u_ph_out):
        out = np.empty(size)
        out[order] = values
        restored.append(out.reshape(shape))
    return LoadingResult(*restored)


@dataclass(frozen=True)
class _Solution:
    """Solved spots; ``f`` are the frequencies the transducer tables were read at."""

    f: np.ndarray
    A: np.ndarray
    ph: np.ndarray
    u_A: np.ndarray
    u_ph: np.ndarray
    g_org: np.ndarray
    p_org: np.ndarray


def _solve_spots(
    kind: TransducerKind,
    tables: TableSet,
    spots: _Spots,
    sections: np.ndarray,
    mode: str,
) -> _Solution:
    f = spots.f
    U = _phasor(spots.A, spots.ph, spots.u_A, spots.u_ph, SLOT_A, SLOT_PH)
    net = _network(kind, tables, f, sections, spots.differential, mode)
    tr, g_org, p_org = _nominal_transfer(tables, f, mode)

    if spots.differential:
        U_lo = _phasor(spots.lo_A, spots.lo_ph, spots.u_lo_A, spots.u_lo_ph, SLOT_LO_A, SLOT_LO_PH)
        Y = _differential(kind, U, U_lo, tr, net)
    else:
        Y = _single_ended(kind, U, tr, net)

    A, u_A = collapse_real(abs(Y))
    ph, u_ph = collapse_real(Y.angle())
    return _Solution(f=f, A=A, ph=ph, u_A=u_A, u_ph=u_ph, g_org=g_org, p_org=p_org)


def _phasor(A, ph, u_A, u_ph, slot_A: int, slot_ph: int) -> Bundle:
    return seed(A, u_A, slot_A, INPUTS) * (1j * seed(ph, u_ph, slot_ph, INPUTS)).exp()


def _nominal_transfer(tables: TableSet, f: np.ndarray, mode: str):
    # RMS level is unknown yet: average over the RMS axis, no uncertainty
    gain = tables["tr_gain"].interp(y=f, mode=mode)["gain"]
    phi = tables["tr_phi"].interp(y=f, mode=mode)["phi"]
    g_org = nanmean(gain, axis=1)
    p_org = nanmean(phi, axis=1)
    return g_org * np.exp(1j * p_org), g_org, p_org


def _section_envelope(u: np.ndarray, f: np.ndarray, sections: np.ndarray) -> np.ndarray:
    """Spread the interpolation error found at table section centres over *f*."""

    if sections.size < 2 or f.size < 2:
        return u
    centres = 0.5 * (sections[:-1] + sections[1:])
    centres = centres[(centres >= f[0]) & (centres <= f[-1])]
    idx = np.unique(nearest_index(f, centres))
    if idx.size < 2:
        return u
    envelope = interp1(f[idx], u[idx], f, "pchip", extrapolate=True)
    if np.iscomplexobj(envelope):
        return np.abs(envelope.real) + 1j * np.abs(envelope.imag)
    return np.abs(envelope)


def _rss(*parts) -> np.ndarray:
    return np.sqrt(sum(np.asarray(p, dtype=float) ** 2 for p in parts))


def _complex_rss(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.hypot(a.real, b.real) + 1j * np.hypot(a.imag, b.imag)


def _low_side_impedance(table: CorrectionTable, f: np.ndarray, sections: np.ndarray, mode: str):
    fine = table.interp(y=f, mode=mode)
    lin = table.interp(y=f, mode="linear")
    Zlo, u_Zlo = cprp_to_z(
        f, fine.column("Cp"), fine.column("Rp"), fine.column("u_Cp"), fine.column("u_Rp")
    )
    Zlo_lin, _ = cprp_to_z(f, lin.column("Cp"), lin.column("Rp"), 0.0, 0.0)
    u_int = (np.abs(Zlo.real - Zlo_lin.real) + 1j * np.abs(Zlo.imag - Zlo_lin.imag)) / SQRT3
    u_int = _section_envelope(u_int, f, sections)
    return Zlo, _complex_rss(u_Zlo, u_int)


def _series(table: CorrectionTable, f: np.ndarray, mode: str):
    t = table.interp(y=f, mode=mode)
    return lsrs_to_z(f, t.column("Ls"), t.column("Rs"), t.column("u_Ls"), t.column("u_Rs"))


def _shunt(table: CorrectionTable, f: np.ndarray, mode: str):
    t = table.interp(y=f, mode=mode)
    return cpd_to_y(f, t.column("Cp"), t.column("D"), t.column("u_Cp"), t.column("u_D"))


def _input(table: CorrectionTable, f: np.ndarray, mode: str):
    t = table.interp(y=f, mode=mode)
    return cpgp_to_y(f, t.column("Cp"), t.column("Gp"), t.column("u_Cp"), t.column("u_Gp"))


def _mutual(table: CorrectionTable, f: np.ndarray, mode: str):
    t = table.interp(y=f, mode=mode)
    M = t.column("M")
    return lsrs_to_z(f, M, np.zeros_like(M), t.column("u_M"), np.zeros_like(M))


def _network(
    kind: TransducerKind,
    tables: TableSet,
    f: np.ndarray,
    sections: np.ndarray,
    differential: bool,
    mode: str,
) -> _Network:
    net = _Network(
        Zca=seed(*_series(tables["tr_Zca"], f, mode), SLOT_ZCA, INPUTS),
        Yca=seed(*_shunt(tables["tr_Yca"], f, mode), SLOT_YCA, INPUTS),
        Zcb=seed(*_series(tables["Zcb"], f, mode), SLOT_ZCB, INPUTS),
        Ycb=seed(*_shunt(tables["Ycb"], f, mode), SLOT_YCB, INPUTS),
        Yin=seed(*_input(tables["adc_Yin"], f, mode), SLOT_YIN, INPUTS),
    )
    if kind is TransducerKind.RVD:
        Zlo = _low_side_impedance(tables["tr_Zlo"], f, sections, mode)
        net = replace(net, Zlo=seed(*Zlo, SLOT_ZLO, INPUTS))
    if differential:
        net = replace(
            net,
            Zcal=seed(*_series(tables["tr_Zcal"], f, mode), SLOT_ZCAL, INPUTS),
            Zcam=seed(*_mutual(tables["tr_Zcam"], f, mode), SLOT_ZCAM, INPUTS),
            Yin_lo=seed(*_input(tables["lo_adc_Yin"], f, mode), SLOT_LO_YIN, INPUTS),
        )
    return net


def _unload_terminals(kind: TransducerKind, tr: np.ndarray, Zlo, Zca, Yca):
    """Remove the unloaded terminal network (0.5*Zca, Yca) from the nominal transfer.

    Returns the intrinsic low-side impedance and, for RVD, the high-side
    impedance.
    """

    # Yca seen through 0.5*Zca
    Y_term = Yca / (1 + 0.5 * Zca * Yca)
    k_ca = 2 / (Yca * Zca + 2)
    tr = tr * k_ca

    if kind is TransducerKind.RVD:
        Z1 = Zlo - 0.5 * Zca
        Zlo_int = Z1 / (1 - Yca * Z1) - 0.5 * Zca
        Zlo_ef = Zlo_int / (1 + Y_term * Zlo_int)
        Zhi = Zlo_ef * (tr - 1)
        return Zlo_int, Zhi

    return 1 / (tr - Y_term), None


def _single_ended(kind: TransducerKind, U: Bundle, tr: np.ndarray, net: _Network) -> Bundle:
    Zlo, Zhi = _unload_terminals(kind, tr, net.Zlo, net.Zca, net.Yca)

    # cable to digitizer
    k_in = (net.Yin * net.Zcb + 2) / 2
    Y_x = net.Ycb + net.Yin / (1 + 0.5 * net.Zcb * net.Yin)
    # terminal to cable
    k_cb = 1 + 0.5 * (net.Zcb + net.Zca) * Y_x
    Y_x = net.Yca + Y_x / (1 + 0.5 * (net.Zca + net.Zcb) * Y_x)
    # transducer to terminal
    k_te = 1 + 0.5 * net.Zca * Y_x
    # total load seen by the low side
    Y_load = Y_x / (1 + 0.5 * net.Zca * Y_x)

    if kind is TransducerKind.RVD:
        Zlo_ef = Zlo / (1 + Y_load * Zlo)
        tr = (Zhi + Zlo_ef) / Zlo_ef
    else:
        tr = 1 / Zlo + Y_load

    return U * (tr * k_in * k_cb * k_te)


def _cable_input(Yin: Bundle, Zcb: Bundle, Ycb: Bundle) -> tuple[Bundle, Bundle]:
    """Cable-to-digitizer transfer (in/out) and the cable input admittance."""

    k1 = (Yin * Zcb + 2) / 2
    Y_h = Ycb + Yin / (1 + 0.5 * Zcb * Yin)
    k2 = 1 + 0.5 * Zcb * Y_h
    return k1 * k2, Y_h / (1 + 0.5 * Zcb * Y_h)


def _differential(kind: TransducerKind, U: Bundle, U_lo: Bundle, tr: np.ndarray, net: _Network) -> Bundle:
    kih, Yih = _cable_input(net.Yin, net.Zcb, net.Ycb)
    kil, Yil = _cable_input(net.Yin_lo, net.Zcb, net.Ycb)
    Uhi = U * kih
    Ulo = U_lo * kil

    Zca, Zcal, Zcam, Yca = net.Zca, net.Zcal, net.Zcam, net.Yca

    # effective terminal loop impedance, mutual term left out
    Zlo, Zhi = _unload_terminals(kind, tr, net.Zlo, Zca + Zcal, Yca)

    # two loop currents of the terminal mesh, written in the cable input admittances
    I1 = (
        (
            (4 * Ulo - 4 * Uhi) * Yca
            + (4 * Uhi * Yca * Zcam - 2 * Uhi * Yca * Zca - 4 * Uhi) * Yih
            + (2 * Ulo * Yca * Zcal - 4 * Ulo * Yca * Zcam) * Yil
        ) * Zlo
        + (2 * Ulo - 2 * Uhi) * Yca * Zcal
        + (2 * Ulo - 2 * Uhi) * Yca * Zca
        + 4 * Ulo
        - 4 * Uhi
        + (
            (2 * Uhi * Yca * Zcal + 2 * Uhi * Yca * Zca + 4 * Uhi) * Zcam
            - Uhi * Yca * Zca * Zcal
            - Uhi * Yca * Zca**2
            - 4 * Uhi * Zca
        ) * Yih
        + (
            (-2 * Ulo * Yca * Zcal - 2 * Ulo * Yca * Zca - 4 * Ulo) * Zcam
            + Ulo * Yca * Zcal**2
            + (Ulo * Yca * Zca + 4 * Ulo) * Zcal
        ) * Yil
    ) / (4 * Zlo)
    I2 = (
        (2 * Ulo - 2 * Uhi) * Yca
        + (2 * Uhi * Yca * Zcam - Uhi * Yca * Zca - 2 * Uhi) * Yih
        + (Ulo * Yca * Zcal - 2 * Ulo * Yca * Zcam) * Yil
    ) / 2

    # loop currents are oriented against the input
    if kind is TransducerKind.RVD:
        return -(I1 * Zhi + (I1 - I2) * Zlo)
    return -I1


def _log_grid(f: np.ndarray, count: int) -> np.ndarray:
    """Log-spaced grid spanning ascending *f*; a DC spot stays the first point."""

    if f[0] > 0:
        grid = np.logspace(np.log10(f[0]), np.log10(f[-1]), count)
    else:
        grid = np.concatenate(([0.0], np.logspace(np.log10(f[1]), np.log10(f[-1]), count - 1)))
    grid[0] = f[0]
    grid[-1] = f[-1]
    return grid


def _solve_reduced_single_ended(
    kind: TransducerKind,
    tables: TableSet,
    spots: _Spots,
    n_max: int,
    sections: np.ndarray,
    mode: str,
) -> _Solution:
    # the network transfer does not depend on the signal: solve it for unity input
    grid = _log_grid(spots.f, n_max)
    zeros = np.zeros(n_max)
    unity = _Spots(f=grid, A=np.ones(n_max), ph=zeros, u_A=zeros, u_ph=zeros)
    logger.debug(
        "Reduced single-ended solve: %d spots on a %d point log grid", spots.f.size, n_max
    )
    tfer = _solve_spots(kind, tables, unity, sections, mode)

    f = spots.f
    k_A = interp1(grid, tfer.A, f, mode, extrapolate=True)
    k_ph = interp1(grid, tfer.ph, f, mode, extrapolate=True)
    u_k_A = np.abs(interp1(grid, tfer.u_A, f, mode, extrapolate=True))
    u_k_ph = np.abs(interp1(grid, tfer.u_ph, f, mode, extrapolate=True))

    return replace(
        tfer,
        A=k_A * spots.A,
        ph=k_ph + spots.ph,
        u_A=_rss(k_A * spots.u_A, spots.A * u_k_A),
        u_ph=_rss(u_k_ph, spots.u_ph),
    )


def find_major_bins(hi, lo, n_max: int) -> tuple[np.ndarray, int]:
    """Pick the spot of the largest ``|hi - lo|`` in each contiguous group.

    The spots are split into at most *n_max* groups of equal size. Returns
    the selected indices and the group size.
    """

    diff = np.abs(np.asarray(hi) - np.asarray(lo)).ravel()
    total = diff.size
    size = int(np.ceil(total / n_max))
    groups = int(np.ceil(total / size))
    padded = np.zeros(groups * size)
    padded[:total] = diff
    index = np.argmax(padded.reshape(groups, size), axis=1) + size * np.arange(groups)
    return np.minimum(index, total - 1), size


def _group_peak(values: np.ndarray, size: int) -> np.ndarray:
    total = values.size
    groups = int(np.ceil(total / size))
    padded = np.zeros(groups * size)
    padded[:total] = values
    peak = padded.reshape(groups, size).max(axis=1)
    return np.repeat(peak, size)[:total]


def _wrap(phase: np.ndarray) -> np.ndarray:
    return np.angle(np.exp(1j * phase))


def _solve_reduced_differential(
    kind: TransducerKind,
    tables: TableSet,
    spots: _Spots,
    n_max: int,
    sections: np.ndarray,
    mode: str,
) -> _Solution:
    index, group = find_major_bins(
        spots.A * np.exp(1j * spots.ph), spots.lo_A * np.exp(1j * spots.lo_ph), n_max
    )
    logger.debug(
        "Reduced differential solve: %d of %d spots, group size %d", index.size, spots.f.size, group
    )
    work = spots.take(index)
    solved = _solve_spots(kind, tables, work, sections, mode)

    # transfer relative to the differential input at the solved spots
    diff = work.difference()
    d_A = np.maximum(np.abs(diff), np.finfo(float).eps)
    k_A = solved.A / d_A
    k_ph = _wrap(solved.ph - np.angle(diff))
    u_k_A = solved.u_A / d_A
    u_k_ph = solved.u_ph

    f_w, f = work.f, spots.f
    k_A_lin = interp1(f_w, k_A, f, "linear", extrapolate=True)
    k_ph_lin = interp1(f_w, k_ph, f, "linear", extrapolate=True)
    k_A = interp1(f_w, k_A, f, mode, extrapolate=True)
    k_ph = interp1(f_w, k_ph, f, mode, extrapolate=True)
    u_k_A = interp1(f_w, u_k_A, f, "next", extrapolate=True)
    u_k_ph = interp1(f_w, u_k_ph, f, "next", extrapolate=True)

    # spots left out of the solve get the worst case of their group
    u_k_A = _group_peak(np.sqrt(u_k_A**2 + np.abs(k_A - k_A_lin) ** 2 / 3.0), group)
    u_k_ph = _group_peak(np.sqrt(u_k_ph**2 + np.abs(k_ph - k_ph_lin) ** 2 / 3.0), group)

    diff = spots.difference()
    d_A = np.abs(diff)
    u_d_A = _rss(spots.u_A, spots.u_lo_A)
    u_d_ph = _rss(spots.u_ph, spots.u_lo_ph)

    return replace(
        solved,
        A=k_A * d_A,
        ph=k_ph + np.angle(diff),
        u_A=_rss(u_k_A * d_A, k_A * u_d_A),
        u_ph=_rss(u_k_ph, u_d_ph),
    )


def _apply_rms_dependency(tables: TableSet, spots: _Spots, sol: _Solution, mode: str):
    """Re-read the transducer transfer at the RMS level of the corrected signal."""

    f_org = spots.f
    f = sol.f
    reduced = f.size != f_org.size or np.any(f != f_org)

    A = sol.A
    rms = float(np.sqrt(np.sum(0.5 * A[~np.isnan(A)] ** 2)))
    gain_table = tables["tr_gain"]
    phi_table = tables["tr_phi"]
    for table in (gain_table, phi_table):
        rng = table.secondary_range()
        if rng is not None and not rng[0] <= rms <= rng[1]:
            raise RangeError(
                f"RMS level {rms:g} outside [{rng[0]:g}, {rng[1]:g}] of table '{table.name}'"
            )

    gain_at = gain_table.interp_to_new_axis(rms, f, "f", PRIMARY, mode)
    phi_at = phi_table.interp_to_new_axis(rms, f, "f", PRIMARY, mode)
    gain, u_gain = gain_at.column("gain"), gain_at.column("u_gain")
    phi, u_phi = phi_at.column("phi"), phi_at.column("u_phi")
    gain_lin = gain_table.interp_to_new_axis(rms, f, "f", PRIMARY, "linear").column("gain")
    phi_lin = phi_table.interp_to_new_axis(rms, f, "f", PRIMARY, "linear").column("phi")

    u_gain_int = _section_envelope(np.abs(gain - gain_lin) / SQRT3, f, gain_table.primary)
    u_phi_int = _section_envelope(np.abs(phi - phi_lin) / SQRT3, f, phi_table.primary)

    k_A_tr = gain / sol.g_org
    k_ph_tr = phi - sol.p_org
    A_work = interp1nan(f_org, A, f, mode) if reduced else A
    u_trg = A_work * _rss(u_gain, u_gain_int) / sol.g_org
    u_trp = _rss(u_phi, u_phi_int)

    if reduced:
        k_A_tr = interp1(f, k_A_tr, f_org, mode, extrapolate=True)
        k_ph_tr = interp1(f, k_ph_tr, f_org, mode, extrapolate=True)
        u_trg = np.abs(interp1(f, u_trg, f_org, mode, extrapolate=True))
        u_trp = np.abs(interp1(f, u_trp, f_org, mode, extrapolate=True))

    # inherent error of the method, grows with frequency
    u_method = (f_org / 1e6) * 5e-6 / SQRT3

    return (
        A * k_A_tr,
        sol.ph + k_ph_tr,
        _rss(sol.u_A, u_trg),
        _rss(sol.u_ph, u_trp, u_method),
    )


def relative_transfer(result: LoadingResult, A, ph, lo_A=None, lo_ph=None):
    """Loading transfer relative to the measured (differential) input.

    Returns ``(gain, phase, u_gain, u_phase)``. The reference amplitude is
    floored to machine epsilon, so silent spots give a finite transfer.
    """

    A = np.asarray(A, dtype=float)
    ph = np.asarray(ph, dtype=float)
    if lo_A is None:
        ref_A = A
        ref_ph = ph
    else:
        diff = A * np.exp(1j * ph) - np.asarray(lo_A) * np.exp(1j * np.asarray(lo_ph))
        ref_A = np.abs(diff)
        ref_ph = np.angle(diff)
    ref_A = np.maximum(ref_A, np.finfo(float).eps)
    return (
        result.A / ref_A,
        result.ph - ref_ph,
        result.u_A / ref_A,
        result.u_ph,
    )
