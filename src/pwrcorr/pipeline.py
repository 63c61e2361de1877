"""High level orchestration of the loading correction."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .config import ChannelConfig, load_config
from .errors import ConsistencyError, FormatError
from .loading import LoadingResult, relative_transfer, solve
from .power import PowerSummary, compute_power

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {"f", "A", "ph"}
UNCERTAINTY_COLUMNS = ("u_A", "u_ph")
LOW_SIDE_COLUMNS = ("lo_A", "lo_ph", "u_lo_A", "u_lo_ph")


@dataclass(frozen=True)
class Spectrum:
    """Digitizer phasors of one channel, optionally with the low-side input."""

    dataframe: pd.DataFrame
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


def load_spectrum(path: str | Path) -> Spectrum:
    """Load measured phasors from *path*.

    Parameters
    ----------
    path:
        CSV file with `f`, `A`, `ph` and optional `u_A`, `u_ph` columns.
        `lo_A` and `lo_ph` (with optional `u_lo_A`, `u_lo_ph`) select the
        differential connection. Missing uncertainties are taken as zero.

    Returns
    -------
    Spectrum
        Column vectors in file order.
    """

    path = Path(path)
    if not path.exists():
        raise FormatError(f"Spectrum file {path} does not exist")

    df = pd.read_csv(path)
    df.columns = [str(col).strip() for col in df.columns]
    missing = REQUIRED_COLUMNS - set(df.columns)
    if missing:
        raise FormatError(f"Missing required columns: {sorted(missing)}")
    lo_present = [col for col in ("lo_A", "lo_ph") if col in df.columns]
    if len(lo_present) == 1:
        raise FormatError("Differential spectra need both 'lo_A' and 'lo_ph' columns")

    df = df.copy()
    for col in UNCERTAINTY_COLUMNS:
        if col not in df.columns:
            df[col] = 0.0
    if lo_present:
        for col in LOW_SIDE_COLUMNS[2:]:
            if col not in df.columns:
                df[col] = 0.0

    try:
        values = {col: df[col].to_numpy(dtype=float) for col in df.columns if _numeric_column(col)}
    except ValueError as exc:
        raise FormatError(f"{path}: non-numeric spectrum values ({exc})") from exc

    lo = {col: values[col] for col in LOW_SIDE_COLUMNS} if lo_present else {}
    logger.info("Loaded %d spectral components from %s", len(df), path)
    return Spectrum(
        dataframe=df,
        f=values["f"],
        A=values["A"],
        ph=values["ph"],
        u_A=values["u_A"],
        u_ph=values["u_ph"],
        **lo,
    )


def _numeric_column(name: str) -> bool:
    return name in REQUIRED_COLUMNS or name in UNCERTAINTY_COLUMNS or name in LOW_SIDE_COLUMNS


@dataclass(frozen=True)
class CorrectionResult:
    config: ChannelConfig
    spectrum: Spectrum
    loading: LoadingResult
    corrected: pd.DataFrame
    differential: bool


def correct_spectrum(config: ChannelConfig, spectrum: Spectrum) -> CorrectionResult:
    """Apply the loading correction described by *config* to *spectrum*."""

    tables = config.load_tables()
    lo = {}
    if spectrum.differential:
        lo = dict(
            lo_A=spectrum.lo_A,
            lo_ph=spectrum.lo_ph,
            u_lo_A=spectrum.u_lo_A,
            u_lo_ph=spectrum.u_lo_ph,
        )
    result = solve(
        tables,
        config.transducer,
        config.max_accurate_bins,
        spectrum.f,
        spectrum.A,
        spectrum.ph,
        spectrum.u_A,
        spectrum.u_ph,
        mode=config.interp_mode,
        **lo,
    )
    gain, phase, u_gain, u_phase = relative_transfer(
        result, spectrum.A, spectrum.ph, spectrum.lo_A, spectrum.lo_ph
    )
    corrected = pd.DataFrame(
        {
            "f": spectrum.f,
            "A": result.A,
            "ph": result.ph,
            "u_A": result.u_A,
            "u_ph": result.u_ph,
            "gain": gain,
            "phase": phase,
            "u_gain": u_gain,
            "u_phase": u_phase,
        }
    )
    logger.info(
        "Corrected %d components (%s, %s)",
        len(corrected),
        config.transducer.value,
        "differential" if spectrum.differential else "single-ended",
    )
    return CorrectionResult(
        config=config,
        spectrum=spectrum,
        loading=result,
        corrected=corrected,
        differential=spectrum.differential,
    )


def run_correction(
    config_path: str | Path,
    spectrum_path: str | Path,
    overrides: Sequence[str] | None = None,
) -> CorrectionResult:
    """Load configuration, tables and spectrum and correct the spectrum."""

    config = load_config(config_path, overrides)
    spectrum = load_spectrum(spectrum_path)
    return correct_spectrum(config, spectrum)


def run_power(u_result: CorrectionResult, i_result: CorrectionResult) -> PowerSummary:
    """Power quantities from corrected voltage and current channels.

    Both channels must hold the same frequencies. A component at 0 Hz is
    taken as the DC value, signed by its phase.
    """

    u = u_result.corrected
    i = i_result.corrected
    if len(u) != len(i) or not np.allclose(u["f"].to_numpy(), i["f"].to_numpy()):
        raise ConsistencyError("Voltage and current spectra must share the same frequencies")

    f = u["f"].to_numpy(dtype=float)
    ac = f > 0
    dc = {}
    if not ac.all():
        k = int(np.flatnonzero(~ac)[0])
        dc = dict(
            dc_u=float(u["A"].iloc[k] * np.cos(u["ph"].iloc[k])),
            dc_i=float(i["A"].iloc[k] * np.cos(i["ph"].iloc[k])),
            u_dc_u=float(u["u_A"].iloc[k]),
            u_dc_i=float(i["u_A"].iloc[k]),
        )

    summary = compute_power(
        u["A"].to_numpy()[ac],
        i["A"].to_numpy()[ac],
        u["ph"].to_numpy()[ac] - i["ph"].to_numpy()[ac],
        u["u_A"].to_numpy()[ac],
        i["u_A"].to_numpy()[ac],
        np.hypot(u["u_ph"].to_numpy()[ac], i["u_ph"].to_numpy()[ac]),
        **dc,
    )
    logger.info("P = %.6g W, S = %.6g VA, PF = %.6g", summary.P.value, summary.S.value, summary.PF.value)
    return summary
