"""Power quantities from corrected voltage and current spectra."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

import numpy as np

from .errors import ConsistencyError


@dataclass(frozen=True)
class QuantityValue:
    value: float
    uncertainty: float


@dataclass(frozen=True)
class PowerSummary:
    U: QuantityValue
    I: QuantityValue
    P: QuantityValue
    S: QuantityValue
    Q: QuantityValue
    PF: QuantityValue

    def as_dict(self) -> Dict[str, QuantityValue]:
        return {
            "U": self.U,
            "I": self.I,
            "P": self.P,
            "S": self.S,
            "Q": self.Q,
            "PF": self.PF,
        }


def _vector(name: str, values, size: int) -> np.ndarray:
    arr = np.asarray(values, dtype=float).ravel()
    if arr.size == 1 and size != 1:
        arr = np.full(size, float(arr[0]))
    if arr.size != size:
        raise ConsistencyError(f"'{name}' has {arr.size} items, expected {size}")
    return arr


def compute_power(
    U,
    I,
    phi,
    u_U,
    u_I,
    u_phi,
    dc_u: float = 0.0,
    dc_i: float = 0.0,
    u_dc_u: float = 0.0,
    u_dc_i: float = 0.0,
) -> PowerSummary:
    """Aggregate voltage and current harmonics into RMS and power values.

    Parameters
    ----------
    U, I:
        Peak amplitudes of the voltage and current components.
    phi:
        Phase of each voltage component relative to the current one.
    u_U, u_I, u_phi:
        Standard uncertainties of the above.
    dc_u, dc_i, u_dc_u, u_dc_i:
        DC components and their uncertainties (DC coupled channels).

    Returns
    -------
    PowerSummary
        RMS voltage and current, active, apparent and reactive power and
        the power factor, each with its standard uncertainty. Correlations
        between the quantities are ignored.
    """

    U = np.asarray(U, dtype=float).ravel()
    size = U.size
    if not size:
        raise ConsistencyError("No spectral components to aggregate")
    I = _vector("I", I, size)
    phi = _vector("phi", phi, size)
    u_U = _vector("u_U", u_U, size)
    u_I = _vector("u_I", u_I, size)
    u_phi = _vector("u_phi", u_phi, size)

    U_rms = float(np.sqrt(np.sum(0.5 * U**2)))
    I_rms = float(np.sqrt(np.sum(0.5 * I**2)))
    P = float(np.sum(0.5 * U * I * np.cos(phi)))

    u_U_rms = float(np.sqrt(np.sum(0.5 * u_U**2)))
    u_I_rms = float(np.sqrt(np.sum(0.5 * u_I**2)))
    u_P_bins = 0.5 * np.sqrt(
        (I * np.cos(phi) * u_U) ** 2
        + (U * np.cos(phi) * u_I) ** 2
        + (U * I * np.sin(phi) * u_phi) ** 2
    )
    u_P = float(np.sqrt(np.sum(u_P_bins**2)))

    if dc_u or dc_i or u_dc_u or u_dc_i:
        U_ac, I_ac = U_rms, I_rms
        U_rms = float(np.hypot(U_ac, dc_u))
        I_rms = float(np.hypot(I_ac, dc_i))
        u_U_rms = _dc_combined(U_ac, u_U_rms, dc_u, u_dc_u, U_rms)
        u_I_rms = _dc_combined(I_ac, u_I_rms, dc_i, u_dc_i, I_rms)
        P = P + dc_u * dc_i
        u_P = float(np.sqrt(u_P**2 + (dc_i * u_dc_u) ** 2 + (dc_u * u_dc_i) ** 2))

    S = U_rms * I_rms
    u_S = float(np.hypot(u_U_rms * I_rms, u_I_rms * U_rms))

    Q2 = S**2 - P**2
    if Q2 > 0:
        Q = float(np.sqrt(Q2))
        u_Q = float(np.sqrt((S**2 * u_S**2 + P**2 * u_P**2) / Q2))
    else:
        # purely active load: Q^2 = S^2 - P^2 only bounds the deviation
        Q = 0.0
        u_Q = float(np.sqrt(2.0 * (abs(S) * u_S + abs(P) * u_P)))

    if S > 0:
        PF = P / S
        u_PF = float(np.hypot(u_P / S, PF * u_S / S))
    else:
        PF = float("nan")
        u_PF = float("nan")

    return PowerSummary(
        U=QuantityValue(U_rms, u_U_rms),
        I=QuantityValue(I_rms, u_I_rms),
        P=QuantityValue(P, u_P),
        S=QuantityValue(S, u_S),
        Q=QuantityValue(Q, u_Q),
        PF=QuantityValue(PF, u_PF),
    )


def _dc_combined(ac: float, u_ac: float, dc: float, u_dc: float, total: float) -> float:
    if total <= 0:
        return float(np.hypot(u_ac, u_dc))
    return float(np.hypot(ac * u_ac, dc * u_dc) / total)
