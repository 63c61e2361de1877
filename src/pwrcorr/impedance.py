"""Conversions between component parameters and complex impedance/admittance.

Every function returns ``(value, uncertainty)`` where the uncertainty of a
complex quantity is packed as ``u_real + 1j*u_imag``. Uncertainties are
first-order estimates assuming independent input components.
"""
from __future__ import annotations

import numpy as np


def _omega(f) -> np.ndarray:
    return 2.0 * np.pi * np.asarray(f, dtype=float)


def lsrs_to_z(f, Ls, Rs, u_Ls, u_Rs) -> tuple[np.ndarray, np.ndarray]:
    """Series inductance and resistance to impedance ``Rs + jwLs``."""

    w = _omega(f)
    Ls = np.asarray(Ls, dtype=float)
    Rs = np.asarray(Rs, dtype=float)
    Z = Rs + 1j * w * Ls
    u_Z = np.asarray(u_Rs, dtype=float) + 1j * w * np.asarray(u_Ls, dtype=float)
    return Z, u_Z


def cpd_to_y(f, Cp, D, u_Cp, u_D) -> tuple[np.ndarray, np.ndarray]:
    """Parallel capacitance with loss tangent to admittance ``wCp(j + D)``."""

    w = _omega(f)
    Cp = np.asarray(Cp, dtype=float)
    D = np.asarray(D, dtype=float)
    u_Cp = np.asarray(u_Cp, dtype=float)
    u_D = np.asarray(u_D, dtype=float)
    Y = w * Cp * (1j + D)
    u_Y = np.sqrt(Cp**2 * u_D**2 + D**2 * u_Cp**2) * w + 1j * u_Cp * w
    return Y, u_Y


def cpgp_to_y(f, Cp, Gp, u_Cp, u_Gp) -> tuple[np.ndarray, np.ndarray]:
    """Parallel capacitance and conductance to admittance ``Gp + jwCp``."""

    w = _omega(f)
    Y = np.asarray(Gp, dtype=float) + 1j * w * np.asarray(Cp, dtype=float)
    u_Y = np.asarray(u_Gp, dtype=float) + 1j * w * np.asarray(u_Cp, dtype=float)
    return Y, u_Y


def cprp_to_z(f, Cp, Rp, u_Cp, u_Rp) -> tuple[np.ndarray, np.ndarray]:
    """Parallel capacitance and resistance to impedance ``1/(1/Rp + jwCp)``."""

    w = _omega(f)
    Cp = np.asarray(Cp, dtype=float)
    Rp = np.asarray(Rp, dtype=float)
    u_Cp = np.asarray(u_Cp, dtype=float)
    u_Rp = np.asarray(u_Rp, dtype=float)

    Z = 1.0 / (1j * w * Cp + 1.0 / Rp)

    a = w * Cp * Rp
    den = (1.0 + a**2) ** 2
    u_re = np.sqrt((1.0 - a**2) ** 2 * u_Rp**2 + 4.0 * a**2 * w**2 * Rp**4 * u_Cp**2) / den
    u_im = np.sqrt(4.0 * a**2 * u_Rp**2 + w**2 * Rp**4 * (1.0 - a**2) ** 2 * u_Cp**2) / den
    return Z, u_re + 1j * u_im


def z_inv(Z, u_Z) -> tuple[np.ndarray, np.ndarray]:
    """Invert impedance to admittance (or back), propagating uncertainty."""

    Z = np.asarray(Z, dtype=complex)
    u_Z = np.asarray(u_Z, dtype=complex)
    Rs = Z.real
    Xs = Z.imag
    u_Rs = u_Z.real
    u_Xs = u_Z.imag

    den = (Rs**2 + Xs**2) ** 2
    cross = 4.0 * Rs**2 * Xs**2
    diff = (Xs**2 - Rs**2) ** 2
    u_G = np.sqrt(cross * u_Xs**2 + diff * u_Rs**2) / den
    u_B = np.sqrt(diff * u_Xs**2 + cross * u_Rs**2) / den
    return 1.0 / Z, u_G + 1j * u_B


def zphi_to_z(modulus, phi, u_modulus, u_phi) -> tuple[np.ndarray, np.ndarray]:
    """Polar form (modulus, phase in rad) to complex value."""

    modulus = np.asarray(modulus, dtype=float)
    phi = np.asarray(phi, dtype=float)
    u_modulus = np.asarray(u_modulus, dtype=float)
    u_phi = np.asarray(u_phi, dtype=float)

    u_re = np.sqrt(modulus**2 * np.sin(phi) ** 2 * u_phi**2 + np.cos(phi) ** 2 * u_modulus**2)
    u_im = np.sqrt(modulus**2 * np.cos(phi) ** 2 * u_phi**2 + np.sin(phi) ** 2 * u_modulus**2)
    return modulus * np.exp(1j * phi), u_re + 1j * u_im


def z_to_zphi(Z, u_Z) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Complex value to polar form ``(modulus, phi, u_modulus, u_phi)``."""

    Z = np.asarray(Z, dtype=complex)
    u_Z = np.asarray(u_Z, dtype=complex)
    re = Z.real
    im = Z.imag
    u_re = u_Z.real
    u_im = u_Z.imag

    mag2 = re**2 + im**2
    u_modulus = np.sqrt(re**2 * u_re**2 + im**2 * u_im**2) / np.sqrt(mag2)
    u_phi = np.sqrt(im**2 * u_re**2 + re**2 * u_im**2) / mag2
    return np.abs(Z), np.angle(Z), u_modulus, u_phi
