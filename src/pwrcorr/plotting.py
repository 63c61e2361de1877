"""Plotting helpers for correction outputs."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

import numpy as np

from .pipeline import CorrectionResult


def generate_plots(
    results: CorrectionResult | Sequence[CorrectionResult],
    output_dir: Path,
    labels: Sequence[str] | None = None,
) -> Path:
    """Plot loading gain and phase against frequency for one or more channels."""

    if isinstance(results, CorrectionResult):
        results = [results]
    labels = list(labels) if labels is not None else [
        result.config.label or result.config.transducer.value for result in results
    ]
    plt = _require_matplotlib()
    output_dir.mkdir(parents=True, exist_ok=True)
    fig, axes = plt.subplots(1, 2, figsize=(14, 5))

    for result, label in zip(results, labels):
        _plot_gain(result, axes[0], label)
        _plot_phase(result, axes[1], label)

    axes[0].set_title("Loading correction - gain")
    axes[0].set_xlabel("Frequency (Hz)")
    axes[0].set_ylabel("Gain deviation (-)")
    axes[0].legend(loc="best")
    axes[1].set_title("Loading correction - phase")
    axes[1].set_xlabel("Frequency (Hz)")
    axes[1].set_ylabel("Phase (rad)")
    axes[1].legend(loc="best")

    fig.tight_layout()
    out_path = output_dir / "plots.png"
    fig.savefig(out_path, dpi=200)
    plt.close(fig)
    return out_path


def _plot_gain(result: CorrectionResult, ax, label: str) -> None:
    df = result.corrected.sort_values("f")
    f = df["f"].to_numpy(dtype=float)
    gain = df["gain"].to_numpy(dtype=float)
    u_gain = df["u_gain"].to_numpy(dtype=float)
    # deviation from the lowest frequency
    ref = gain[np.isfinite(gain)][0] if np.isfinite(gain).any() else 1.0
    deviation = gain / ref - 1.0
    line, = ax.semilogx(f, deviation, label=label)
    ax.fill_between(f, deviation - 2 * u_gain / ref, deviation + 2 * u_gain / ref,
                    color=line.get_color(), alpha=0.2)


def _plot_phase(result: CorrectionResult, ax, label: str) -> None:
    df = result.corrected.sort_values("f")
    f = df["f"].to_numpy(dtype=float)
    phase = np.angle(np.exp(1j * df["phase"].to_numpy(dtype=float)))
    u_phase = df["u_phase"].to_numpy(dtype=float)
    line, = ax.semilogx(f, phase, label=label)
    ax.fill_between(f, phase - 2 * u_phase, phase + 2 * u_phase, color=line.get_color(), alpha=0.2)


def _require_matplotlib() -> Any:
    font_cache = Path.home() / ".cache" / "fontconfig"
    try:
        font_cache.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise RuntimeError(f"cannot create font cache {font_cache} for matplotlib") from exc

    try:
        import matplotlib
        matplotlib.use("Agg", force=True)
        import matplotlib.pyplot as plt  # type: ignore
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("matplotlib is required for plotting; install pwrcorr[plot]") from exc
    except Exception as exc:  # pragma: no cover - environment issues
        raise RuntimeError(f"matplotlib initialisation failed: {exc}") from exc
    return plt
