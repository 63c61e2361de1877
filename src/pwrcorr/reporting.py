"""Report writers for correction results."""
from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd

from .pipeline import CorrectionResult
from .power import PowerSummary

UNITS = {"U": "V", "I": "A", "P": "W", "S": "VA", "Q": "var", "PF": "-"}


def export_results(
    result: CorrectionResult,
    output_dir: Path,
    *,
    power: PowerSummary | None = None,
    current: CorrectionResult | None = None,
    figure_path: Path | None = None,
    input_path: Path | None = None,
) -> None:
    """Persist corrected spectra, power values and markdown report to *output_dir*.

    With *current* the second channel is written to ``corrected_i.csv`` and
    the first one to ``corrected_u.csv``.
    """

    output_dir.mkdir(parents=True, exist_ok=True)
    if current is None:
        result.corrected.to_csv(output_dir / "corrected.csv", index=False)
    else:
        result.corrected.to_csv(output_dir / "corrected_u.csv", index=False)
        current.corrected.to_csv(output_dir / "corrected_i.csv", index=False)
    if power is not None:
        _write_power_csv(power, output_dir)
    _write_report_md(
        result,
        output_dir,
        power=power,
        current=current,
        figure_path=figure_path,
        input_path=input_path,
    )


def _write_power_csv(power: PowerSummary, output_dir: Path) -> None:
    rows = [
        {"quantity": name, "value": item.value, "uncertainty": item.uncertainty, "unit": UNITS[name]}
        for name, item in power.as_dict().items()
    ]
    pd.DataFrame(rows).to_csv(output_dir / "power.csv", index=False)


def _channel_lines(title: str, result: CorrectionResult) -> list[str]:
    df = result.corrected
    gain = df["gain"].to_numpy(dtype=float)
    phase = df["phase"].to_numpy(dtype=float)
    config = result.config
    lines = [f"## {title}"]
    if config.label:
        lines.append(f"*Channel:* {config.label}  ")
    lines.append(f"*Transducer:* {config.transducer.value}  ")
    lines.append(f"*Connection:* {'differential' if result.differential else 'single-ended'}  ")
    lines.append(f"*Components:* {len(df)}  ")
    lines.append(f"*Frequency range:* {df['f'].min():.6g} Hz to {df['f'].max():.6g} Hz  ")
    lines.append(f"*Interpolation:* {config.interp_mode}  ")
    lines.append(f"*Tables:* {', '.join(sorted(config.tables)) or 'none'}  ")
    lines.append("")
    lines.append("| Quantity | Min | Max |")
    lines.append("| --- | ---: | ---: |")
    lines.append(f"| Loading gain | {np.nanmin(gain):.9g} | {np.nanmax(gain):.9g} |")
    lines.append(f"| Loading phase (rad) | {np.nanmin(phase):.6g} | {np.nanmax(phase):.6g} |")
    lines.append(f"| Relative u(A) | | {_relative_max(df):.3g} |")
    lines.append("")
    return lines


def _relative_max(df: pd.DataFrame) -> float:
    A = df["A"].to_numpy(dtype=float)
    u_A = df["u_A"].to_numpy(dtype=float)
    mask = A > 0
    if not mask.any():
        return float("nan")
    return float(np.max(u_A[mask] / A[mask]))


def _write_report_md(
    result: CorrectionResult,
    output_dir: Path,
    *,
    power: PowerSummary | None,
    current: CorrectionResult | None,
    figure_path: Path | None,
    input_path: Path | None,
) -> None:
    lines: list[str] = []
    lines.append("# Transducer Loading Correction Report")
    if input_path is not None:
        lines.append(f"*Input file:* `{input_path}`  ")
    lines.append("")

    if current is None:
        lines.extend(_channel_lines("Channel", result))
    else:
        lines.extend(_channel_lines("Voltage channel", result))
        lines.extend(_channel_lines("Current channel", current))

    if power is not None:
        lines.append("## Power")
        lines.append("| Quantity | Value | Std. uncertainty | Unit |")
        lines.append("| --- | ---: | ---: | --- |")
        for name, item in power.as_dict().items():
            lines.append(f"| {name} | {item.value:.9g} | {item.uncertainty:.3g} | {UNITS[name]} |")
        lines.append("")

    if figure_path is not None:
        rel = figure_path.name
        lines.append(f"![Correction plots]({rel})")
        lines.append("")

    lines.append("### Notes")
    lines.append(
        "- Gain and phase are the corrected input relative to the measured (differential) input."
    )
    lines.append("- Uncertainties are standard uncertainties (k=1).")
    if power is not None:
        lines.append("- Power uncertainties ignore correlations between the channels.")

    (output_dir / "report.md").write_text("\n".join(lines), encoding="utf-8")
