"""Command line interface for the pwrcorr package."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from .demo import run_demo
from .errors import CorrectionError
from .loading import Topology, TransducerKind
from .mesh import SyntheticTransducer, default_cases, run_selftest
from .pipeline import run_correction, run_power
from .plotting import generate_plots
from .reporting import export_results

app = typer.Typer(context_settings={"help_option_names": ["-h", "--help"]})

QUICK_RLO = {TransducerKind.RVD: 200.0, TransducerKind.SHUNT: 20.0}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log solver details."),
) -> None:
    """Transducer loading correction for power measurement chains."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _plots(results, report_dir: Path) -> Optional[Path]:
    try:
        return generate_plots(results, report_dir)
    except RuntimeError as exc:
        typer.echo(f"[warning] plotting skipped: {exc}")
        return None


@app.command()
def correct(
    config_path: Path = typer.Option(..., "--config", "-c", help="Channel configuration JSON."),
    spectrum_path: Path = typer.Option(..., "--spectrum", help="Measured spectrum CSV."),
    report_dir: Path = typer.Option(..., "--report", help="Output directory for reports."),
    override: Optional[list[str]] = typer.Option(
        None,
        "--set",
        help="Override config keys, e.g. --set max_accurate_bins=1000 --set interp_mode=linear",
    ),
    plot: bool = typer.Option(True, "--plot/--no-plot", help="Write plots.png (needs matplotlib)."),
) -> None:
    """Correct a measured spectrum for transducer loading."""

    try:
        result = run_correction(config_path, spectrum_path, override)
    except CorrectionError as exc:
        raise typer.BadParameter(str(exc)) from exc

    figure_path = _plots(result, report_dir) if plot else None
    export_results(result, report_dir, figure_path=figure_path, input_path=spectrum_path)
    typer.echo(f"Report written to {report_dir}")


@app.command()
def power(
    u_config: Path = typer.Option(..., "--u-config", help="Voltage channel configuration."),
    u_spectrum: Path = typer.Option(..., "--u-spectrum", help="Voltage channel spectrum CSV."),
    i_config: Path = typer.Option(..., "--i-config", help="Current channel configuration."),
    i_spectrum: Path = typer.Option(..., "--i-spectrum", help="Current channel spectrum CSV."),
    report_dir: Path = typer.Option(..., "--report", help="Output directory for reports."),
    plot: bool = typer.Option(True, "--plot/--no-plot", help="Write plots.png (needs matplotlib)."),
) -> None:
    """Correct voltage and current channels and compute power."""

    try:
        u_result = run_correction(u_config, u_spectrum)
        i_result = run_correction(i_config, i_spectrum)
        summary = run_power(u_result, i_result)
    except CorrectionError as exc:
        raise typer.BadParameter(str(exc)) from exc

    figure_path = _plots([u_result, i_result], report_dir) if plot else None
    export_results(
        u_result,
        report_dir,
        power=summary,
        current=i_result,
        figure_path=figure_path,
        input_path=u_spectrum,
    )
    for name, item in summary.as_dict().items():
        typer.echo(f"{name:>2} = {item.value:.9g} +- {item.uncertainty:.3g}")
    typer.echo(f"Report written to {report_dir}")


@app.command()
def selftest(
    quick: bool = typer.Option(False, "--quick", help="Small bin counts only."),
    max_bins: Optional[int] = typer.Option(
        None, "--max-bins", help="Override the spot-by-spot solve limit."
    ),
) -> None:
    """Compare the correction with a brute-force loop-current solution."""

    if quick:
        cases = [
            SyntheticTransducer(kind, topology, Rlo=QUICK_RLO[kind], bins=200)
            for kind in TransducerKind
            for topology in Topology
        ]
    else:
        cases = default_cases()

    failed = 0
    for outcome in run_selftest(cases, max_bins):
        status = "ok" if outcome.passed else "FAILED"
        typer.echo(
            f"{outcome.label}: gain {outcome.gain_ratio:.3g}, phase {outcome.phase_ratio:.3g} "
            f"of limit ... {status} in {outcome.elapsed:.2f} s"
        )
        failed += not outcome.passed
    if failed:
        raise typer.Exit(code=1)


@app.command()
def demo(
    out_dir: Path = typer.Option(Path("demo_output"), "--out", help="Target directory for demo report."),
) -> None:
    """Generate synthetic channels, correct them and write reports."""

    run_demo(out_dir)
    typer.echo(f"Demo dataset and report written to {out_dir}")


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
