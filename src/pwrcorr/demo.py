"""Demo dataset utilities."""
from __future__ import annotations

import json
import logging
from pathlib import Path

import numpy as np
import pandas as pd

from .loading import Topology, TransducerKind
from .mesh import SyntheticCase, SyntheticTransducer
from .pipeline import run_correction, run_power
from .plotting import generate_plots
from .power import PowerSummary
from .reporting import export_results
from .tables import write_table

logger = logging.getLogger(__name__)

FUNDAMENTAL = 50.0


def create_demo_spectra(harmonics: int = 40) -> pd.DataFrame:
    """Voltage and current harmonics of a mildly distorted inductive load."""

    rng = np.random.default_rng(42)
    k = np.arange(1, harmonics + 1)
    U = 230.0 * np.sqrt(2) * 0.01 * rng.random(k.size) / k
    U[0] = 230.0 * np.sqrt(2)
    I = 5.0 * np.sqrt(2) * 0.05 * rng.random(k.size) / k
    I[0] = 5.0 * np.sqrt(2)
    ph_u = rng.uniform(-np.pi, np.pi, k.size)
    ph_u[0] = 0.0
    ph_i = ph_u - 0.3 + rng.normal(scale=0.05, size=k.size)
    return pd.DataFrame({"f": FUNDAMENTAL * k, "U": U, "ph_u": ph_u, "I": I, "ph_i": ph_i})


def _write_channel(
    out_dir: Path,
    name: str,
    case: SyntheticCase,
    label: str,
    relative_u: float,
) -> tuple[Path, Path]:
    table_dir = out_dir / f"{name}_tables"
    table_paths = {}
    for table_name, table in sorted(case.tables.tables.items()):
        write_table(table, table_dir / f"{table_name}.csv")
        table_paths[table_name] = f"{table_dir.name}/{table_name}.csv"

    config_path = out_dir / f"{name}_channel.json"
    config = {
        "label": label,
        "transducer": case.kind.value,
        "max_accurate_bins": 5000,
        "interp_mode": "pchip",
        "tables": table_paths,
    }
    config_path.write_text(json.dumps(config, indent=2), encoding="utf-8")

    columns = {
        "f": case.f,
        "A": case.hi_A,
        "ph": case.hi_ph,
        "u_A": relative_u * case.hi_A,
        "u_ph": np.full(case.f.shape, relative_u),
    }
    if case.lo_A is not None:
        columns.update(
            lo_A=case.lo_A,
            lo_ph=case.lo_ph,
            u_lo_A=relative_u * case.lo_A,
            u_lo_ph=np.full(case.f.shape, relative_u),
        )
    spectrum_path = out_dir / f"{name}_spectrum.csv"
    pd.DataFrame(columns).to_csv(spectrum_path, index=False)
    return config_path, spectrum_path


def create_demo_dataset(out_dir: Path) -> dict[str, Path]:
    """Simulate a divider and a shunt channel and write tables, configs and spectra."""

    out_dir.mkdir(parents=True, exist_ok=True)
    df = create_demo_spectra()
    f = df["f"].to_numpy()

    divider = SyntheticTransducer(TransducerKind.RVD, Topology.SINGLE_ENDED, Rlo=200.0, ratio=100.0)
    shunt = SyntheticTransducer(TransducerKind.SHUNT, Topology.DIFFERENTIAL, Rlo=0.1)
    u_case = divider.build(f, df["U"].to_numpy(), df["ph_u"].to_numpy())
    i_case = shunt.build(f, df["I"].to_numpy(), df["ph_i"].to_numpy())

    u_config, u_spectrum = _write_channel(out_dir, "u", u_case, "voltage divider 1:100", 1e-6)
    i_config, i_spectrum = _write_channel(out_dir, "i", i_case, "shunt 0.1 ohm", 1e-6)
    df.to_csv(out_dir / "demo_reference.csv", index=False)
    return {
        "u_config": u_config,
        "u_spectrum": u_spectrum,
        "i_config": i_config,
        "i_spectrum": i_spectrum,
    }


def run_demo(out_dir: Path) -> PowerSummary:
    out_dir.mkdir(parents=True, exist_ok=True)
    paths = create_demo_dataset(out_dir)

    u_result = run_correction(paths["u_config"], paths["u_spectrum"])
    i_result = run_correction(paths["i_config"], paths["i_spectrum"])
    power = run_power(u_result, i_result)

    figure_path = None
    try:
        figure_path = generate_plots([u_result, i_result], out_dir)
    except RuntimeError as exc:
        logger.warning("plotting skipped: %s", exc)

    export_results(
        u_result,
        out_dir,
        power=power,
        current=i_result,
        figure_path=figure_path,
        input_path=paths["u_spectrum"],
    )
    return power
