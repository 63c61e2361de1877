from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from pwrcorr.errors import ConsistencyError, FormatError
from pwrcorr.tables import (
    PRIMARY,
    TableSet,
    default_table,
    load_table,
    write_table,
)

SERIES = ("f", "Rs", "Ls", "u_Rs", "u_Ls")
GAIN = ("f", "gain", "u_gain")


def _write(tmp_path: Path, text: str, name: str = "table.csv") -> Path:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_load_one_dimensional_csv(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        "terminal impedance\n"
        "f;Rs;Ls;u_Rs;u_Ls\n"
        "10;0.05;1e-6;0.001;1e-8\n"
        "1000;0.06;1.1e-6;0.001;1e-8\n"
        "1e6;0.08;1.2e-6;0.001;1e-8\n",
    )
    table = load_table(path, "", SERIES)
    assert table.name == "terminal impedance"
    assert np.allclose(table.primary, [10.0, 1000.0, 1e6])
    assert table.size_secondary == 0
    assert np.allclose(table.column("Rs"), [0.05, 0.06, 0.08])
    assert table.primary_range() == (10.0, 1e6)


def test_load_two_dimensional_csv(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        "gain\n"
        "f;gain;gain;u_gain;u_gain\n"
        "rms;0;10;0;10\n"
        "10;1.0;1.1;0.1;0.1\n"
        "100;2.0;2.2;0.1;0.1\n",
    )
    table = load_table(path, "rms", GAIN)
    assert np.allclose(table.secondary, [0.0, 10.0])
    assert table["gain"].shape == (2, 2)
    value = table.interp(x=[5.0], y=[55.0])["gain"]
    assert value.shape == (1, 1)
    assert value[0, 0] == pytest.approx(1.575)


def test_interior_gap_is_filled(tmp_path: Path) -> None:
    path = _write(tmp_path, "gap\nf;Rs;Ls\n1;1;0\n2;;0\n3;3;0\n")
    table = load_table(path, "", ("f", "Rs", "Ls"))
    assert np.allclose(table.column("Rs"), [1.0, 2.0, 3.0])
    assert np.allclose(table.column("u_Rs"), 0.0)


def test_single_row_is_independent_of_frequency(tmp_path: Path) -> None:
    path = _write(tmp_path, "const\nf;Rs;Ls\n;0.5;1e-6\n")
    table = load_table(path, "", ("f", "Rs", "Ls"))
    assert table.size_primary == 0
    out = table.interp(y=[1.0, 10.0, 100.0])
    assert np.allclose(out.column("Rs"), 0.5)


@pytest.mark.parametrize(
    "text, names, secondary",
    [
        ("t\nf;Rs;Ls\n1;1;1;1\n2;2;2;2\n", ("f", "Rs", "Ls"), ""),
        ("t\nf;Rs\n1;1\n3;2\n2;3\n", ("f", "Rs"), ""),
        ("t\nf;Rs\n1;1\nx;2\n3;3\n", ("f", "Rs"), ""),
        ("t\nf;Rs\n5;1\n", ("f", "Rs"), ""),
        ("t\nf;Rs\n;1\n;2\n", ("f", "Rs"), ""),
        ("t\nf;Rs;Ls\n1;;1\n2;;2\n", ("f", "Rs", "Ls"), ""),
        ("t\nf;g;g\n1;1;2\n2;1;2\n", ("f", "g"), ""),
        ("t\nf;g;g\nrms;;\n1;1;2\n2;1;2\n", ("f", "g"), "rms"),
        ("t\nf;g;g\nrms;1;\n1;1;2\n2;1;2\n", ("f", "g"), "rms"),
        ("t\nf;g\n", ("f", "g"), ""),
    ],
)
def test_malformed_tables_raise_format_error(tmp_path: Path, text: str, names, secondary: str) -> None:
    path = _write(tmp_path, text)
    with pytest.raises(FormatError):
        load_table(path, secondary, names)


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FormatError):
        load_table(tmp_path / "missing.csv", "", SERIES)


def test_in_memory_table() -> None:
    f = np.array([10.0, 100.0, 1000.0])
    table = load_table([f, [1.0, 2.0, 3.0], [0.1, 0.2, 0.3]], "", ("f", "Rs", "Ls"), name="mem")
    assert table.name == "mem"
    assert set(table.quantity_names) == {"Rs", "Ls", "u_Rs", "u_Ls"}
    assert np.allclose(table.uncertainty("Ls"), 0.0)

    collapsed = load_table([[5.0], [1.0]], "", ("f", "Rs"))
    assert collapsed.size_primary == 0
    assert collapsed.has_primary

    with pytest.raises(FormatError):
        load_table([f, [1.0, 2.0, 3.0]], "", ("f", "Rs", "Ls"))


@pytest.mark.parametrize("mode", ["linear", "pchip", "spline"])
def test_interpolation_returns_stored_points(mode: str) -> None:
    f = np.array([10.0, 100.0, 1000.0, 1e4])
    rms = np.array([0.0, 1.0, 2.0])
    gain = np.outer(np.log10(f), [1.0, 1.5, 2.0])
    table = load_table([f, rms, gain, 0.01 * gain], "rms", GAIN)
    out = table.interp(x=rms, y=f, mode=mode)
    assert np.allclose(out["gain"], gain, rtol=1e-12)
    assert np.allclose(out.uncertainty("gain"), 0.01 * gain, rtol=1e-12)


@pytest.mark.parametrize("mode", ["linear", "pchip"])
def test_stored_point_next_to_nan_corner(mode: str) -> None:
    f = np.array([10.0, 100.0, 1000.0])
    rms = np.array([0.0, 5.0, 10.0])
    gain = np.outer(np.log10(f), [1.0, 1.5, 2.0])
    gain[-1, -1] = np.nan
    table = load_table([f, rms, gain, 0.01 * gain], "rms", GAIN)

    out = table.interp(x=[rms[-2]], y=[f[-1]], mode=mode)
    assert out["gain"][0, 0] == pytest.approx(gain[-1, -2], rel=1e-9)
    assert out.uncertainty("gain")[0, 0] == pytest.approx(0.01 * gain[-1, -2], rel=1e-9)

    pairs = table.interp_to_new_axis(rms[-2], [f[-1]], "f", PRIMARY, mode)
    assert pairs.column("gain")[0] == pytest.approx(gain[-1, -2], rel=1e-9)
    assert np.isnan(table.interp(x=[rms[-1]], y=[f[-1]], mode=mode)["gain"][0, 0])


def test_query_of_missing_axis_raises() -> None:
    table = load_table([[10.0, 20.0], [1.0, 2.0]], "", ("f", "Rs"))
    with pytest.raises(ConsistencyError):
        table.interp(x=[1.0])
    with pytest.raises(ConsistencyError):
        table["missing"]


def test_interp_to_new_axis_pairs() -> None:
    f = np.array([10.0, 20.0, 30.0])
    rms = np.array([0.0, 10.0])
    gain = np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
    table = load_table([f, rms, gain, np.zeros_like(gain)], "rms", GAIN)
    out = table.interp_to_new_axis(5.0, [10.0, 15.0, 30.0], "f", PRIMARY)
    assert out.primary_name == "f"
    assert not out.has_secondary
    assert out["gain"].shape == (3, 1)
    assert np.allclose(out.column("gain"), [1.5, 2.5, 5.5])

    with pytest.raises(ConsistencyError):
        table.interp_to_new_axis([1.0, 2.0], [10.0, 20.0, 30.0], "f")


def test_written_table_loads_back(tmp_path: Path) -> None:
    f = np.array([10.0, 100.0, 1000.0])
    rms = np.array([0.0, 5.0, 10.0])
    gain = np.tile([[1.0], [1.1], [1.2]], (1, 3))
    gain[-1, -1] = np.nan
    table = load_table([f, rms, gain, 0.001 * gain], "rms", GAIN, name="tr_gain")

    path = write_table(table, tmp_path / "out" / "tr_gain.csv")
    loaded = load_table(path, "rms", GAIN)
    assert loaded.name == "tr_gain"
    assert np.allclose(loaded.primary, f)
    assert np.allclose(loaded.secondary, rms)
    assert np.allclose(loaded["gain"], gain, equal_nan=True)


def test_table_set_defaults_and_names(tmp_path: Path) -> None:
    tables = TableSet()
    gain = tables["tr_gain"]
    assert gain.has_secondary
    assert np.allclose(gain.interp(y=[10.0, 20.0])["gain"], 1.0)
    assert np.allclose(tables["Zcb"]["Rs"], 0.0)
    assert "tr_gain" not in tables

    with pytest.raises(FormatError):
        TableSet({"bogus": default_table("Zcb")})
    with pytest.raises(FormatError):
        default_table("bogus")

    path = _write(tmp_path, "cable\nf;Rs;Ls;u_Rs;u_Ls\n;0.01;1e-7;0;0\n", "zcb.csv")
    loaded = TableSet.load({"Zcb": path})
    assert loaded.names() == ["Zcb"]
    assert loaded["Zcb"].column("Rs")[0] == pytest.approx(0.01)
