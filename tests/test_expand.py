from __future__ import annotations

import numpy as np
import pytest

from pwrcorr.errors import ConsistencyError, RangeError
from pwrcorr.expand import expand_tables
from pwrcorr.tables import load_table

GAIN = ("f", "gain", "u_gain")
SERIES = ("f", "Rs", "Ls")


def _gain(f, rms, name: str):
    f = np.asarray(f, dtype=float)
    rms = np.asarray(rms, dtype=float)
    values = np.outer(f, np.ones(rms.size)) + rms[None, :]
    return load_table([f, rms, values, np.zeros_like(values)], "rms", GAIN, name=name)


def test_axes_are_merged_and_clipped() -> None:
    gain = _gain([10.0, 100.0, 1000.0], [0.0, 5.0, 10.0], "tr_gain")
    zca = load_table([[50.0, 500.0, 5000.0], [1.0, 2.0, 3.0], [0.0, 0.0, 0.0]], "", SERIES, name="tr_Zca")

    expanded = expand_tables([gain, zca])
    assert np.allclose(expanded.primary, [50.0, 100.0, 500.0, 1000.0])
    assert np.allclose(expanded.secondary, [0.0, 5.0, 10.0])
    assert expanded.primary_range == (50.0, 1000.0)

    first, second = expanded.tables
    assert first["gain"].shape == (4, 3)
    assert first["gain"][0, 1] == pytest.approx(55.0)
    assert second["Rs"].shape == (4, 1)
    assert second.column("Rs")[1] == pytest.approx(1.0 + 50.0 / 450.0)


def test_range_error_names_the_short_table() -> None:
    gain = _gain([10.0, 1e6], [0.0, 10.0], "tr_gain")
    zca = load_table([[10.0, 1e3], [1.0, 2.0], [0.0, 0.0]], "", SERIES, name="tr_Zca")
    expanded = expand_tables([gain, zca])

    expanded.require_primary([10.0, 500.0])
    with pytest.raises(RangeError, match="tr_Zca"):
        expanded.require_primary([10.0, 5e3])
    with pytest.raises(RangeError, match="tr_gain"):
        expanded.require_secondary([11.0])


def test_constant_table_keeps_its_value() -> None:
    gain = _gain([10.0, 100.0], [0.0, 1.0], "tr_gain")
    const = load_table([[], [2.0], [3.0]], "", SERIES, name="const")
    expanded = expand_tables([gain, const])
    assert np.allclose(expanded.tables[1]["Rs"], 2.0)
    # the constant table does not restrict the range
    expanded.require_primary([10.0, 100.0])


def test_empty_list_raises() -> None:
    with pytest.raises(ConsistencyError):
        expand_tables([])


def test_disjoint_tables_have_no_common_axis() -> None:
    a = load_table([[10.0, 20.0], [1.0, 2.0], [0.0, 0.0]], "", SERIES, name="first")
    b = load_table([[30.0, 40.0], [1.0, 2.0], [0.0, 0.0]], "", SERIES, name="second")
    expanded = expand_tables([a, b])
    assert expanded.primary.size == 0
    assert np.all(np.isnan(expanded.tables[0]["Rs"]))
    with pytest.raises(RangeError, match="first"):
        expanded.require_primary([30.0])
