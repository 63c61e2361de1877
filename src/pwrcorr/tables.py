"""Correction tables: loading, interpolation and the named table set."""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import ConsistencyError, FormatError
from .interpolation import check_mode, interp1, interp1nan, interp2nan, interp2nan_pairs

logger = logging.getLogger(__name__)

PRIMARY = "primary"
SECONDARY = "secondary"


def _empty() -> np.ndarray:
    return np.empty(0)


@dataclass(frozen=True)
class CorrectionTable:
    """Quantities tabulated over an optional primary and secondary axis.

    Each quantity is stored as a 2-D array of shape
    ``(size_primary or 1, size_secondary or 1)``. An axis may be declared
    (it has a name) but independent, in which case its values are empty and
    the quantities are constant along it.
    """

    name: str
    quantity_names: Tuple[str, ...]
    data: Dict[str, np.ndarray]
    primary_name: str = ""
    primary: np.ndarray = field(default_factory=_empty)
    secondary_name: str = ""
    secondary: np.ndarray = field(default_factory=_empty)

    @property
    def has_primary(self) -> bool:
        return bool(self.primary_name)

    @property
    def has_secondary(self) -> bool:
        return bool(self.secondary_name)

    @property
    def size_primary(self) -> int:
        return int(self.primary.size)

    @property
    def size_secondary(self) -> int:
        return int(self.secondary.size)

    def __getitem__(self, name: str) -> np.ndarray:
        try:
            return self.data[name]
        except KeyError:
            raise ConsistencyError(f"Table '{self.name}' has no quantity '{name}'") from None

    def __contains__(self, name: str) -> bool:
        return name in self.data

    def uncertainty(self, name: str) -> np.ndarray:
        return self[_uncertainty_name(name)]

    def column(self, name: str) -> np.ndarray:
        """Quantity of a table without secondary dependence as a 1-D vector."""

        values = self[name]
        if values.shape[1] != 1:
            raise ConsistencyError(f"Quantity '{name}' of '{self.name}' is two-dimensional")
        return values[:, 0]

    def primary_range(self) -> Optional[Tuple[float, float]]:
        if not self.size_primary:
            return None
        return float(np.min(self.primary)), float(np.max(self.primary))

    def secondary_range(self) -> Optional[Tuple[float, float]]:
        if not self.size_secondary:
            return None
        return float(np.min(self.secondary)), float(np.max(self.secondary))

    def _query_axis(self, values, which: str) -> Optional[np.ndarray]:
        if values is None:
            return None
        arr = np.asarray(values, dtype=float)
        if arr.ndim > 1 and arr.size != max(arr.shape):
            raise ConsistencyError(f"Axis {which} of '{self.name}' query is not a vector")
        arr = arr.ravel()
        if not arr.size:
            return None
        declared = self.has_primary if which == PRIMARY else self.has_secondary
        if not declared:
            raise ConsistencyError(
                f"Interpolation by nonexistent {which} axis of table '{self.name}'"
            )
        return arr

    def interp(self, x=None, y=None, mode: str = "linear") -> "CorrectionTable":
        """Interpolate onto secondary values *x* and primary values *y*.

        An axis that is not requested keeps the table's own samples. The
        result is a new table whose axes are the requested ones.
        """

        mode = check_mode(mode)
        x = self._query_axis(x, SECONDARY)
        y = self._query_axis(y, PRIMARY)
        if x is None and self.size_secondary:
            x = self.secondary
        if y is None and self.size_primary:
            y = self.primary

        ny = y.size if y is not None else 1
        nx = x.size if x is not None else 1
        data: Dict[str, np.ndarray] = {}
        for name in self.quantity_names:
            q = self.data[name]
            if self.size_primary and self.size_secondary:
                values = interp2nan(self.secondary, self.primary, q, x, y, mode)
            elif self.size_secondary:
                values = np.tile(interp1nan(self.secondary, q[0], x, mode), (ny, 1))
            elif self.size_primary:
                values = np.tile(interp1nan(self.primary, q[:, 0], y, mode)[:, None], (1, nx))
            else:
                values = np.full((ny, nx), q[0, 0])
            data[name] = values

        return replace(
            self,
            data=data,
            primary=y if ny > 1 else _empty(),
            secondary=x if nx > 1 else _empty(),
        )

    def interp2d(self, x, y, mode: str = "linear") -> "CorrectionTable":
        return self.interp(x=x, y=y, mode=mode)

    def interp1d(self, values, axis: str = PRIMARY, mode: str = "linear") -> "CorrectionTable":
        if axis == PRIMARY:
            return self.interp(y=values, mode=mode)
        if axis == SECONDARY:
            return self.interp(x=values, mode=mode)
        raise ConsistencyError(f"Unknown axis '{axis}'")

    def interp_to_new_axis(
        self,
        x,
        y,
        new_axis_name: str,
        which_axis: str = PRIMARY,
        mode: str = "linear",
    ) -> "CorrectionTable":
        """Evaluate one value per ``(x[k], y[k])`` pair.

        A scalar coordinate is replicated to the length of the other one. The
        result is a 1-D table keyed by *new_axis_name* along *which_axis*,
        whose axis values are the *y* (primary) or *x* (secondary) coordinates.
        """

        mode = check_mode(mode)
        if which_axis not in (PRIMARY, SECONDARY):
            raise ConsistencyError(f"Unknown axis '{which_axis}'")
        x = self._query_axis(x, SECONDARY)
        y = self._query_axis(y, PRIMARY)
        if x is None or y is None:
            raise ConsistencyError("Pairwise interpolation needs values for both axes")
        if x.size > 1 and y.size > 1 and x.size != y.size:
            raise ConsistencyError("Both axes must have the same length or one must be scalar")
        n = max(x.size, y.size)
        x = np.broadcast_to(x, (n,)).copy()
        y = np.broadcast_to(y, (n,)).copy()

        data: Dict[str, np.ndarray] = {}
        for name in self.quantity_names:
            q = self.data[name]
            if self.size_primary and self.size_secondary:
                values = interp2nan_pairs(self.secondary, self.primary, q, x, y, mode)
            elif self.size_secondary:
                values = interp1nan(self.secondary, q[0], x, mode)
            elif self.size_primary:
                values = interp1nan(self.primary, q[:, 0], y, mode)
            else:
                values = np.full(n, q[0, 0])
            data[name] = values[:, None] if which_axis == PRIMARY else values[None, :]

        axis = (y if which_axis == PRIMARY else x) if n > 1 else _empty()
        if which_axis == PRIMARY:
            return replace(
                self, data=data, primary_name=new_axis_name, primary=axis,
                secondary_name="", secondary=_empty(),
            )
        return replace(
            self, data=data, primary_name="", primary=_empty(),
            secondary_name=new_axis_name, secondary=axis,
        )


def _uncertainty_name(name: str) -> str:
    return f"u_{name}"


def _check_axis(values: np.ndarray, label: str, table: str) -> None:
    if not np.all(np.isfinite(values)):
        raise FormatError(f"Axis '{label}' of table '{table}' contains non-numeric values")
    if values.size > 1:
        steps = np.diff(values)
        if not (np.all(steps > 0) or np.all(steps < 0)):
            raise FormatError(f"Axis '{label}' of table '{table}' is not strictly monotonic")


def build_table(
    name: str,
    primary_name: str,
    primary,
    secondary_name: str,
    secondary,
    quantities: Mapping[str, np.ndarray],
) -> CorrectionTable:
    """Validate shapes and add zero uncertainty companions where missing."""

    primary = np.asarray(primary if primary is not None else [], dtype=float).ravel()
    secondary = np.asarray(secondary if secondary is not None else [], dtype=float).ravel()
    if primary.size and not primary_name:
        raise FormatError(f"Table '{name}' has primary axis values but no primary axis name")
    if secondary.size and not secondary_name:
        raise FormatError(f"Table '{name}' has secondary axis values but no secondary axis name")
    _check_axis(primary, primary_name, name)
    _check_axis(secondary, secondary_name, name)
    if primary.size < 2:
        primary = _empty()
    if secondary.size < 2:
        secondary = _empty()

    shape = (primary.size or 1, secondary.size or 1)
    data: Dict[str, np.ndarray] = {}
    for qname, values in quantities.items():
        arr = np.asarray(values, dtype=float)
        if arr.size != shape[0] * shape[1]:
            raise FormatError(
                f"Quantity '{qname}' of table '{name}' has {arr.size} values, expected {shape}"
            )
        data[qname] = arr.reshape(shape)

    names = list(data)
    for qname in list(names):
        if qname.startswith("u_"):
            continue
        companion = _uncertainty_name(qname)
        if companion not in data:
            data[companion] = np.zeros(shape)
            names.append(companion)

    return CorrectionTable(
        name=name,
        quantity_names=tuple(names),
        data=data,
        primary_name=primary_name,
        primary=primary,
        secondary_name=secondary_name,
        secondary=secondary,
    )


def load_table(
    source,
    secondary_name: str,
    quantity_names: Sequence[str],
    mode: str = "linear",
    *,
    name: str = "",
) -> CorrectionTable:
    """Load a correction table from a CSV file or from in-memory values.

    ``quantity_names[0]`` names the primary axis (empty string for none), the
    remaining entries name the quantities. An in-memory *source* is a
    sequence of primary axis values (when a primary axis is named), secondary
    axis values (when *secondary_name* is given) and one array per quantity.
    """

    if len(quantity_names) < 2:
        raise FormatError("At least the primary axis name and one quantity name are required")
    if isinstance(source, (str, Path)):
        return _load_csv(Path(source), secondary_name, list(quantity_names), mode)
    return _from_values(list(source), secondary_name, list(quantity_names), name or "in-memory")


def _from_values(values: list, secondary_name: str, names: list[str], name: str) -> CorrectionTable:
    has_primary = bool(names[0])
    has_secondary = bool(secondary_name)
    expected = len(names) - 1 + int(has_primary) + int(has_secondary)
    if len(values) != expected:
        raise FormatError(
            f"In-memory table '{name}' needs {expected} items, got {len(values)}"
        )
    pos = 0
    primary = None
    secondary = None
    if has_primary:
        primary = values[pos]
        pos += 1
    if has_secondary:
        secondary = values[pos]
        pos += 1
    quantities = {qname: values[pos + k] for k, qname in enumerate(names[1:])}
    return build_table(name, names[0], primary, secondary_name, secondary, quantities)


def _read_cells(path: Path) -> np.ndarray:
    text = path.read_text(encoding="utf-8-sig")
    lines = text.splitlines()
    width = max((line.count(";") + 1 for line in lines), default=0)
    if not lines or width == 0:
        raise FormatError(f"Correction table {path} is empty")
    frame = pd.read_csv(
        io.StringIO(text),
        sep=";",
        header=None,
        names=list(range(width)),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=False,
    )
    cells = frame.fillna("").to_numpy(dtype=str)
    cells = np.char.strip(cells)

    filled = cells != ""
    rows = np.flatnonzero(filled.any(axis=1))
    cols = np.flatnonzero(filled.any(axis=0))
    if not rows.size:
        raise FormatError(f"Correction table {path} is empty")
    return cells[: rows[-1] + 1, : cols[-1] + 1]


def _to_numbers(cells: np.ndarray) -> np.ndarray:
    numbers = pd.to_numeric(pd.Series(cells.ravel()), errors="coerce")
    return numbers.to_numpy(dtype=float).reshape(cells.shape)


def _load_csv(path: Path, secondary_name: str, names: list[str], mode: str) -> CorrectionTable:
    mode = check_mode(mode)
    if not path.exists():
        raise FormatError(f"Correction table {path} does not exist")
    cells = _read_cells(path)
    n_rows, n_cols = cells.shape
    n_quant = len(names) - 1

    if n_cols < 2 or (n_cols - 1) % n_quant:
        raise FormatError(
            f"{path}: {n_cols - 1} value columns do not split into {n_quant} quantities"
        )
    per_quant = (n_cols - 1) // n_quant
    if per_quant > 1 and not secondary_name:
        raise FormatError(
            f"{path}: {per_quant} columns per quantity need a secondary axis name"
        )

    title = cells[0, 0]
    data_row = 3 if secondary_name else 2
    if n_rows <= data_row:
        raise FormatError(f"{path}: no data rows")

    numbers = _to_numbers(cells)
    present = np.isfinite(numbers)

    axis_cells = present[data_row:, 0]
    n_data = n_rows - data_row
    if axis_cells.any() and not axis_cells.all():
        raise FormatError(f"{path}: primary axis column is only partially numeric")
    if n_data == 1 and axis_cells.any():
        raise FormatError(f"{path}: a single data row must leave the primary axis cell empty")
    if n_data > 1 and not axis_cells.any():
        raise FormatError(f"{path}: multiple data rows need primary axis values")
    if axis_cells.any() and not names[0]:
        raise FormatError(f"{path}: primary axis values present but no primary axis name given")
    primary = numbers[data_row:, 0] if axis_cells.any() else _empty()

    secondary = _empty()
    if secondary_name:
        sec_cells = present[data_row - 1, 1 : per_quant + 1]
        if sec_cells.any() and not sec_cells.all():
            raise FormatError(f"{path}: secondary axis row is only partially numeric")
        if not sec_cells.any() and per_quant > 1:
            raise FormatError(f"{path}: secondary axis values missing for {per_quant} columns")
        if sec_cells.any() and per_quant == 1:
            raise FormatError(f"{path}: secondary axis has a value but only one column per quantity")
        if per_quant > 1:
            secondary = numbers[data_row - 1, 1 : per_quant + 1]

    quantities: Dict[str, np.ndarray] = {}
    for q, qname in enumerate(names[1:]):
        block = numbers[data_row:, 1 + q * per_quant : 1 + (q + 1) * per_quant].copy()
        for a in range(per_quant):
            column = block[:, a]
            valid = np.isfinite(column)
            if not valid.any():
                raise FormatError(f"{path}: no valid number in column {a + 1} of '{qname}'")
            if primary.size > 1 and not valid.all():
                block[:, a] = interp1(primary[valid], column[valid], primary, mode)
        quantities[qname] = block

    logger.debug("Loaded table %s from %s (%d x %d)", title, path, primary.size, secondary.size)
    return build_table(title, names[0], primary, secondary_name, secondary, quantities)


def _cell(value: float) -> str:
    return "" if np.isnan(value) else format(float(value), ".17g")


def write_table(table: CorrectionTable, path: Path | str) -> Path:
    """Write *table* in the semicolon separated layout read by :func:`load_table`.

    NaN values become empty cells.
    """

    path = Path(path)
    names = list(table.quantity_names)
    n_sec = max(table.size_secondary, 1)
    rows: list[list[str]] = [[table.name]]
    rows.append([table.primary_name] + [name for name in names for _ in range(n_sec)])
    if table.has_secondary:
        axis = [_cell(v) for v in table.secondary] if table.size_secondary else [""]
        rows.append([table.secondary_name] + axis * len(names))

    n_pri = max(table.size_primary, 1)
    for k in range(n_pri):
        lead = _cell(table.primary[k]) if table.size_primary else ""
        rows.append([lead] + [_cell(v) for name in names for v in table[name][k]])

    width = max(len(row) for row in rows)
    frame = pd.DataFrame([row + [""] * (width - len(row)) for row in rows])
    path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path, sep=";", header=False, index=False)
    logger.debug("Wrote table %s to %s", table.name, path)
    return path


TABLE_LAYOUTS: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "tr_gain": ("rms", ("f", "gain", "u_gain")),
    "tr_phi": ("rms", ("f", "phi", "u_phi")),
    "tr_Zlo": ("", ("f", "Rp", "Cp", "u_Rp", "u_Cp")),
    "tr_Zca": ("", ("f", "Rs", "Ls", "u_Rs", "u_Ls")),
    "tr_Yca": ("", ("f", "Cp", "D", "u_Cp", "u_D")),
    "tr_Zcal": ("", ("f", "Rs", "Ls", "u_Rs", "u_Ls")),
    "tr_Zcam": ("", ("f", "M", "u_M")),
    "adc_Yin": ("", ("f", "Cp", "Gp", "u_Cp", "u_Gp")),
    "lo_adc_Yin": ("", ("f", "Cp", "Gp", "u_Cp", "u_Gp")),
    "Zcb": ("", ("f", "Rs", "Ls", "u_Rs", "u_Ls")),
    "Ycb": ("", ("f", "Cp", "D", "u_Cp", "u_D")),
}

# neutral values of tables that may be omitted
_DEFAULT_VALUES: Dict[str, Dict[str, float]] = {
    "tr_gain": {"gain": 1.0},
    "tr_phi": {"phi": 0.0},
}


def default_table(name: str) -> CorrectionTable:
    """Neutral table: unity gain, zero phase, zero impedance or admittance."""

    if name not in TABLE_LAYOUTS:
        raise FormatError(f"Unknown correction table '{name}'")
    secondary_name, names = TABLE_LAYOUTS[name]
    defaults = _DEFAULT_VALUES.get(name, {})
    quantities = {q: defaults.get(q, 0.0) for q in names[1:]}
    return build_table(name, names[0], None, secondary_name, None, quantities)


@dataclass
class TableSet:
    """Named correction tables of one measurement channel."""

    tables: Dict[str, CorrectionTable] = field(default_factory=dict)

    def __post_init__(self) -> None:
        unknown = sorted(set(self.tables) - set(TABLE_LAYOUTS))
        if unknown:
            raise FormatError(f"Unknown correction tables: {unknown}")

    def __contains__(self, name: str) -> bool:
        return name in self.tables

    def __getitem__(self, name: str) -> CorrectionTable:
        table = self.tables.get(name)
        return table if table is not None else default_table(name)

    def names(self) -> list[str]:
        return sorted(self.tables)

    @classmethod
    def load(cls, paths: Mapping[str, Path | str], mode: str = "linear") -> "TableSet":
        tables: Dict[str, CorrectionTable] = {}
        for name, path in paths.items():
            if name not in TABLE_LAYOUTS:
                raise FormatError(f"Unknown correction table '{name}'")
            secondary_name, names = TABLE_LAYOUTS[name]
            tables[name] = load_table(path, secondary_name, names, mode)
            logger.info("Loaded correction table %s from %s", name, path)
        return cls(tables)
