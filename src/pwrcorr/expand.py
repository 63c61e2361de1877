"""Bring a group of correction tables onto common axes."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .errors import ConsistencyError, RangeError
from .tables import CorrectionTable

logger = logging.getLogger(__name__)

Range = Tuple[float, float]


@dataclass(frozen=True)
class ExpandedTables:
    tables: list[CorrectionTable]
    secondary: np.ndarray
    primary: np.ndarray
    primary_range: Optional[Range]
    secondary_range: Optional[Range]
    sources: list[tuple[str, Optional[Range], Optional[Range]]]

    def require_primary(self, values, label: str = "frequency") -> None:
        """Raise :class:`RangeError` unless all tables cover *values*."""

        self._require(values, label, self.primary_range, 1)

    def require_secondary(self, values, label: str = "rms") -> None:
        self._require(values, label, self.secondary_range, 2)

    def _require(self, values, label: str, common: Optional[Range], slot: int) -> None:
        if common is None:
            return
        values = np.asarray(values, dtype=float).ravel()
        values = values[np.isfinite(values)]
        if not values.size:
            return
        lo, hi = float(values.min()), float(values.max())
        if common[0] <= lo and hi <= common[1]:
            return
        short = [
            f"{source[0]} [{source[slot][0]:g}, {source[slot][1]:g}]"
            for source in self.sources
            if source[slot] is not None and (lo < source[slot][0] or hi > source[slot][1])
        ]
        if not short:
            short = [f"common range [{common[0]:g}, {common[1]:g}] is empty"]
        raise RangeError(
            f"Requested {label} range [{lo:g}, {hi:g}] is not covered by: " + ", ".join(short)
        )


def _merge_axis(ranges: list[Range], values: list[np.ndarray], reduce_axes: bool):
    if not values:
        return _empty(), None
    merged = np.unique(np.concatenate(values))
    common = (max(r[0] for r in ranges), min(r[1] for r in ranges))
    if reduce_axes:
        merged = merged[(merged >= common[0]) & (merged <= common[1])]
    return merged, common


def _empty() -> np.ndarray:
    return np.empty(0)


def _query(own_size: int, merged: np.ndarray) -> Optional[np.ndarray]:
    if not own_size:
        return None
    if not merged.size:
        # empty intersection: nothing valid to evaluate
        return np.array([np.nan])
    return merged


def expand_tables(
    tables: Sequence[CorrectionTable],
    reduce_axes: bool = True,
    mode: str = "linear",
) -> ExpandedTables:
    """Interpolate *tables* onto the union of their axes.

    With *reduce_axes* the union is clipped to the range covered by every
    table defining that axis. Merged axes with fewer than two points become
    independent.
    """

    tables = list(tables)
    if not tables:
        raise ConsistencyError("No tables to expand")

    sec_values, sec_ranges = [], []
    pri_values, pri_ranges = [], []
    sources = []
    for table in tables:
        sec = table.secondary_range()
        pri = table.primary_range()
        if sec is not None:
            sec_values.append(table.secondary)
            sec_ranges.append(sec)
        if pri is not None:
            pri_values.append(table.primary)
            pri_ranges.append(pri)
        sources.append((table.name, pri, sec))

    ax, sec_common = _merge_axis(sec_ranges, sec_values, reduce_axes)
    ay, pri_common = _merge_axis(pri_ranges, pri_values, reduce_axes)

    expanded = [
        table.interp(
            x=_query(table.size_secondary, ax),
            y=_query(table.size_primary, ay),
            mode=mode,
        )
        for table in tables
    ]
    logger.debug(
        "Expanded %d tables onto %d primary and %d secondary points",
        len(tables), ay.size, ax.size,
    )

    return ExpandedTables(
        tables=expanded,
        secondary=ax if ax.size > 1 else _empty(),
        primary=ay if ay.size > 1 else _empty(),
        primary_range=pri_common,
        secondary_range=sec_common,
        sources=sources,
    )
