from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .errors import FormatError
from .interpolation import MODES
from .loading import DEFAULT_MAX_BINS, TransducerKind
from .tables import TABLE_LAYOUTS, TableSet


@dataclass
class ChannelConfig:
    transducer: TransducerKind = TransducerKind.RVD
    max_accurate_bins: int = DEFAULT_MAX_BINS
    interp_mode: str = "pchip"
    table_mode: str = "linear"
    tables: Dict[str, Path] = field(default_factory=dict)
    label: str = ""

    def load_tables(self) -> TableSet:
        return TableSet.load(self.tables, mode=self.table_mode)


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FormatError(f"Configuration {path} does not exist")
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise FormatError(f"Configuration {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise FormatError(f"Configuration {path} must contain a JSON object")
    return data


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str, overrides: Sequence[str] | None = None) -> ChannelConfig:
    """
    Load a channel configuration from JSON and apply CLI-style overrides.

    Overrides are expressed as dotted `key=value` pairs, e.g.:
        ["max_accurate_bins=1000", "tables.Zcb=cable_z.csv"]

    Relative table paths are resolved against the directory of *path*.
    """
    config_path = Path(path)
    data = _load_json(config_path)
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)

    transducer = str(merged.get("transducer", TransducerKind.RVD.value)).lower()
    try:
        kind = TransducerKind(transducer)
    except ValueError:
        raise FormatError(f"Unsupported transducer '{transducer}'") from None

    interp_mode = _mode(merged.get("interp_mode", "pchip"), "interp_mode")
    table_mode = _mode(merged.get("table_mode", "linear"), "table_mode")

    try:
        max_bins = int(merged.get("max_accurate_bins", DEFAULT_MAX_BINS))
    except (TypeError, ValueError):
        raise FormatError("max_accurate_bins must be an integer") from None
    if max_bins < 2:
        raise FormatError("max_accurate_bins must be at least 2")

    tables_data = merged.get("tables") or {}
    if not isinstance(tables_data, dict):
        raise FormatError("tables must map table names to CSV paths")
    tables: Dict[str, Path] = {}
    for name, location in tables_data.items():
        if name not in TABLE_LAYOUTS:
            raise FormatError(f"Unknown correction table '{name}'")
        table_path = Path(str(location))
        if not table_path.is_absolute():
            table_path = config_path.parent / table_path
        tables[name] = table_path

    return ChannelConfig(
        transducer=kind,
        max_accurate_bins=max_bins,
        interp_mode=interp_mode,
        table_mode=table_mode,
        tables=tables,
        label=str(merged.get("label", "")),
    )


def _mode(value: Optional[Any], key: str) -> str:
    mode = str(value).lower()
    if mode not in MODES:
        raise FormatError(f"Unsupported {key} '{value}'")
    return mode


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise FormatError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise FormatError("Override key may not be empty")
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if raw.startswith("[") and raw.endswith("]"):
        return json.loads(raw)
    if raw.startswith("{") and raw.endswith("}"):
        return json.loads(raw)
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
