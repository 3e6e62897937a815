"""
Versioned manual corrections.

Field fixes that used to be hard-coded per expedition (a mistyped latitude,
a time noted in the wrong zone) live in an override table instead:

    version: 3
    overrides:
      - expedition_id: COL_2024
        site_name: PAC_04
        fields: {latitude: 6.2231, longitude: -77.4012}
        reason: GPS logged in ddm on the datasheet, corrected from track

Each entry must say why it exists. Applying the table returns a log of every
cell it changed, so the correction set can be audited on its own.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import pandas as pd
import yaml

from .cleaning import is_missing
from .errors import DuplicateKeyError

logger = logging.getLogger(__name__)

APPLIED_COLUMNS = ["expedition_id", "site_name", "field", "old_value", "new_value", "reason", "version", "status"]


@dataclass(frozen=True)
class Override:
    expedition_id: str
    site_name: str
    fields: dict = field(default_factory=dict)
    reason: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> "Override":
        for k in ("expedition_id", "site_name"):
            if is_missing(d.get(k)):
                raise ValueError(f"Override entry is missing {k!r}: {d}")
        if is_missing(d.get("reason")):
            raise ValueError(
                f"Override for {d['expedition_id']}/{d['site_name']} has no reason; "
                "every correction needs recorded provenance"
            )
        fields = d.get("fields") or {}
        if not isinstance(fields, dict) or not fields:
            raise ValueError(f"Override for {d['expedition_id']}/{d['site_name']} changes no fields")
        return cls(
            expedition_id=str(d["expedition_id"]).strip(),
            site_name=str(d["site_name"]).strip(),
            fields=dict(fields),
            reason=str(d["reason"]).strip(),
        )


@dataclass(frozen=True)
class OverrideTable:
    version: Union[int, str]
    entries: tuple = ()

    def __post_init__(self):
        object.__setattr__(self, "entries", tuple(self.entries))
        keys = [(e.expedition_id, e.site_name) for e in self.entries]
        dups = sorted({k for k in keys if keys.count(k) > 1})
        if dups:
            raise DuplicateKeyError(dups, message=f"Override table v{self.version} repeats entries: {dups}")

    def __len__(self) -> int:
        return len(self.entries)

    def for_expedition(self, expedition_id: str) -> list[Override]:
        return [e for e in self.entries if e.expedition_id == expedition_id]

    @classmethod
    def from_records(cls, records: Iterable[dict], version: Union[int, str] = 1) -> "OverrideTable":
        return cls(version=version, entries=tuple(Override.from_dict(r) for r in records))


def load_overrides(path: Union[str, Path]) -> OverrideTable:
    """Read an override table from YAML. A missing `version` is an error."""
    with open(path, "r", encoding="utf-8") as fh:
        d = yaml.safe_load(fh) or {}
    if is_missing(d.get("version")):
        raise ValueError(f"{path}: override tables must declare a version")
    return OverrideTable.from_records(d.get("overrides") or [], version=d["version"])


def apply_overrides(
    rows: pd.DataFrame,
    table: OverrideTable,
    *,
    site_col: str = "site_name",
    expedition_id: Optional[str] = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Apply every matching override to a copy of `rows`.

    Rows are matched on (expedition_id, site_col). When the table has no
    expedition_id column, `expedition_id` must be given and applies to all rows.
    Override fields not yet in the table are added as new columns.

    Returns:
        (corrected rows, applied log). Entries that matched nothing appear in
        the log with status "no matching row" and are logged as warnings.
    """
    if site_col not in rows.columns:
        raise KeyError(f"Site column {site_col!r} not found")
    out = rows.copy()
    if "expedition_id" in out.columns:
        exp = out["expedition_id"].astype("string").str.strip()
    elif expedition_id is not None:
        exp = pd.Series(expedition_id, index=out.index, dtype="string")
    else:
        raise KeyError("rows have no expedition_id column; pass expedition_id=")
    site = out[site_col].astype("string").str.strip()

    log: list[dict] = []
    for entry in table.entries:
        match = ((exp == entry.expedition_id) & (site == entry.site_name)).fillna(False)
        if not match.any():
            if expedition_id is None or entry.expedition_id == expedition_id:
                logger.warning("Override %s/%s matched no row", entry.expedition_id, entry.site_name)
                log.append(_log_row(entry, table, None, None, None, "no matching row"))
            continue
        for fld, new in entry.fields.items():
            if fld not in out.columns:
                out[fld] = pd.Series(pd.NA, index=out.index, dtype="object")
            out[fld] = _widen(out[fld], new)
            for idx in out.index[match.to_numpy()]:
                old = out.at[idx, fld]
                out.at[idx, fld] = new
                log.append(_log_row(entry, table, fld, old, new, "applied"))
        logger.info("Override %s/%s applied (%s)", entry.expedition_id, entry.site_name, entry.reason)

    applied = pd.DataFrame(log, columns=APPLIED_COLUMNS) if log else pd.DataFrame(
        {c: pd.Series(dtype="object") for c in APPLIED_COLUMNS}
    )
    return out, applied


def _widen(col: pd.Series, new: Any) -> pd.Series:
    """Cast `col` to object if `new` would not fit its dtype (e.g. text into a float column)."""
    if is_missing(new) or col.dtype == object:
        return col
    kind = col.dtype.kind
    if isinstance(new, bool):
        return col if kind == "b" else col.astype("object")
    if isinstance(new, (int, float)):
        if kind == "f":
            return col
        if kind in "iu":
            if float(new).is_integer():
                return col
            return col.astype("Float64" if isinstance(col.dtype, pd.api.extensions.ExtensionDtype) else "float64")
        return col.astype("object")
    if isinstance(new, str) and pd.api.types.is_string_dtype(col.dtype):
        return col
    return col.astype("object")


def _log_row(entry: Override, table: OverrideTable, fld, old, new, status: str) -> dict:
    return {
        "expedition_id": entry.expedition_id,
        "site_name": entry.site_name,
        "field": fld,
        "old_value": None if is_missing(old) else old,
        "new_value": new,
        "reason": entry.reason,
        "version": table.version,
        "status": status,
    }


def flag_unrecorded_corrections(
    raw: pd.DataFrame,
    corrected: pd.DataFrame,
    key: Union[str, list[str]],
    applied: Optional[pd.DataFrame] = None,
    *,
    site_col: str = "site_name",
) -> pd.DataFrame:
    """
    Cells that differ between `raw` and `corrected` with no override entry to
    account for them. Literal fixes made outside the override table show up
    here so they can be moved into it.

    Returns:
        DataFrame with key column(s), field, raw_value, corrected_value
    """
    keys = [key] if isinstance(key, str) else list(key)
    shared = [c for c in raw.columns if c in corrected.columns and c not in keys]
    merged = raw[keys + shared].merge(
        corrected[keys + shared], on=keys, how="inner", suffixes=("__raw", "__new"), validate="one_to_one"
    )
    by_expedition = "expedition_id" in keys
    accounted = set()
    if applied is not None and len(applied) > 0:
        done = applied[applied["status"] == "applied"]
        accounted = {
            (str(r.expedition_id).strip() if by_expedition else None, r.site_name, r.field)
            for r in done.itertuples()
        }

    out = []
    for fld in shared:
        a, b = merged[f"{fld}__raw"], merged[f"{fld}__new"]
        for i in range(len(merged)):
            va, vb = a.iloc[i], b.iloc[i]
            if is_missing(va) and is_missing(vb):
                continue
            if not is_missing(va) and not is_missing(vb) and va == vb:
                continue
            site = merged[site_col].iloc[i] if site_col in keys else None
            exp = str(merged["expedition_id"].iloc[i]).strip() if by_expedition else None
            if site is not None and (exp, str(site), fld) in accounted:
                continue
            rec = {k: merged[k].iloc[i] for k in keys}
            rec.update({"field": fld, "raw_value": va, "corrected_value": vb})
            out.append(rec)
    if not out:
        return pd.DataFrame(columns=keys + ["field", "raw_value", "corrected_value"])
    return pd.DataFrame(out)
