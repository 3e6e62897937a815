"""
Schema normalizer: map a raw spreadsheet table onto a target schema.

Best effort, fully reported. Nothing here raises on bad data: every problem
becomes a row of the issue report (row_key, field, issue, value) and the
offending cell becomes null, so analysts see all problems of a sheet in one
pass. `raise_for_issues` turns a non-empty report into an error for callers
that need a clean table.
"""

from __future__ import annotations
import datetime as dt
import logging
import re
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Union

import pandas as pd
import yaml
from pandera.errors import SchemaErrors

from .cleaning import as_text, get_converter, is_missing, normalize_columns, parse_number, time_to_24h
from .errors import SchemaViolationError
from .schema import FieldSpec, TableSchema, load_schema, to_pandera

logger = logging.getLogger(__name__)

ISSUE_COLUMNS = ["row_key", "field", "issue", "value"]

MISSING_COLUMN = "missing required column"
MISSING_VALUE = "missing required value"
NOT_ALLOWED = "not in allowed values"


@dataclass
class ColumnMapping:
    """
    Declarative source -> target mapping.

    rename: source column -> target field. Several sources may point at the
        same target (headers changed between expeditions); at most one of them
        may be present in a given table.
    converters: target field -> converter name (see cleaning.CONVERTERS) or callable,
        applied cell by cell before type coercion.
    normalize_headers: clean raw headers (and mapping keys) with
        cleaning.normalize_columns before matching.
    dayfirst: day/month order of numeric dates (03/04/2024). None: only
        dates whose order is unambiguous are read; the rest are reported.
    """

    rename: dict[str, str] = field(default_factory=dict)
    converters: dict[str, Union[str, Callable[[Any], Any]]] = field(default_factory=dict)
    normalize_headers: bool = False
    dayfirst: Optional[bool] = None

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "ColumnMapping":
        d = d or {}
        unknown = set(d) - {"rename", "converters", "normalize_headers", "dayfirst"}
        if unknown:
            raise ValueError(f"Unknown mapping sections: {sorted(unknown)}")
        return cls(
            rename={str(k): str(v) for k, v in (d.get("rename") or {}).items()},
            converters=dict(d.get("converters") or {}),
            normalize_headers=bool(d.get("normalize_headers", False)),
            dayfirst=None if d.get("dayfirst") is None else bool(d["dayfirst"]),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ColumnMapping":
        with open(path, "r", encoding="utf-8") as fh:
            return cls.from_dict(yaml.safe_load(fh))

    def source_columns(self) -> dict[str, str]:
        """rename with keys cleaned the same way as headers, if requested."""
        if not self.normalize_headers:
            return dict(self.rename)
        keys = normalize_columns(pd.DataFrame(columns=list(self.rename))).columns
        return dict(zip(keys, self.rename.values()))


def empty_issue_report() -> pd.DataFrame:
    return pd.DataFrame({c: pd.Series(dtype="object") for c in ISSUE_COLUMNS})

# -------------------------------
# Type coercion
# -------------------------------

_TRUE = {"true", "t", "yes", "y", "1", "x"}
_FALSE = {"false", "f", "no", "n", "0"}

def _to_integer(v):
    x = parse_number(v)
    if x is None or not float(x).is_integer():
        return None
    return int(x)

def _to_boolean(v):
    if isinstance(v, bool):
        return v
    key = as_text(v).lower()
    if key in _TRUE:
        return True
    if key in _FALSE:
        return False
    return None

_NUMERIC_DATE = re.compile(r"^(\d{1,2})([/.-])(\d{1,2})\2(\d{4}|\d{2})$")

def _numeric_date(m: re.Match, dayfirst: Optional[bool]):
    """dd/mm/yyyy or mm/dd/yyyy. Without a declared order only unambiguous dates parse."""
    a, b, year = int(m.group(1)), int(m.group(3)), int(m.group(4))
    if len(m.group(4)) == 2:
        year += 2000
    if dayfirst is None:
        if a > 12:
            dayfirst = True
        elif b > 12 or a == b:
            dayfirst = False
        else:
            return None
    day, month = (a, b) if dayfirst else (b, a)
    try:
        return pd.Timestamp(year=year, month=month, day=day)
    except ValueError:
        return None

def _to_date(v, dayfirst: Optional[bool] = None):
    if isinstance(v, (dt.datetime, dt.date, pd.Timestamp)):
        ts = pd.Timestamp(v)
    elif isinstance(v, str):
        m = _NUMERIC_DATE.match(v.strip())
        ts = _numeric_date(m, dayfirst) if m else pd.to_datetime(v.strip(), errors="coerce")
        if ts is None:
            return None
    else:
        return None
    if pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_localize(None)
    return ts.normalize()

_COERCERS = {
    "STRING": as_text,
    "INTEGER": _to_integer,
    "FLOAT": parse_number,
    "NUMERIC": parse_number,
    "BOOLEAN": _to_boolean,
    "DATE": _to_date,
    "TIME": time_to_24h,
}

def typed_null_column(spec: FieldSpec, n: int) -> pd.Series:
    return pd.Series([None] * n, dtype=spec.dtype)

def coerce_column(
    values: pd.Series, spec: FieldSpec, converter=None, *, dayfirst: Optional[bool] = None,
) -> tuple[pd.Series, pd.Series]:
    """
    Coerce one column to its declared type.

    dayfirst only affects DATE columns: True reads 03/04/2024 as 3 April,
    False as 4 March, None leaves such dates uncoerced (reported).

    Returns:
        (coerced series with a RangeIndex, boolean mask of cells that had a
        value but could not be coerced)
    """
    coerce = _COERCERS[spec.type]
    if spec.type == "DATE":
        coerce = partial(_to_date, dayfirst=dayfirst)
    raw = list(values)
    out, failed = [], []
    for v in raw:
        if is_missing(v):
            out.append(None)
            failed.append(False)
            continue
        x = converter(v) if converter is not None else v
        y = None if is_missing(x) else coerce(x)
        out.append(y)
        failed.append(y is None)
    series = pd.Series(out, dtype=spec.dtype)
    return series, pd.Series(failed, dtype=bool)

# -------------------------------
# Normalization
# -------------------------------

def _select_sources(rows: pd.DataFrame, mapping: ColumnMapping, schema: TableSchema) -> dict[str, str]:
    """target field -> raw column feeding it."""
    sources = mapping.source_columns()
    bad_targets = sorted({t for t in sources.values() if t not in schema})
    if bad_targets:
        raise ValueError(f"Mapping targets not in schema {schema.name!r}: {bad_targets}")
    chosen: dict[str, str] = {}
    for src, tgt in sources.items():
        if src not in rows.columns:
            continue
        if tgt in chosen:
            raise ValueError(
                f"Columns {chosen[tgt]!r} and {src!r} both map to {tgt!r}; drop one before normalizing"
            )
        chosen[tgt] = src
    # unmapped columns already carrying a target name pass through
    for name in schema.field_names:
        if name not in chosen and name in rows.columns and name not in sources:
            chosen[name] = name
    return chosen

def _row_keys(rows: pd.DataFrame, normalized: pd.DataFrame, schema: TableSchema, row_key: Optional[str]) -> list:
    if row_key is not None:
        if row_key in rows.columns:
            col = list(rows[row_key])
        elif row_key in normalized.columns:
            col = list(normalized[row_key])
        else:
            raise KeyError(f"row_key column {row_key!r} not found")
    elif schema.key is not None:
        col = list(normalized[schema.key])
    else:
        col = [None] * len(rows)
    return [pos if is_missing(k) else str(k) for pos, k in enumerate(col)]

def _as_mapping(mapping: Optional[Union[ColumnMapping, dict]]) -> ColumnMapping:
    if mapping is None:
        return ColumnMapping()
    if isinstance(mapping, dict):
        return ColumnMapping.from_dict(mapping)
    return mapping

def rename_to_schema(
    rows: pd.DataFrame,
    mapping: Optional[Union[ColumnMapping, dict]],
    target_schema: Union[TableSchema, str, Path],
) -> pd.DataFrame:
    """
    Rename mapped columns to their target names and drop (and log) every
    column that feeds no schema field. Values are left untouched, so manual
    overrides can be applied before normalize_schema coerces them.
    """
    schema = load_schema(target_schema)
    mapping = _as_mapping(mapping)
    raw = normalize_columns(rows) if mapping.normalize_headers else rows
    sources = _select_sources(raw, mapping, schema)
    dropped = [c for c in raw.columns if c not in sources.values()]
    if dropped:
        logger.info("%s: dropping %d unmapped column(s): %s", schema.name, len(dropped), dropped)
    ordered = [f for f in schema.field_names if f in sources]
    out = raw[[sources[f] for f in ordered]].copy()
    out.columns = ordered
    return out.reset_index(drop=True)

def normalize_schema(
    rows: pd.DataFrame,
    mapping: Optional[Union[ColumnMapping, dict]],
    target_schema: Union[TableSchema, str, Path],
    *,
    row_key: Optional[str] = None,
    deferred: Iterable[str] = (),
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Normalize `rows` to `target_schema`.

    Args:
        rows: Raw table (one spreadsheet sheet)
        mapping: ColumnMapping, its dict form, or None for identity
        target_schema: TableSchema or bundled schema name / YAML path
        row_key: Column identifying rows in the report (defaults to the schema
            key, then to row position)
        deferred: Fields filled in by a later step (e.g. derived identifiers);
            their absence is not reported

    Returns:
        (normalized table, issue report). The table has exactly the schema's
        columns in schema order and a fresh RangeIndex.
    """
    schema = load_schema(target_schema)
    mapping = _as_mapping(mapping)
    deferred = set(deferred)

    raw = normalize_columns(rows) if mapping.normalize_headers else rows
    raw = raw.reset_index(drop=True)
    n = len(raw)
    sources = _select_sources(raw, mapping, schema)

    dropped = [c for c in raw.columns if c not in sources.values()]
    if dropped:
        logger.info("%s: dropping %d unmapped column(s): %s", schema.name, len(dropped), dropped)

    converters = {}
    for tgt, conv in mapping.converters.items():
        if tgt not in schema:
            raise ValueError(f"Converter target {tgt!r} not in schema {schema.name!r}")
        converters[tgt] = get_converter(conv)

    columns: dict[str, pd.Series] = {}
    failures: dict[str, pd.Series] = {}
    absent: list[str] = []
    for spec in schema.fields:
        if spec.name in sources:
            columns[spec.name], failures[spec.name] = coerce_column(
                raw[sources[spec.name]], spec, converters.get(spec.name), dayfirst=mapping.dayfirst
            )
        else:
            columns[spec.name] = typed_null_column(spec, n)
            failures[spec.name] = pd.Series([False] * n, dtype=bool)
            if spec.required and spec.name not in deferred:
                absent.append(spec.name)
    out = pd.DataFrame(columns, columns=schema.field_names)
    out.index = pd.RangeIndex(n)

    keys = _row_keys(raw, out, schema, row_key)
    order = {name: i for i, name in enumerate(schema.field_names)}
    issues: list[dict] = []

    for name in absent:
        issues.append({"_pos": -1, "row_key": None, "field": name, "issue": MISSING_COLUMN, "value": None})

    for name, mask in failures.items():
        if not mask.any():
            continue
        spec = schema.get(name)
        src = raw[sources[name]]
        for pos in mask[mask].index:
            issues.append({
                "_pos": pos, "row_key": keys[pos], "field": name,
                "issue": f"could not coerce to {spec.type}", "value": str(src.iloc[pos]),
            })

    try:
        to_pandera(schema).validate(out, lazy=True)
    except SchemaErrors as exc:
        cases = exc.failure_cases
        for rec in cases.to_dict("records"):
            name, check, pos = rec.get("column"), str(rec.get("check")), rec.get("index")
            if name not in order or is_missing(pos):
                continue
            pos = int(pos)
            if check == "not_nullable":
                if name in absent or name in deferred or failures[name].iloc[pos]:
                    continue
                issue, value = MISSING_VALUE, None
            elif check.startswith("isin"):
                issue, value = NOT_ALLOWED, str(rec.get("failure_case"))
                out.loc[pos, name] = pd.NA
            else:
                issue, value = f"failed check {check}", str(rec.get("failure_case"))
            issues.append({"_pos": pos, "row_key": keys[pos], "field": name, "issue": issue, "value": value})

    if not issues:
        return out, empty_issue_report()
    report = pd.DataFrame(issues)
    report["_field"] = report["field"].map(order)
    report = (
        report.sort_values(["_pos", "_field", "issue"], kind="mergesort")
        .drop_duplicates(subset=["_pos", "field", "issue"])
        .drop(columns=["_pos", "_field"])
        .reset_index(drop=True)
    )
    logger.warning("%s: %d issue(s) in %d row(s)", schema.name, len(report), report["row_key"].nunique(dropna=True))
    return out, report[ISSUE_COLUMNS].astype("object")

def summarize_issues(issues: pd.DataFrame) -> pd.DataFrame:
    """Issue counts per (field, issue)."""
    if issues.empty:
        return pd.DataFrame({"field": [], "issue": [], "n": []})
    return (
        issues.groupby(["field", "issue"], sort=True)
        .size()
        .reset_index(name="n")
    )

def raise_for_issues(issues: pd.DataFrame, what: str = "table") -> None:
    """Raise SchemaViolationError if the report has any entry."""
    if len(issues) > 0:
        summary = summarize_issues(issues)
        lines = "; ".join(f"{r.field}: {r.issue} ({r.n})" for r in summary.itertuples())
        raise SchemaViolationError(issues, message=f"{what} has {len(issues)} schema issue(s): {lines}")
