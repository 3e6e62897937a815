from __future__ import annotations
import logging
from typing import Iterable, Literal, Optional, Union

import pandas as pd

from .cleaning import is_missing
from .config import ACCEPTED_STATUS, STATUS_COL
from .errors import AmbiguousJoinError

logger = logging.getLogger(__name__)

LinkPolicy = Literal["inner", "left-preserve-unmatched"]
POLICIES = ("inner", "left-preserve-unmatched")

UNMATCHED_COLUMNS = ["key", "source_table", "row_position"]

# -------------------------------
# Helpers
# -------------------------------

def _as_keys(key: Union[str, Iterable[str]]) -> list[str]:
    keys = [key] if isinstance(key, str) else list(key)
    if not keys:
        raise ValueError("At least one join key is required")
    return keys

def _assert_columns(df: pd.DataFrame, keys: list[str], name: str) -> None:
    missing = [c for c in keys if c not in df.columns]
    if missing:
        raise KeyError(f"Key columns not found in {name}: {missing}. Available: {list(df.columns)[:20]}...")

def _key_value(row: tuple, n: int):
    return row[0] if n == 1 else tuple(row)

def _null_key_mask(df: pd.DataFrame, keys: list[str]) -> pd.Series:
    return df[keys].apply(lambda col: col.map(is_missing)).any(axis=1)

def empty_unmatched_report() -> pd.DataFrame:
    return pd.DataFrame({c: pd.Series(dtype="object") for c in UNMATCHED_COLUMNS})

# -------------------------------
# Lookup de-duplication
# -------------------------------

def dedupe_lookup(
    right: pd.DataFrame,
    key: Union[str, Iterable[str]],
    *,
    status_col: str = STATUS_COL,
    accepted: str = ACCEPTED_STATUS,
    name: str = "right",
) -> pd.DataFrame:
    """
    Reduce a lookup table to one row per key.

    Keys that appear once are kept. A duplicated key resolves to its single
    row whose `status_col` equals `accepted` (case-insensitive); if none or
    several rows are accepted the key is ambiguous. Rows with a null key are
    dropped, they can never match.

    Raises:
        AmbiguousJoinError: listing every key left ambiguous
    """
    keys = _as_keys(key)
    _assert_columns(right, keys, name)
    right = right[~_null_key_mask(right, keys)]
    dup = right.duplicated(keys, keep=False)
    if not dup.any():
        return right
    if status_col not in right.columns:
        bad = right.loc[dup, keys].drop_duplicates()
        raise AmbiguousJoinError([_key_value(r, len(keys)) for r in bad.itertuples(index=False)], source_table=name)
    acc = right[status_col].map(lambda v: not is_missing(v) and str(v).strip().lower() == accepted.lower())
    counts = right.loc[dup, keys].assign(_acc=acc[dup]).groupby(keys, sort=True)["_acc"].sum()
    bad = counts[counts != 1]
    if len(bad) > 0:
        raise AmbiguousJoinError(bad.index.tolist(), source_table=name)
    logger.info("%s: resolved %d duplicated key(s) to their accepted row", name, len(counts))
    return right[~dup | acc]

# -------------------------------
# Link
# -------------------------------

def link(
    left: pd.DataFrame,
    right: pd.DataFrame,
    key: Union[str, Iterable[str]],
    policy: LinkPolicy = "left-preserve-unmatched",
    *,
    right_name: str = "right",
    status_col: str = STATUS_COL,
    accepted: str = ACCEPTED_STATUS,
    suffixes: tuple[str, str] = ("", "_right"),
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Many-to-one join of `left` onto `right` by identifier equality.

    Args:
        left: Child rows (e.g. stations, observations)
        right: Parent/lookup rows (e.g. sites, taxa)
        key: Join column or list of columns (composite key)
        policy: "inner" drops unmatched left rows, "left-preserve-unmatched"
            keeps them with null right-hand fields. Either way they are reported.
        right_name: Table name written to the unmatched report
        status_col, accepted: tie-break for duplicated lookup keys

    Returns:
        (merged table in left row order with a fresh RangeIndex,
         unmatched report with columns key, source_table, row_position)

    Raises:
        ValueError: unknown policy
        KeyError: key column missing on either side
        AmbiguousJoinError: a key matches more than one right-hand row
    """
    if policy not in POLICIES:
        raise ValueError(f"Unsupported policy={policy!r}; expected one of {POLICIES}")
    keys = _as_keys(key)
    _assert_columns(left, keys, "left")
    _assert_columns(right, keys, right_name)

    lookup = dedupe_lookup(right, keys, status_col=status_col, accepted=accepted, name=right_name)

    base = left.reset_index(drop=True)
    merged = base.assign(_pos=range(len(base))).merge(
        lookup,
        how="left",
        on=keys,
        suffixes=suffixes,
        indicator="_merge",
        validate="many_to_one",
    )
    # lookup rows with null keys were dropped, so null left keys never match
    unmatched_mask = merged["_merge"] == "left_only"

    unmatched_rows = merged.loc[unmatched_mask, keys + ["_pos"]]
    if len(unmatched_rows) > 0:
        unmatched = pd.DataFrame({
            "key": [_key_value(r[:-1], len(keys)) for r in unmatched_rows.itertuples(index=False)],
            "source_table": right_name,
            "row_position": unmatched_rows["_pos"].astype(int).tolist(),
        })[UNMATCHED_COLUMNS].astype("object")
        logger.warning("%d row(s) have no match in %s", len(unmatched), right_name)
    else:
        unmatched = empty_unmatched_report()

    if policy == "inner":
        merged = merged.loc[~unmatched_mask]
    merged = merged.sort_values("_pos", kind="mergesort").drop(columns=["_pos", "_merge"]).reset_index(drop=True)
    return merged, unmatched.reset_index(drop=True)

def check_referential_integrity(
    child: pd.DataFrame,
    parent: pd.DataFrame,
    key: Union[str, Iterable[str]],
    *,
    parent_name: str = "parent",
) -> pd.DataFrame:
    """
    Unmatched report for child rows whose key has no parent row
    (stations -> sites, observations -> stations). Empty when consistent.
    """
    keys = _as_keys(key)
    _assert_columns(parent, keys, parent_name)
    parents = parent[keys].drop_duplicates()
    _, unmatched = link(child[keys], parents, keys, "left-preserve-unmatched", right_name=parent_name)
    return unmatched

def coverage_report(tables: dict[str, pd.DataFrame], key: str, index_name: Optional[str] = None) -> pd.DataFrame:
    """
    Quick availability table: rows=union of keys, cols=table names, values=has row (True/False).
    """
    all_idx = pd.Index([], dtype="object")
    for name, t in tables.items():
        _assert_columns(t, [key], name)
        all_idx = all_idx.union(pd.Index(t[key].dropna().astype(str).unique()))
    rep = {}
    for name, t in tables.items():
        rep[name] = all_idx.isin(t[key].dropna().astype(str))
    out = pd.DataFrame(rep, index=all_idx).sort_index()
    out.index.name = index_name or key
    return out
