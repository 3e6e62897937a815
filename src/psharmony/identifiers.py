"""
Deterministic composite identifiers.

    ps_site_id     {expedition_id}_{method}_{NNN}
    ps_station_id  {ps_site_id}_{suffix}
    transect_id    {ps_station_id}_{diver}_{transect}
    observation_id {expedition_id}_{method}_obs_{NNNN}

Every function here is pure: it returns a copy of the input table with the
identifier column appended, and the output depends only on the rows and
their order. Missing key fields raise instead of being defaulted.
"""

from __future__ import annotations
import logging
import math
import re
from typing import Optional, Sequence, Union

import pandas as pd

from .cleaning import as_text, harmonize_ids, is_missing, parse_number
from .config import KEYS, OBS_ID_MIN_WIDTH, SITE_KEY, STATION_KEY
from .errors import DuplicateKeyError, MissingKeyFieldError
from .methods import get_method

logger = logging.getLogger(__name__)

# -------------------------------
# Formatting helpers
# -------------------------------

def site_id_width(method: str, n_rows: int) -> int:
    """Zero-pad width: the method's minimum, widened when the group outgrows it."""
    return max(get_method(method).site_id_width, len(str(max(int(n_rows), 1))))

def format_site_id(expedition_id: str, method: str, n: int, width: int) -> str:
    if n < 1:
        raise ValueError(f"Site sequence numbers start at 1, got {n}")
    return f"{expedition_id}_{method}_{n:0{width}d}"

def format_observation_id(expedition_id: str, method: str, n: int, width: int = OBS_ID_MIN_WIDTH) -> str:
    return f"{expedition_id}_{method}_obs_{n:0{width}d}"

_SITE_NUMBER = re.compile(r"_(\d+)$")

def parse_site_number(ps_site_id: str) -> int:
    """Trailing sequence number of a site id ("COL_2024_uvs_007" -> 7)."""
    m = _SITE_NUMBER.search(str(ps_site_id))
    if m is None:
        raise ValueError(f"Not a site id: {ps_site_id!r}")
    return int(m.group(1))

def _slug(value) -> str:
    """Lowercase, non-alphanumerics collapsed to single underscores."""
    return re.sub(r"[^0-9a-z]+", "_", str(value).strip().lower()).strip("_")

def _check_unique(ids: pd.Series, what: str) -> None:
    dups = ids[ids.duplicated(keep=False)]
    if len(dups) > 0:
        raise DuplicateKeyError(
            dups.unique().tolist(),
            message=f"Duplicate {what} values (first 10): {dups.unique().tolist()[:10]}",
        )

def _ordered(rows: pd.DataFrame, order_by: Optional[Union[str, Sequence[str]]]) -> pd.DataFrame:
    if order_by is None:
        return rows.copy()
    cols = [order_by] if isinstance(order_by, str) else list(order_by)
    missing = [c for c in cols if c not in rows.columns]
    if missing:
        raise KeyError(f"order_by columns not found: {missing}")
    # stable sort keeps spreadsheet order for ties
    return rows.sort_values(cols, kind="mergesort", na_position="last").copy()

# -------------------------------
# Sites
# -------------------------------

def derive_site_ids(
    rows: pd.DataFrame,
    expedition_id: str,
    method: str,
    *,
    order_by: Optional[Union[str, Sequence[str]]] = None,
) -> pd.DataFrame:
    """
    Number the sites of one (expedition_id, method) group in row order.

    Args:
        rows: One row per deployment/dive/survey, in numbering order
        expedition_id: Expedition code, e.g. "COL_2024"
        method: Survey method code, e.g. "uvs"
        order_by: Optional column(s) to stable-sort on first (e.g. ["date", "time"])

    Returns:
        Copy of rows with expedition_id, method and ps_site_id columns

    Raises:
        MissingKeyFieldError: expedition_id/method missing for the group or a row
        ValueError: rows belong to a different expedition or method
        DuplicateKeyError: a supplied ps_site_id collides with another row's id
    """
    if is_missing(expedition_id):
        raise MissingKeyFieldError("expedition_id")
    if is_missing(method):
        raise MissingKeyFieldError("method")
    expedition_id = str(expedition_id).strip()
    method = get_method(method).code

    out = _ordered(rows, order_by)
    for col, expected in (("expedition_id", expedition_id), ("method", method)):
        if col not in out.columns:
            continue
        values = out[col]
        nulls = values.map(is_missing)
        if nulls.any():
            raise MissingKeyFieldError(col, row_key=int(nulls.to_numpy().nonzero()[0][0]))
        seen = set(values.astype(str).str.strip().str.lower() if col == "method" else values.astype(str).str.strip())
        if seen != {expected}:
            raise ValueError(f"Rows for {expedition_id}/{method} carry other {col} values: {sorted(seen - {expected})}")

    width = site_id_width(method, len(out))
    generated = [format_site_id(expedition_id, method, n, width) for n in range(1, len(out) + 1)]

    if SITE_KEY in out.columns:
        supplied = out[SITE_KEY].tolist()
        gen_set = set(generated)
        collisions = []
        for own, sup in zip(generated, supplied):
            if is_missing(sup):
                continue
            sup = str(sup).strip()
            if sup != own and sup in gen_set:
                collisions.append(sup)
        given = [str(s).strip() for s in supplied if not is_missing(s)]
        collisions += sorted({s for s in given if given.count(s) > 1})
        if collisions:
            raise DuplicateKeyError(
                collisions,
                message=f"Supplied ps_site_id values collide with generated ids: {collisions[:10]}",
            )
        final = [own if is_missing(sup) else str(sup).strip() for own, sup in zip(generated, supplied)]
    else:
        final = generated

    out["expedition_id"] = pd.Series(expedition_id, index=out.index, dtype="string")
    out["method"] = pd.Series(method, index=out.index, dtype="string")
    out[SITE_KEY] = pd.array(final, dtype="string")
    _check_unique(out[SITE_KEY], SITE_KEY)
    logger.debug("Numbered %d %s site(s) for %s", len(out), method, expedition_id)
    return out

def derive_site_ids_by_group(
    rows: pd.DataFrame,
    *,
    order_by: Optional[Union[str, Sequence[str]]] = None,
) -> pd.DataFrame:
    """
    Apply derive_site_ids to every (expedition_id, method) group independently.

    Group order follows first appearance; adding a new expedition never
    renumbers the sites of another.
    """
    missing = [c for c in KEYS if c not in rows.columns]
    if missing:
        raise MissingKeyFieldError(missing[0])
    for col in KEYS:
        nulls = rows[col].map(is_missing)
        if nulls.any():
            raise MissingKeyFieldError(col, row_key=int(nulls.to_numpy().nonzero()[0][0]))
    frames = []
    # "COL_2024" and "col_2024 " are one expedition
    keyed = harmonize_ids(rows).assign(_method_key=rows["method"].astype(str).str.strip().str.lower())
    for (exp, meth), group in keyed.groupby(["expedition_id", "_method_key"], sort=False):
        frames.append(derive_site_ids(group.drop(columns="_method_key"), exp, meth, order_by=order_by))
    if not frames:
        return rows.assign(**{SITE_KEY: pd.Series(dtype="string")})
    result = pd.concat(frames)
    _check_unique(result[SITE_KEY], SITE_KEY)
    return result

# -------------------------------
# Stations
# -------------------------------

def _first_present(row, fields: Sequence[str]):
    """(field, value) for the first of `fields` the row fills in; value is None if none do."""
    present = [f for f in fields if f in row]
    for f in present:
        if not is_missing(row.get(f)):
            return f, row.get(f)
    return (present or list(fields))[0], None

def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))

def station_suffix(row: Union[pd.Series, dict], method: str) -> str:
    """
    Station suffix computed only from the row's own fields.

    depth methods: rounded depth in metres + "m" (18.2 -> "18m")
    rig methods: slugged rig label ("Rig 3" -> "rig_3")
    constant methods: the method's constant suffix ("01")
    """
    rule = get_method(method)
    row_key = row.get(SITE_KEY) if hasattr(row, "get") else None
    if rule.suffix_kind == "constant":
        return rule.constant_suffix
    if rule.suffix_kind == "depth":
        field, raw = _first_present(row, rule.depth_fields)
        if is_missing(raw):
            raise MissingKeyFieldError(field, row_key=row_key)
        depth = parse_number(raw)
        if depth is None:
            raise MissingKeyFieldError(
                field, row_key=row_key,
                message=f"Depth {raw!r} for row {row_key!r} is not a number; station id cannot be derived.",
            )
        if depth < 0:
            raise ValueError(f"Negative depth {depth} for row {row_key!r}")
        return f"{_round_half_up(depth)}m"
    field, raw = _first_present(row, rule.rig_fields)
    if is_missing(raw) or _slug(as_text(raw)) == "":
        raise MissingKeyFieldError(field, row_key=row_key)
    return _slug(as_text(raw))

def derive_station_ids(rows: pd.DataFrame, method: str) -> pd.DataFrame:
    """
    Append ps_station_id = "{ps_site_id}_{suffix}".

    Raises:
        MissingKeyFieldError: no ps_site_id, or a row lacks its suffix field
        DuplicateKeyError: two rows resolve to the same station
    """
    if SITE_KEY not in rows.columns:
        raise MissingKeyFieldError(SITE_KEY)
    out = rows.copy()
    ids = []
    for pos, (_, row) in enumerate(out.iterrows()):
        site = row[SITE_KEY]
        if is_missing(site):
            raise MissingKeyFieldError(SITE_KEY, row_key=pos)
        ids.append(f"{site}_{station_suffix(row, method)}")
    out[STATION_KEY] = pd.array(ids, dtype="string")
    _check_unique(out[STATION_KEY], STATION_KEY)
    return out

# -------------------------------
# Transects / observations
# -------------------------------

def derive_transect_ids(
    rows: pd.DataFrame,
    *,
    diver_col: str = "diver",
    transect_col: str = "transect",
) -> pd.DataFrame:
    """Append transect_id = "{ps_station_id}_{diver}_{transect}" (not required to be unique per row)."""
    for col in (STATION_KEY, diver_col, transect_col):
        if col not in rows.columns:
            raise MissingKeyFieldError(col)
    out = rows.copy()
    ids = []
    for pos, (_, row) in enumerate(out.iterrows()):
        station = row[STATION_KEY]
        key = station if not is_missing(station) else pos
        for col in (STATION_KEY, diver_col, transect_col):
            if is_missing(row[col]):
                raise MissingKeyFieldError(col, row_key=key)
        diver = re.sub(r"\s+", "_", str(row[diver_col]).strip())
        label = str(row[transect_col]).strip()
        ids.append(f"{station}_{diver}_{label}")
    out["transect_id"] = pd.array(ids, dtype="string")
    return out

def derive_observation_ids(rows: pd.DataFrame, expedition_id: str, method: str) -> pd.DataFrame:
    """Append observation_id sequenced in row order within one expedition+method."""
    if is_missing(expedition_id):
        raise MissingKeyFieldError("expedition_id")
    if is_missing(method):
        raise MissingKeyFieldError("method")
    expedition_id = str(expedition_id).strip()
    method = str(method).strip().lower()
    out = rows.copy()
    width = max(OBS_ID_MIN_WIDTH, len(str(max(len(out), 1))))
    out["observation_id"] = pd.array(
        [format_observation_id(expedition_id, method, n, width) for n in range(1, len(out) + 1)],
        dtype="string",
    )
    return out

