from __future__ import annotations
from typing import Optional, Union

import numpy as np
import pandas as pd

from .cleaning import ensure_nonnegative
from .config import STATION_KEY
from .normalize import ISSUE_COLUMNS

def length_weight(length, a, b, ltl_ratio=1.0):
    """
    Fish weight in grams from length (cm): W = a * (L * ltl_ratio) ** b.
    Works on scalars or arrays; NaN parameters give NaN.
    """
    L = np.asarray(length, dtype=float) * np.asarray(ltl_ratio, dtype=float)
    if np.any(L < 0):
        raise ValueError("length_weight requires nonnegative lengths.")
    W = np.asarray(a, dtype=float) * np.power(L, np.asarray(b, dtype=float))
    return W if W.ndim else float(W)

def add_biomass(
    obs: pd.DataFrame,
    *,
    length_col: str = "length_cm",
    count_col: str = "count",
    a_col: str = "a",
    b_col: str = "b",
    ltl_col: str = "ltl_ratio",
) -> pd.DataFrame:
    """
    Derive abundance and biomass_g for observations already linked to the taxon lookup.
    Rows without length-weight parameters get a null biomass; a missing ltl_ratio means
    the recorded length is total length (ratio 1).
    """
    for col in (length_col, count_col, a_col, b_col):
        if col not in obs.columns:
            raise KeyError(f"add_biomass needs column {col!r}")
    out = obs.copy()
    count = pd.to_numeric(out[count_col], errors="coerce").astype(float).to_numpy()
    length = pd.to_numeric(out[length_col], errors="coerce").astype(float).to_numpy()
    if np.any(count < 0) or np.any(length < 0):
        raise ValueError("Negative counts or lengths in observations.")
    ltl = (
        pd.to_numeric(out[ltl_col], errors="coerce").astype(float).fillna(1.0).to_numpy()
        if ltl_col in out.columns else np.ones(len(out))
    )
    a = pd.to_numeric(out[a_col], errors="coerce").astype(float).to_numpy()
    b = pd.to_numeric(out[b_col], errors="coerce").astype(float).to_numpy()
    weight = length_weight(length, a, b, ltl)
    out["abundance"] = pd.array(count, dtype="Float64")
    out["biomass_g"] = pd.array(count * weight, dtype="Float64")
    return ensure_nonnegative(out, cols=["abundance", "biomass_g"])

def flag_oversized(
    obs: pd.DataFrame,
    *,
    length_col: str = "length_cm",
    lmax_col: str = "lmax_cm",
    row_key: str = "observation_id",
) -> pd.DataFrame:
    """Issue-report rows for lengths above the taxon's maximum length."""
    length = pd.to_numeric(obs[length_col], errors="coerce")
    lmax = pd.to_numeric(obs[lmax_col], errors="coerce")
    over = (length > lmax).fillna(False).to_numpy()
    keys = obs[row_key] if row_key in obs.columns else pd.Series(range(len(obs)), index=obs.index)
    rep = pd.DataFrame({
        "row_key": keys[over].astype(str).tolist(),
        "field": length_col,
        "issue": "length exceeds lmax",
        "value": length[over].astype(str).tolist(),
    }, columns=ISSUE_COLUMNS)
    return rep.astype("object").reset_index(drop=True)

def summarize_transects(
    obs: pd.DataFrame,
    transect_area_m2: Union[float, dict, pd.Series],
    *,
    transects: Optional[pd.DataFrame] = None,
    transect_col: str = "transect_id",
    station_col: str = STATION_KEY,
    taxon_col: str = "taxon_code",
) -> pd.DataFrame:
    """
    Per-transect totals and densities (ind_m2, gr_m2).

    `transects` (transect_id + station column) lists every surveyed transect
    so that transects where nothing was seen count as zeros.
    """
    g = obs.groupby([station_col, transect_col], sort=True)
    out = pd.DataFrame({
        "n_taxa": g[taxon_col].nunique(),
        "abundance": g["abundance"].sum(),
        "biomass_g": g["biomass_g"].sum(min_count=1),
    }).reset_index()
    if transects is not None:
        full = transects[[station_col, transect_col]].drop_duplicates()
        out = full.merge(out, on=[station_col, transect_col], how="left", validate="one_to_one")
        out[["n_taxa", "abundance"]] = out[["n_taxa", "abundance"]].fillna(0)
        # empty transect: zero biomass, not unknown
        empty = out["biomass_g"].isna() & (out["abundance"] == 0)
        out.loc[empty, "biomass_g"] = 0.0
        out = out.sort_values([station_col, transect_col], kind="mergesort").reset_index(drop=True)
    if isinstance(transect_area_m2, (int, float)):
        area = pd.Series(float(transect_area_m2), index=out.index)
    else:
        area = out[transect_col].map(pd.Series(transect_area_m2)).astype(float)
        if area.isna().any():
            missing = out.loc[area.isna(), transect_col].tolist()
            raise KeyError(f"No transect area for: {missing[:10]}")
    if (area <= 0).any():
        raise ValueError("Transect areas must be positive.")
    out["area_m2"] = area.to_numpy()
    out["n_taxa"] = out["n_taxa"].astype("Int64")
    out["abundance"] = out["abundance"].astype("Float64")
    out["biomass_g"] = out["biomass_g"].astype("Float64")
    out["ind_m2"] = out["abundance"] / out["area_m2"]
    out["gr_m2"] = out["biomass_g"] / out["area_m2"]
    return out

def summarize_stations(
    transect_summary: pd.DataFrame,
    obs: pd.DataFrame,
    *,
    station_col: str = STATION_KEY,
    taxon_col: str = "taxon_code",
) -> pd.DataFrame:
    """
    Per-station effort and means across transects; species richness is the
    number of distinct taxa over all of a station's transects.
    """
    g = transect_summary.groupby(station_col, sort=True)
    out = pd.DataFrame({
        "n_transects": g.size(),
        "survey_area_m2": g["area_m2"].sum(),
        "ind_m2": g["ind_m2"].mean(),
        "gr_m2": g["gr_m2"].mean(),
    })
    richness = obs.groupby(station_col)[taxon_col].nunique()
    out["species_richness"] = richness.reindex(out.index).fillna(0)
    out = out.reset_index()
    return out.astype({
        "n_transects": "Int64",
        "survey_area_m2": "Float64",
        "ind_m2": "Float64",
        "gr_m2": "Float64",
        "species_richness": "Int64",
    })

def lpi_cover(
    points: pd.DataFrame,
    *,
    station_col: str = STATION_KEY,
    category_col: str = "category",
) -> pd.DataFrame:
    """
    Percent cover per station and benthic category from line-point-intercept points.
    Covers of a station sum to 100; points without a category are left out.
    """
    pts = points[points[category_col].notna()]
    counts = pts.groupby([station_col, category_col], sort=True).size().rename("n_points").reset_index()
    totals = counts.groupby(station_col)["n_points"].transform("sum")
    counts["pct_cover"] = 100.0 * counts["n_points"] / totals
    return counts
