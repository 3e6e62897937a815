from __future__ import annotations
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Union

import pandas as pd

from .cleaning import harmonize_ids
from .config import SITE_KEY, STATION_KEY
from .identifiers import derive_observation_ids, derive_site_ids, derive_station_ids, derive_transect_ids
from .linking import check_referential_integrity, empty_unmatched_report, link
from .normalize import (
    ColumnMapping, ISSUE_COLUMNS, _as_mapping, empty_issue_report, normalize_schema,
    raise_for_issues, rename_to_schema,
)
from .overrides import OverrideTable, apply_overrides
from .schema import TableSchema, available_schemas, load_schema
from .storage import TableStore, append_once
from .transform import add_biomass, flag_oversized, summarize_stations, summarize_transects

logger = logging.getLogger(__name__)

SchemaLike = Union[TableSchema, str, Path]


def _tagged(issues: pd.DataFrame, table: str) -> pd.DataFrame:
    out = issues.copy()
    out.insert(0, "table", table)
    return out

def _unmatched_as_issues(unmatched: pd.DataFrame, table: str, field_name: str) -> pd.DataFrame:
    if unmatched.empty:
        return _tagged(empty_issue_report(), table)
    rep = pd.DataFrame({
        "row_key": unmatched["row_position"].tolist(),
        "field": field_name,
        "issue": [f"no match in {s}" for s in unmatched["source_table"]],
        "value": [str(k) for k in unmatched["key"]],
    }, columns=ISSUE_COLUMNS).astype("object")
    return _tagged(rep, table)

def _concat(frames: Sequence[pd.DataFrame], columns: list[str]) -> pd.DataFrame:
    frames = [f for f in frames if len(f) > 0]
    if not frames:
        return pd.DataFrame({c: pd.Series(dtype="object") for c in columns})
    return pd.concat(frames, ignore_index=True)[columns]


@dataclass
class HarmonizationResult:
    """Everything produced for one (expedition, method): tables plus the reports to review before upload."""

    expedition_id: str
    method: str
    sites: pd.DataFrame
    stations: Optional[pd.DataFrame] = None
    issues: pd.DataFrame = field(default_factory=lambda: _tagged(empty_issue_report(), ""))
    overrides_applied: Optional[pd.DataFrame] = None
    unmatched: pd.DataFrame = field(default_factory=empty_unmatched_report)

    @property
    def ok(self) -> bool:
        return self.issues.empty and self.unmatched.empty


def harmonize_expedition(
    sites_raw: pd.DataFrame,
    *,
    expedition_id: str,
    method: str,
    site_mapping: Optional[Union[ColumnMapping, dict]] = None,
    site_schema: Optional[SchemaLike] = None,
    stations_raw: Optional[pd.DataFrame] = None,
    station_mapping: Optional[Union[ColumnMapping, dict]] = None,
    station_schema: Optional[SchemaLike] = None,
    overrides: Optional[OverrideTable] = None,
    order_by: Optional[Sequence[str]] = ("date", "time"),
    site_col: str = "site_name",
) -> HarmonizationResult:
    """
    Run one expedition+method end to end: rename -> overrides -> normalize ->
    site ids -> (stations: attach site ids -> normalize -> station ids ->
    referential check).

    Args:
        sites_raw: One row per deployment/dive/survey
        expedition_id, method: The numbering group
        site_mapping / station_mapping: Column mappings for each sheet
        site_schema / station_schema: Defaults to "{method}_sites" / "{method}_stations"
            when bundled; pass a schema for other layouts
        stations_raw: Station rows carrying `site_col` to find their site. When
            omitted and a station schema applies, each site row becomes one station.
        overrides: Versioned manual corrections, applied before coercion
        order_by: Site numbering order (stable sort; rows keep sheet order on ties)

    Returns:
        HarmonizationResult. Identifier errors propagate; data problems are reported.
    """
    expedition_id = str(expedition_id).strip().upper()
    method = str(method).strip().lower()
    site_schema = load_schema(site_schema or f"{method}_sites")
    if station_schema is None and f"{method}_stations" in available_schemas():
        station_schema = f"{method}_stations"
    site_mapping = _as_mapping(site_mapping)

    # ---- Sites ----
    sites = rename_to_schema(sites_raw, site_mapping, site_schema)
    sites["expedition_id"] = expedition_id
    sites["method"] = method
    sites = harmonize_ids(sites, "expedition_id")
    applied = None
    if overrides is not None and len(overrides) > 0:
        if site_col not in sites.columns:
            raise KeyError(f"Overrides need a {site_col!r} column in the site sheet")
        sites, applied = apply_overrides(sites, overrides, site_col=site_col, expedition_id=expedition_id)
    sites, site_issues = normalize_schema(
        sites,
        ColumnMapping(converters=site_mapping.converters, dayfirst=site_mapping.dayfirst),
        site_schema,
        row_key=site_col if site_col in sites.columns else None,
        deferred=[SITE_KEY],
    )
    order = [c for c in (order_by or ()) if c in sites.columns] or None
    sites = derive_site_ids(sites, expedition_id, method, order_by=order)
    # index still holds each site's row position in sites_raw
    site_rows = sites.index.to_numpy()
    sites = sites[site_schema.field_names].reset_index(drop=True)
    issue_frames = [_tagged(site_issues, site_schema.name)]
    unmatched_frames = []

    # ---- Stations ----
    stations = None
    if station_schema is not None:
        station_schema = load_schema(station_schema)
        station_mapping = _as_mapping(station_mapping)
        if stations_raw is None:
            raw = sites_raw.reset_index(drop=True).drop(columns=[SITE_KEY], errors="ignore").iloc[site_rows].copy()
            raw[SITE_KEY] = sites[SITE_KEY].to_numpy()
            st = rename_to_schema(raw, station_mapping, station_schema)
        else:
            raw = rename_to_schema(stations_raw.drop(columns=[SITE_KEY], errors="ignore"), station_mapping, station_schema)
            if site_col not in raw.columns:
                raise KeyError(f"Station sheet needs a {site_col!r} column to find its site")
            if site_col not in sites.columns:
                raise KeyError(f"Site table has no {site_col!r} column to attach stations to")
            raw[site_col] = raw[site_col].astype("string").str.strip()
            lookup = sites.loc[sites[site_col].notna(), [site_col, SITE_KEY]]
            st, unmatched = link(raw, lookup, site_col, "inner", right_name=site_schema.name)
            unmatched_frames.append(unmatched)
            issue_frames.append(_unmatched_as_issues(unmatched, station_schema.name, site_col))
        st, station_issues = normalize_schema(
            st,
            ColumnMapping(converters=station_mapping.converters, dayfirst=station_mapping.dayfirst),
            station_schema,
            deferred=[STATION_KEY], row_key=SITE_KEY,
        )
        stations = derive_station_ids(st, method)[station_schema.field_names]
        issue_frames.append(_tagged(station_issues, station_schema.name))
        integrity = check_referential_integrity(stations, sites, SITE_KEY, parent_name=site_schema.name)
        unmatched_frames.append(integrity)
        issue_frames.append(_unmatched_as_issues(integrity, station_schema.name, SITE_KEY))

    issues = _concat(issue_frames, ["table"] + ISSUE_COLUMNS)
    unmatched = _concat(unmatched_frames, list(empty_unmatched_report().columns))
    logger.info(
        "%s/%s: %d site(s), %d station(s), %d issue(s)",
        expedition_id, method, len(sites), 0 if stations is None else len(stations), len(issues),
    )
    return HarmonizationResult(
        expedition_id=expedition_id,
        method=method,
        sites=sites,
        stations=stations,
        issues=issues,
        overrides_applied=applied,
        unmatched=unmatched,
    )


def upload(
    result: HarmonizationResult,
    store: TableStore,
    *,
    sites_table: Optional[str] = None,
    stations_table: Optional[str] = None,
    allow_issues: bool = False,
) -> dict[str, int]:
    """
    Append a result's tables once. Refuses while the issue report is non-empty
    unless allow_issues=True. Returns rows written per table.
    """
    if not allow_issues:
        raise_for_issues(result.issues, what=f"{result.expedition_id}/{result.method}")
    written = {}
    sites_table = sites_table or f"{result.method}_sites"
    written[sites_table] = len(append_once(store, sites_table, result.sites, key="expedition_id"))
    if result.stations is not None:
        stations_table = stations_table or f"{result.method}_stations"
        written[stations_table] = len(append_once(store, stations_table, result.stations, key=STATION_KEY))
    return written


# -------------------------------
# Fish belt transects
# -------------------------------

@dataclass
class FishSurveyResult:
    observations: pd.DataFrame
    transects: pd.DataFrame
    stations: pd.DataFrame
    issues: pd.DataFrame
    unmatched: pd.DataFrame

    @property
    def ok(self) -> bool:
        return self.issues.empty and self.unmatched.empty


def harmonize_fish_survey(
    obs_raw: pd.DataFrame,
    *,
    expedition_id: str,
    stations: pd.DataFrame,
    taxa: pd.DataFrame,
    transect_area_m2: Union[float, dict, pd.Series],
    mapping: Optional[Union[ColumnMapping, dict]] = None,
    schema: SchemaLike = "fish_observations",
    method: str = "fish",
) -> FishSurveyResult:
    """
    Fish observations: normalize -> transect/observation ids -> station check ->
    taxon lookup -> abundance/biomass -> transect and station summaries.

    `taxa` is a taxa_lookup-shaped table; duplicated codes resolve to their
    accepted row or raise AmbiguousJoinError.
    """
    expedition_id = str(expedition_id).strip().upper()
    schema = load_schema(schema)
    obs, obs_issues = normalize_schema(obs_raw, mapping, schema, deferred=["observation_id"])
    obs = derive_transect_ids(obs)
    obs = derive_observation_ids(obs, expedition_id, method)

    no_station = check_referential_integrity(obs, stations, STATION_KEY, parent_name="stations")
    lookup_cols = [c for c in ("taxon_code", "scientific_name", "family", "trophic_group",
                               "a", "b", "ltl_ratio", "lmax_cm", "status") if c in taxa.columns]
    lookup = taxa[lookup_cols].assign(taxon_code=taxa["taxon_code"].astype("string").str.strip())
    linked, no_taxon = link(obs, lookup, "taxon_code", "left-preserve-unmatched", right_name="taxa_lookup")
    linked = linked.drop(columns=["status"], errors="ignore")
    linked = add_biomass(linked)

    issues = _concat([
        _tagged(obs_issues, schema.name),
        _unmatched_as_issues(no_station, schema.name, STATION_KEY),
        _unmatched_as_issues(no_taxon, schema.name, "taxon_code"),
        _tagged(flag_oversized(linked) if "lmax_cm" in linked.columns else empty_issue_report(), schema.name),
    ], ["table"] + ISSUE_COLUMNS)

    surveyed = linked[[STATION_KEY, "transect_id"]].dropna().drop_duplicates()
    transects = summarize_transects(linked, transect_area_m2, transects=surveyed)
    station_summary = summarize_stations(transects, linked)
    return FishSurveyResult(
        observations=linked,
        transects=transects,
        stations=station_summary,
        issues=issues,
        unmatched=_concat([no_station, no_taxon], list(empty_unmatched_report().columns)),
    )
