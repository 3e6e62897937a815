"""
psharmony - Marine expedition spreadsheet harmonization

Turns per-expedition field sheets (submersible dives, camera drops, BRUVS,
fish belt transects, benthic points) into fixed per-method tables keyed by
deterministic composite identifiers.

Modules:
- identifiers: site / station / transect / observation ids
- normalize: raw sheet -> target schema, with an issue report
- linking: many-to-one joins with an unmatched report
- pipeline: one expedition end to end, and the upload gate
"""

import logging

from .errors import (
    HarmonizationError, MissingKeyFieldError, DuplicateKeyError,
    SchemaViolationError, AmbiguousJoinError,
)
from .methods import METHODS, MethodRule, get_method, register_method, configure_method
from .identifiers import (
    derive_site_ids, derive_site_ids_by_group, station_suffix, derive_station_ids,
    derive_transect_ids, derive_observation_ids, parse_site_number,
)
from .schema import FieldSpec, TableSchema, load_schema, available_schemas, to_pandera
from .normalize import ColumnMapping, normalize_schema, rename_to_schema, raise_for_issues, summarize_issues
from .linking import link, dedupe_lookup, check_referential_integrity, coverage_report
from .overrides import OverrideTable, load_overrides, apply_overrides, flag_unrecorded_corrections
from .storage import TableStore, ParquetTableStore, open_store, append_once
from .pipeline import HarmonizationResult, FishSurveyResult, harmonize_expedition, harmonize_fish_survey, upload

__all__ = [
    # Errors
    "HarmonizationError", "MissingKeyFieldError", "DuplicateKeyError",
    "SchemaViolationError", "AmbiguousJoinError",

    # Methods
    "METHODS", "MethodRule", "get_method", "register_method", "configure_method",

    # Identifiers
    "derive_site_ids", "derive_site_ids_by_group", "station_suffix", "derive_station_ids",
    "derive_transect_ids", "derive_observation_ids", "parse_site_number",

    # Schemas and normalization
    "FieldSpec", "TableSchema", "load_schema", "available_schemas", "to_pandera",
    "ColumnMapping", "normalize_schema", "rename_to_schema", "raise_for_issues", "summarize_issues",

    # Linking
    "link", "dedupe_lookup", "check_referential_integrity", "coverage_report",

    # Overrides
    "OverrideTable", "load_overrides", "apply_overrides", "flag_unrecorded_corrections",

    # Storage
    "TableStore", "ParquetTableStore", "open_store", "append_once",

    # Pipeline
    "HarmonizationResult", "FishSurveyResult", "harmonize_expedition", "harmonize_fish_survey", "upload",
]

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
