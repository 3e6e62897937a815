from __future__ import annotations
import os
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
DATA = Path(os.environ.get("PSHARMONY_DATA", ROOT / "data"))
RAW = DATA / "raw"
INTERIM = DATA / "interim"
PROC = DATA / "processed"

# bundled target schema descriptions (YAML)
SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"

# identifier formatting
SITE_ID_MIN_WIDTH = 3
OBS_ID_MIN_WIDTH = 4

# lookup de-duplication
STATUS_COL = "status"
ACCEPTED_STATUS = "accepted"

# keys
KEYS = ["expedition_id", "method"]  # numbering groups
SITE_KEY = "ps_site_id"
STATION_KEY = "ps_station_id"
