"""
Usage example: harmonize one UVS expedition and upload it to a local store.

Reads a workbook from data/raw when one is given, otherwise builds a small
mock expedition, then shows the issue report that must be reviewed before
anything is uploaded.
"""

import sys
from pathlib import Path

import pandas as pd

from psharmony import ColumnMapping, harmonize_expedition, open_store, upload
from psharmony.config import PROC
from psharmony.ingest import read_workbook
from psharmony.normalize import summarize_issues

SITE_MAPPING = ColumnMapping(
    rename={"Site": "site_name", "Date": "date", "Time": "time",
            "Lat": "latitude", "Lon": "longitude", "Habitat": "habitat"},
    converters={"latitude": "ddm_to_decimal", "longitude": "ddm_to_decimal", "habitat": "lower"},
)
STATION_MAPPING = ColumnMapping(
    rename={"Site": "site_name", "Depth": "depth_m", "Strata": "depth_strata"},
    converters={"depth_m": "number"},
)


def create_mock_sheets():
    """Two sheets the way they come off the boat."""
    sites = pd.DataFrame({
        "Site": ["PAC_02", "PAC_01", "PAC_03"],
        "Date": ["2024-03-02", "2024-03-01", "2024-03-02"],
        "Time": ["2:10 PM", "9:00 AM", "08:15"],
        "Lat": ["6 12.0 N", "6 10.5 N", "6 15.0 N"],
        "Lon": ["77 24.0 W", "77 25.5 W", "77 20.0 W"],
        "Habitat": ["Fore reef", "back reef", "Forereef"],
    })
    stations = pd.DataFrame({
        "Site": ["PAC_01", "PAC_01", "PAC_02", "PAC_03", "PAC_07"],
        "Depth": ["10 m", "18.2", "12", "5", "20"],
        "Strata": ["shallow", "deep", "shallow", "supershallow", "deep"],
    })
    return sites, stations


def main(workbook=None):
    print("=== UVS expedition harmonization - Usage Example ===\n")

    print("1. Loading sheets...")
    if workbook is not None:
        sheets = read_workbook(workbook)
        sites_raw, stations_raw = sheets["sites"], sheets["stations"]
    else:
        sites_raw, stations_raw = create_mock_sheets()
    print(f"   {len(sites_raw)} site rows, {len(stations_raw)} station rows")

    print("\n2. Normalizing and deriving identifiers...")
    result = harmonize_expedition(
        sites_raw,
        expedition_id="COL_2024",
        method="uvs",
        site_mapping=SITE_MAPPING,
        stations_raw=stations_raw,
        station_mapping=STATION_MAPPING,
    )
    print(result.sites[["ps_site_id", "site_name", "date", "habitat"]].to_string(index=False))
    print(result.stations[["ps_station_id", "depth_m"]].to_string(index=False))

    print("\n3. Issue report (review before upload)...")
    if result.ok:
        print("   ✓ No issues")
    else:
        print(result.issues.to_string(index=False))
        print(summarize_issues(result.issues).to_string(index=False))

    print("\n4. Uploading...")
    with open_store(PROC) as store:
        written = upload(result, store, allow_issues=True)
    for table, n in written.items():
        print(f"   ✓ {table}: {n} new row(s)")


if __name__ == "__main__":
    main(Path(sys.argv[1]) if len(sys.argv) > 1 else None)
