import pandas as pd
import pytest

from psharmony.data_io import frame_digest
from psharmony.errors import SchemaViolationError
from psharmony.overrides import OverrideTable
from psharmony.pipeline import harmonize_expedition, harmonize_fish_survey, upload
from psharmony.storage import open_store


SITE_MAPPING = {
    "rename": {
        "Site": "site_name", "Date": "date", "Time": "time",
        "Lat": "latitude", "Lon": "longitude", "Habitat": "habitat",
    },
    "converters": {"latitude": "ddm_to_decimal", "longitude": "ddm_to_decimal"},
}

STATION_MAPPING = {
    "rename": {"Site": "site_name", "Depth": "depth_m", "Strata": "depth_strata"},
    "converters": {"depth_m": "number"},
}


def _sites_raw():
    return pd.DataFrame({
        "Site": ["PAC_02", "PAC_01", "PAC_03"],
        "Date": ["2024-03-02", "2024-03-01", "2024-03-02"],
        "Time": ["14:00", "9:00 AM", "08:00"],
        "Lat": ["6 12.0 N", "6 10.5 N", "6 15.0 N"],
        "Lon": ["77 24.0 W", "77 25.5 W", "77 20.0 W"],
        "Habitat": ["fore reef", "back reef", "lagoon"],
        "Boat": ["Mero", "Mero", "Mero"],
    })


def _stations_raw():
    return pd.DataFrame({
        "Site": ["PAC_01", "PAC_01", "PAC_02", "PAC_03"],
        "Depth": ["10 m", "18.2", "12", "5"],
        "Strata": ["shallow", "deep", "shallow", "supershallow"],
    })


def _run(**kw):
    args = dict(
        expedition_id="col_2024", method="uvs",
        site_mapping=SITE_MAPPING, stations_raw=_stations_raw(), station_mapping=STATION_MAPPING,
    )
    args.update(kw)
    return harmonize_expedition(_sites_raw(), **args)


def test_expedition_end_to_end():
    res = _run()
    assert res.ok
    assert res.expedition_id == "COL_2024"
    # numbered by date then time
    assert res.sites[["site_name", "ps_site_id"]].values.tolist() == [
        ["PAC_01", "COL_2024_uvs_001"],
        ["PAC_03", "COL_2024_uvs_002"],
        ["PAC_02", "COL_2024_uvs_003"],
    ]
    assert res.sites.loc[0, "latitude"] == pytest.approx(6.175)
    assert res.sites.loc[0, "longitude"] == pytest.approx(-77.425)
    assert res.sites.loc[0, "time"] == "09:00"
    assert res.stations["ps_station_id"].tolist() == [
        "COL_2024_uvs_001_10m",
        "COL_2024_uvs_001_18m",
        "COL_2024_uvs_003_12m",
        "COL_2024_uvs_002_5m",
    ]
    assert "Boat" not in res.sites.columns


def test_rerun_is_byte_identical():
    a, b = _run(), _run()
    assert frame_digest(a.sites) == frame_digest(b.sites)
    assert frame_digest(a.stations) == frame_digest(b.stations)


def test_digest_sees_changes():
    a = _run()
    changed = a.sites.copy()
    changed.loc[0, "site_name"] = "PAC_1"
    assert frame_digest(changed) != frame_digest(a.sites)


def test_stations_reference_existing_sites():
    res = _run()
    assert set(res.stations["ps_site_id"]) <= set(res.sites["ps_site_id"])
    assert res.unmatched.empty


def test_unmatched_station_is_reported():
    raw = pd.concat([_stations_raw(), pd.DataFrame({"Site": ["PAC_99"], "Depth": ["7"]})], ignore_index=True)
    res = _run(stations_raw=raw)
    assert not res.ok
    assert len(res.stations) == 4
    assert res.unmatched["key"].tolist() == ["PAC_99"]
    issue = res.issues[res.issues["table"] == "uvs_stations"]
    assert issue["issue"].tolist() == ["no match in uvs_sites"]


def test_data_problems_reported_not_raised():
    raw = _sites_raw()
    raw.loc[0, "Habitat"] = "Forereef"
    res = harmonize_expedition(
        raw, expedition_id="COL_2024", method="uvs", site_mapping=SITE_MAPPING,
        stations_raw=_stations_raw(), station_mapping=STATION_MAPPING,
    )
    bad = res.issues[res.issues["field"] == "habitat"]
    assert bad[["table", "row_key", "issue"]].values.tolist() == [["uvs_sites", "PAC_02", "not in allowed values"]]
    assert len(res.sites) == 3


def test_overrides_applied_before_coercion():
    table = OverrideTable.from_records([
        {"expedition_id": "COL_2024", "site_name": "PAC_02", "fields": {"latitude": "6 11.0 N"},
         "reason": "datasheet latitude transposed"},
    ], version=1)
    res = _run(overrides=table)
    row = res.sites[res.sites["site_name"] == "PAC_02"].iloc[0]
    assert row["latitude"] == pytest.approx(6 + 11 / 60)
    assert res.overrides_applied["status"].tolist() == ["applied"]


def test_stations_from_site_rows():
    raw = pd.DataFrame({
        "site_name": ["CAM_1", "CAM_2"],
        "date": ["2024-03-05", "2024-03-06"],
        "latitude": [6.1, 6.2],
        "longitude": [-77.4, -77.5],
        "depth_m": [310.0, 452.0],
    })
    res = harmonize_expedition(raw, expedition_id="COL_2024", method="dscm", station_schema="stations_core")
    assert res.ok
    assert res.stations["ps_station_id"].tolist() == ["COL_2024_dscm_001_01", "COL_2024_dscm_002_01"]
    assert res.stations["site_name"].tolist() == ["CAM_1", "CAM_2"]


def test_upload_gate_and_append_once(tmp_path):
    clean = _run()
    with open_store(tmp_path) as store:
        assert upload(clean, store) == {"uvs_sites": 3, "uvs_stations": 4}
        assert upload(clean, store) == {"uvs_sites": 0, "uvs_stations": 0}

        raw = pd.concat([_stations_raw(), pd.DataFrame({"Site": ["PAC_99"], "Depth": ["7"]})], ignore_index=True)
        dirty = _run(expedition_id="PAN_2023", stations_raw=raw)
        with pytest.raises(SchemaViolationError):
            upload(dirty, store)
        written = upload(dirty, store, allow_issues=True)
        assert written["uvs_sites"] == 3
        assert len(store.read("uvs_sites")) == 6


def _taxa():
    return pd.DataFrame({
        "taxon_code": ["LUT.KAS", "LUT.KAS", "SCA.RUB"],
        "scientific_name": ["Lutjanus kasmira", "Lutjanus kasmira (old)", "Scarus rubroviolaceus"],
        "a": [0.01, 0.5, 0.02],
        "b": [3.0, 3.0, 3.0],
        "lmax_cm": [40.0, 40.0, 15.0],
        "status": ["accepted", "synonym", "accepted"],
    })


def _fish_raw(station):
    return pd.DataFrame({
        "ps_station_id": [station] * 4,
        "diver": ["AM", "AM", "AM", "AM"],
        "transect": ["A", "A", "B", "B"],
        "taxon_code": ["LUT.KAS", "SCA.RUB", "LUT.KAS", "ZZZ"],
        "length_cm": [10, 20, 30, 5],
        "count": [2, 1, 1, 1],
    })


def test_fish_survey():
    stations = _run().stations
    station = stations["ps_station_id"].iloc[0]
    res = harmonize_fish_survey(
        _fish_raw(station), expedition_id="COL_2024", stations=stations, taxa=_taxa(), transect_area_m2=100.0,
    )
    obs = res.observations
    assert obs["observation_id"].tolist()[0] == "COL_2024_fish_obs_0001"
    assert obs["transect_id"].tolist()[0] == f"{station}_AM_A"
    # accepted row wins the lookup
    assert obs.loc[0, "scientific_name"] == "Lutjanus kasmira"
    assert obs.loc[0, "biomass_g"] == pytest.approx(20.0)
    assert pd.isna(obs.loc[3, "biomass_g"])

    assert sorted(res.issues["issue"]) == ["length exceeds lmax", "no match in taxa_lookup"]
    assert res.unmatched["key"].tolist() == ["ZZZ"]

    assert res.transects["abundance"].tolist() == [3, 2]
    assert res.stations["species_richness"].tolist() == [3]
    assert res.stations["n_transects"].tolist() == [2]


def test_fish_survey_unknown_station():
    stations = _run().stations
    res = harmonize_fish_survey(
        _fish_raw("COL_2024_uvs_009_10m"), expedition_id="COL_2024", stations=stations,
        taxa=_taxa(), transect_area_m2=100.0,
    )
    assert "no match in stations" in set(res.issues["issue"])
