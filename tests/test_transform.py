import numpy as np
import pandas as pd
import pytest
from psharmony.transform import (
    add_biomass, flag_oversized, length_weight, lpi_cover, summarize_stations, summarize_transects,
)

def _obs():
    return pd.DataFrame({
        "observation_id": ["o1", "o2", "o3", "o4"],
        "ps_station_id": ["S_001_10m", "S_001_10m", "S_001_10m", "S_002_10m"],
        "transect_id": ["S_001_10m_AM_A", "S_001_10m_AM_A", "S_001_10m_AM_B", "S_002_10m_AM_A"],
        "taxon_code": ["LUT.KAS", "SCA.RUB", "LUT.KAS", "LUT.KAS"],
        "length_cm": [10.0, 20.0, 30.0, 10.0],
        "count": [2, 1, 1, 4],
        "a": [0.01, 0.02, 0.01, 0.01],
        "b": [3.0, 3.0, 3.0, 3.0],
        "ltl_ratio": [1.0, None, 1.0, 1.0],
        "lmax_cm": [40.0, 15.0, 40.0, 40.0],
    })

def test_length_weight_scalar_and_array():
    assert length_weight(10, 0.01, 3) == pytest.approx(10.0)
    assert length_weight(10, 0.01, 3, ltl_ratio=2.0) == pytest.approx(80.0)
    W = length_weight([10, 20], [0.01, 0.01], [3, 3])
    assert np.allclose(W, [10.0, 80.0])
    with pytest.raises(ValueError):
        length_weight(-1, 0.01, 3)

def test_add_biomass():
    out = add_biomass(_obs())
    assert out["abundance"].tolist() == [2.0, 1.0, 1.0, 4.0]
    # 2 fish * 0.01 * 10^3 g
    assert out.loc[0, "biomass_g"] == pytest.approx(20.0)
    # missing ltl_ratio means total length
    assert out.loc[1, "biomass_g"] == pytest.approx(160.0)
    assert str(out["biomass_g"].dtype) == "Float64"

def test_add_biomass_without_parameters_gives_null():
    obs = _obs()
    obs.loc[3, "a"] = np.nan
    out = add_biomass(obs)
    assert pd.isna(out.loc[3, "biomass_g"])

def test_add_biomass_rejects_negative_counts():
    obs = _obs()
    obs.loc[0, "count"] = -1
    with pytest.raises(ValueError):
        add_biomass(obs)

def test_flag_oversized():
    rep = flag_oversized(_obs())
    assert rep[["row_key", "field", "issue"]].values.tolist() == [["o2", "length_cm", "length exceeds lmax"]]

def test_transect_and_station_summaries():
    obs = add_biomass(_obs())
    surveyed = pd.DataFrame({
        "ps_station_id": ["S_001_10m", "S_001_10m", "S_002_10m", "S_002_10m"],
        "transect_id": ["S_001_10m_AM_A", "S_001_10m_AM_B", "S_002_10m_AM_A", "S_002_10m_AM_B"],
    })
    tr = summarize_transects(obs, 100.0, transects=surveyed)
    assert tr["transect_id"].tolist() == surveyed["transect_id"].tolist()
    first = tr.iloc[0]
    assert first["n_taxa"] == 2
    assert first["abundance"] == 3
    assert first["ind_m2"] == pytest.approx(0.03)
    assert first["gr_m2"] == pytest.approx((20.0 + 160.0) / 100)
    # transect where nothing was seen counts as zero
    empty = tr.iloc[3]
    assert empty["abundance"] == 0 and empty["biomass_g"] == 0 and empty["gr_m2"] == 0

    st = summarize_stations(tr, obs)
    assert st["ps_station_id"].tolist() == ["S_001_10m", "S_002_10m"]
    assert st["n_transects"].tolist() == [2, 2]
    assert st["survey_area_m2"].tolist() == [200.0, 200.0]
    assert st["species_richness"].tolist() == [2, 1]
    assert st.loc[1, "ind_m2"] == pytest.approx((0.04 + 0.0) / 2)

def test_transect_area_by_id():
    obs = add_biomass(_obs())
    areas = {"S_001_10m_AM_A": 50.0, "S_001_10m_AM_B": 100.0, "S_002_10m_AM_A": 100.0}
    tr = summarize_transects(obs, areas)
    assert tr.loc[tr["transect_id"] == "S_001_10m_AM_A", "ind_m2"].iloc[0] == pytest.approx(3 / 50)
    with pytest.raises(KeyError):
        summarize_transects(obs, {"S_001_10m_AM_A": 50.0})
    with pytest.raises(ValueError):
        summarize_transects(obs, 0.0)

def test_lpi_cover_sums_to_100():
    pts = pd.DataFrame({
        "ps_station_id": ["S1"] * 4 + ["S2"] * 2,
        "category": ["hard coral", "sand", "hard coral", None, "turf", "turf"],
    })
    cover = lpi_cover(pts)
    assert cover.groupby("ps_station_id")["pct_cover"].sum().tolist() == pytest.approx([100.0, 100.0])
    s1 = cover[cover["ps_station_id"] == "S1"].set_index("category")["pct_cover"]
    assert s1["hard coral"] == pytest.approx(200 / 3)
