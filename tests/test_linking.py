import pandas as pd
import pytest

from psharmony.errors import AmbiguousJoinError
from psharmony.linking import check_referential_integrity, coverage_report, dedupe_lookup, link


def _stations():
    return pd.DataFrame({
        "ps_station_id": ["S_001_10m", "S_002_10m", "S_002_20m"],
        "ps_site_id": ["S_001", "S_002", "S_002"],
    })


def _sites(status=("accepted", "synonym")):
    return pd.DataFrame({
        "ps_site_id": ["S_001", "S_002", "S_002"],
        "site_name": ["north", "south (old)", "south"],
        "status": ["accepted", status[1], status[0]],
    })


def test_duplicate_key_resolved_to_accepted_row():
    merged, unmatched = link(_stations(), _sites(), "ps_site_id")
    assert len(merged) == 3
    assert merged["site_name"].tolist() == ["north", "south", "south"]
    assert unmatched.empty


def test_duplicate_key_without_accepted_row_is_ambiguous():
    with pytest.raises(AmbiguousJoinError) as exc:
        link(_stations(), _sites(status=("synonym", "unaccepted")), "ps_site_id", right_name="sites")
    assert exc.value.keys == ["S_002"]
    assert exc.value.source_table == "sites"


def test_two_accepted_rows_are_ambiguous():
    with pytest.raises(AmbiguousJoinError):
        dedupe_lookup(_sites(status=("accepted", "Accepted")), "ps_site_id")


def test_no_status_column_duplicates_are_ambiguous():
    with pytest.raises(AmbiguousJoinError):
        dedupe_lookup(_sites().drop(columns="status"), "ps_site_id")


def test_policies_and_unmatched_report():
    left = pd.DataFrame({"taxon_code": ["LUT.KAS", "XXX", "SCA.RUB", None], "count": [1, 2, 3, 4]})
    right = pd.DataFrame({"taxon_code": ["LUT.KAS", "SCA.RUB"], "a": [0.01, 0.02]})

    kept, unmatched = link(left, right, "taxon_code", "left-preserve-unmatched", right_name="taxa")
    assert kept["count"].tolist() == [1, 2, 3, 4]
    assert pd.isna(kept.loc[1, "a"])
    assert unmatched["row_position"].tolist() == [1, 3]
    assert unmatched["source_table"].unique().tolist() == ["taxa"]
    assert unmatched.loc[0, "key"] == "XXX"

    inner, unmatched_inner = link(left, right, "taxon_code", "inner", right_name="taxa")
    assert inner["count"].tolist() == [1, 3]
    assert isinstance(inner.index, pd.RangeIndex)
    pd.testing.assert_frame_equal(unmatched, unmatched_inner)


def test_link_is_idempotent():
    a = link(_stations(), _sites(), "ps_site_id")
    b = link(_stations(), _sites(), "ps_site_id")
    pd.testing.assert_frame_equal(a[0], b[0])
    pd.testing.assert_frame_equal(a[1], b[1])


def test_composite_key():
    left = pd.DataFrame({"expedition_id": ["A", "A", "B"], "site_name": ["s1", "s2", "s1"]})
    right = pd.DataFrame({"expedition_id": ["A", "B"], "site_name": ["s1", "s1"], "v": [1, 2]})
    merged, unmatched = link(left, right, ["expedition_id", "site_name"])
    assert merged["v"].tolist()[0::2] == [1, 2]
    assert unmatched["key"].tolist() == [("A", "s2")]


def test_unknown_policy_and_missing_key():
    with pytest.raises(ValueError):
        link(_stations(), _sites(), "ps_site_id", policy="outer")
    with pytest.raises(KeyError):
        link(_stations(), _sites(), "site_code")


def test_left_input_not_mutated():
    left = _stations()
    before = left.copy()
    link(left, _sites(), "ps_site_id")
    pd.testing.assert_frame_equal(left, before)


def test_referential_integrity():
    sites = pd.DataFrame({"ps_site_id": ["S_001"]})
    report = check_referential_integrity(_stations(), sites, "ps_site_id", parent_name="sites")
    assert report["key"].tolist() == ["S_002", "S_002"]
    assert report["row_position"].tolist() == [1, 2]
    assert check_referential_integrity(_stations(), _sites(), "ps_site_id").empty


def test_coverage_report():
    tables = {
        "sites": pd.DataFrame({"ps_site_id": ["S_001", "S_002"]}),
        "stations": _stations(),
        "fish": pd.DataFrame({"ps_site_id": ["S_001"]}),
    }
    rep = coverage_report(tables, key="ps_site_id")
    assert rep.index.tolist() == ["S_001", "S_002"]
    assert rep.loc["S_002"].tolist() == [True, True, False]
