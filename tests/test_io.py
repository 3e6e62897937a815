import pandas as pd

import psharmony.data_io as data_io
from psharmony.data_io import frame_digest, load_interim, save_interim
from psharmony.ingest import read_sheet, read_workbook


def test_interim_round_trip(tmp_path, monkeypatch):
    monkeypatch.setattr(data_io, "INTERIM", tmp_path / "interim")
    df = pd.DataFrame({"ps_site_id": pd.array(["A_uvs_001", None], dtype="string"), "depth_m": [1.5, None]})
    path = save_interim(df, "uvs_sites.parquet")
    assert path.exists()
    back = load_interim("uvs_sites.parquet")
    assert back["ps_site_id"].tolist()[0] == "A_uvs_001"
    assert pd.isna(back.loc[1, "depth_m"])


def test_frame_digest_sensitive_to_order_and_dtype():
    df = pd.DataFrame({"a": [1, 2], "b": ["x", "y"]})
    assert frame_digest(df) == frame_digest(df.copy())
    assert frame_digest(df) != frame_digest(df[["b", "a"]])
    assert frame_digest(df) != frame_digest(df.astype({"a": "Int64"}))
    assert frame_digest(df) != frame_digest(df.iloc[::-1].reset_index(drop=True))


def test_read_workbook_skips_blank_sheets(tmp_path):
    path = tmp_path / "COL_2024.xlsx"
    with pd.ExcelWriter(path, engine="openpyxl") as xw:
        pd.DataFrame({"Site": ["PAC_01", "PAC_02"], "Depth": [10, 12]}).to_excel(xw, sheet_name="uvs", index=False)
        pd.DataFrame({"Site": [None, None]}).to_excel(xw, sheet_name="blank", index=False)
    sheets = read_workbook(path)
    assert list(sheets) == ["uvs"]
    assert sheets["uvs"]["Site"].tolist() == ["PAC_01", "PAC_02"]
    assert read_sheet(path, "uvs").shape == (2, 2)
