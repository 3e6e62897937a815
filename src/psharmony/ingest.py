from __future__ import annotations
import logging
from pathlib import Path
from typing import Union

import pandas as pd

logger = logging.getLogger(__name__)

def read_sheet(path: Union[str, Path], sheet_name: Union[str, int] = 0, **kwargs) -> pd.DataFrame:
    """Read one worksheet of an expedition workbook."""
    return pd.read_excel(path, sheet_name=sheet_name, engine="openpyxl", **kwargs)

def read_workbook(path: Union[str, Path], **kwargs) -> dict[str, pd.DataFrame]:
    """
    Read every non-blank worksheet of a workbook.

    Args:
        path: Path to the .xlsx file

    Returns:
        Dict of sheet name -> DataFrame, in workbook order. Fully blank sheets
        are skipped.
    """
    sheets = pd.read_excel(path, sheet_name=None, engine="openpyxl", **kwargs)
    out = {}
    for name, df in sheets.items():
        if df.dropna(how="all").empty:
            logger.info("%s: sheet %r is blank; skipping", Path(path).name, name)
            continue
        out[name] = df.dropna(how="all").reset_index(drop=True)
    return out
