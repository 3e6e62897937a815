from __future__ import annotations
import hashlib
from pathlib import Path
import pandas as pd
from .config import INTERIM

def save_interim(df: pd.DataFrame, name: str) -> Path:
    """
    Save a DataFrame to the interim data directory as a Parquet file.

    Args:
        df: The DataFrame to save
        name: The filename (without path) for the saved file

    Returns:
        Path: The full path to the saved file
    """
    INTERIM.mkdir(parents=True, exist_ok=True)
    path = INTERIM / name
    df.to_parquet(path, index=False)
    return path

def load_interim(name: str) -> pd.DataFrame:
    """
    Load a DataFrame from the interim data directory.

    Args:
        name: The filename (without path) to load

    Returns:
        pd.DataFrame: The loaded DataFrame
    """
    return pd.read_parquet(INTERIM / name)

def frame_digest(df: pd.DataFrame) -> str:
    """
    SHA-256 over column names, dtypes and per-row hashes.
    Equal digests mean identical column order, null representation and values.
    """
    h = hashlib.sha256()
    h.update("\x1f".join(map(str, df.columns)).encode("utf-8"))
    h.update("\x1f".join(str(t) for t in df.dtypes).encode("utf-8"))
    h.update(pd.util.hash_pandas_object(df, index=True).to_numpy().tobytes())
    return h.hexdigest()
