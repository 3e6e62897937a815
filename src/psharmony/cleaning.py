from __future__ import annotations
import datetime as dt
import math
import re
from typing import Any, Callable, Optional

import pandas as pd

def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Normalize column names by stripping whitespace, replacing spaces with underscores,
    removing special characters and lowercasing.

    Args:
        df: Input DataFrame

    Returns:
        DataFrame with normalized column names
    """
    df = df.copy()
    df.columns = (
        df.columns
        .astype(str)
        .str.strip()
        .str.replace(r"\s+", "_", regex=True)
        .str.replace(r"[^0-9A-Za-z_]", "", regex=True)
        .str.lower()
    )
    return df

def harmonize_ids(df: pd.DataFrame, id_col="expedition_id") -> pd.DataFrame:
    """
    Standardize ID column values by converting to uppercase strings and stripping whitespace.
    Missing values stay missing.

    Args:
        df: Input DataFrame
        id_col: Name of the ID column to harmonize (default: "expedition_id")

    Returns:
        DataFrame with standardized ID column
    """
    df = df.copy()
    if id_col in df.columns:
        df[id_col] = df[id_col].astype("string").str.strip().str.upper()
    return df

def drop_duplicates_on_keys(df: pd.DataFrame, keys: list[str]) -> pd.DataFrame:
    """
    Remove duplicate rows based on specified key columns.

    Args:
        df: Input DataFrame
        keys: List of column names to use for duplicate detection

    Returns:
        DataFrame with duplicates removed (first occurrence kept, order preserved)
    """
    # Handles single key or multiple keys
    return df.drop_duplicates(subset=keys[0] if len(keys) == 1 else keys)

def ensure_nonnegative(df: pd.DataFrame, cols_like: str | None = None, cols: list[str] | None = None) -> pd.DataFrame:
    """
    Validate that numeric columns contain only non-negative values.

    Args:
        df: Input DataFrame
        cols_like: Filter columns containing this substring
        cols: Explicit column names to check (takes precedence over cols_like)

    Returns:
        Original DataFrame if validation passes

    Raises:
        ValueError: If negative values are found in specified columns
    """
    if cols is None:
        cols = (
        df.filter(like=cols_like).select_dtypes(include="number").columns
        if cols_like else df.select_dtypes(include="number").columns
        )
    cols = [c for c in cols if c in df.columns]
    if (df[cols].fillna(0) < 0).any().any():
        raise ValueError(f"Negative values found in {cols_like or list(cols)} columns.")
    return df

# -------------------------------
# Value converters
# -------------------------------

def is_missing(value: Any) -> bool:
    """True for None, NaN, NA/NaT and blank strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False

_NUMBER = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_THOUSANDS = re.compile(r"^[-+]?\d{1,3}(?:,\d{3})+(?:\.\d+)?$")

def parse_number(value: Any) -> Optional[float]:
    """
    Leniently parse a number out of a spreadsheet cell.

    Units and symbols are stripped ("18.2 m" -> 18.2, "~5" -> 5.0, "1,234" -> 1234.0).
    A decimal comma is accepted ("18,5" -> 18.5). Cells holding more than one
    number (e.g. ranges like "10-12") are ambiguous and return None.
    """
    if is_missing(value):
        return None
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    text = str(value).strip().replace("−", "-")
    compact = text.replace(" ", "")
    if "," in compact:
        if "." in compact or _THOUSANDS.match(re.sub(r"[^0-9,.+-]", "", compact)):
            text = text.replace(",", "")
        else:
            text = text.replace(",", ".")
    numbers = _NUMBER.findall(text)
    if len(numbers) != 1:
        return None
    return float(numbers[0])

_HEMISPHERE = re.compile(r"(?<![A-Za-z])(north|south|east|west|[NSEW])(?![A-Za-z])", re.IGNORECASE)

def ddm_to_decimal(value: Any) -> Optional[float]:
    """
    Convert degrees/minutes(/seconds) coordinates to signed decimal degrees.

    Accepts "5°30.5'S", "S 5 30.5", "-5 30.5", "79°12'30\"W" and plain decimals.
    South and west are negative. Minutes or seconds >= 60 return None.
    """
    if is_missing(value):
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value) if math.isfinite(value) else None
    text = str(value).strip().replace("−", "-")
    hemi = _HEMISPHERE.findall(text)
    if len(hemi) > 1:
        return None
    parts = [float(p) for p in re.findall(r"[-+]?\d+(?:\.\d+)?", text)]
    if not parts or len(parts) > 3:
        return None
    negative = parts[0] < 0 or text.lstrip().startswith("-")
    degrees = abs(parts[0])
    minutes = parts[1] if len(parts) > 1 else 0.0
    seconds = parts[2] if len(parts) > 2 else 0.0
    if not (0 <= minutes < 60 and 0 <= seconds < 60):
        return None
    decimal = degrees + minutes / 60 + seconds / 3600
    if hemi and hemi[0][0].upper() in ("S", "W"):
        negative = True
    return -decimal if negative else decimal

_TIME = re.compile(r"^(\d{1,2})(?::?(\d{2}))?(?::(\d{2})(?:\.\d+)?)?\s*([AaPp]\.?[Mm]\.?)?$")

def time_to_24h(value: Any) -> Optional[str]:
    """
    Convert a time cell to "HH:MM" (24-hour).

    Handles datetime/time objects, "2:05 PM", "14:05:00", "1405" and Excel day
    fractions (0.5 -> "12:00").
    """
    if is_missing(value):
        return None
    if isinstance(value, (dt.datetime, pd.Timestamp)):
        return f"{value.hour:02d}:{value.minute:02d}"
    if isinstance(value, dt.time):
        return f"{value.hour:02d}:{value.minute:02d}"
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if not (0 <= value < 1):
            return None
        minutes = int(round(value * 24 * 60))
        return f"{minutes // 60 % 24:02d}:{minutes % 60:02d}"
    m = _TIME.match(str(value).strip())
    if m is None:
        return None
    hour, minute = int(m.group(1)), int(m.group(2) or 0)
    meridiem = (m.group(4) or "").replace(".", "").lower()
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem == "pm" else 0)
    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"

def as_text(value: Any) -> str:
    """Cell text, trimmed. Integral floats lose the trailing ".0" Excel gives them (3.0 -> "3")."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()

def strip_text(value: Any) -> Optional[str]:
    """Collapse internal whitespace and trim; blanks become None."""
    if is_missing(value):
        return None
    return re.sub(r"\s+", " ", str(value)).strip()

def lowercase(value: Any) -> Optional[str]:
    text = strip_text(value)
    return text.lower() if text is not None else None

CONVERTERS: dict[str, Callable[[Any], Any]] = {
    "number": parse_number,
    "ddm_to_decimal": ddm_to_decimal,
    "time_24h": time_to_24h,
    "strip": strip_text,
    "lower": lowercase,
}

def get_converter(name_or_func) -> Callable[[Any], Any]:
    """Resolve a converter by registered name, or pass a callable through."""
    if callable(name_or_func):
        return name_or_func
    func = CONVERTERS.get(str(name_or_func))
    if func is None:
        raise ValueError(f"Unknown converter {name_or_func!r}. Known: {sorted(CONVERTERS)}")
    return func
