"""Table storage handles.

The warehouse client is passed explicitly and scoped to a batch::

    with open_store(path) as store:
        append_once(store, "uvs_sites", sites)

`close()` always runs, even when the batch fails. Nothing here retries: a
failed write propagates and aborts the expedition being processed.
"""

from __future__ import annotations
import logging
import os
import re
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

import pandas as pd

from .config import PROC

logger = logging.getLogger(__name__)

_TABLE_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


class TableStore(ABC):
    """Abstract base class for table storage backends."""

    def __enter__(self) -> "TableStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @abstractmethod
    def exists(self, table: str) -> bool:
        ...

    @abstractmethod
    def read(self, table: str) -> pd.DataFrame:
        """
        Read a whole table.

        Raises:
            FileNotFoundError: If the table doesn't exist
        """
        ...

    @abstractmethod
    def append(self, table: str, df: pd.DataFrame) -> int:
        """Append rows (creating the table if needed). Performs no duplicate check. Returns rows written."""
        ...

    @abstractmethod
    def replace(self, table: str, df: pd.DataFrame) -> int:
        """Truncate-and-write. Returns rows written."""
        ...

    def existing_values(self, table: str, column: str) -> set:
        """Distinct non-null values of `column`; empty if the table doesn't exist yet."""
        if not self.exists(table):
            return set()
        df = self.read(table)
        if column not in df.columns:
            raise KeyError(f"Table {table!r} has no column {column!r}")
        return set(df[column].dropna().astype(str))

    def close(self) -> None:
        """Release the handle. Default: nothing to release."""


def _write_parquet(df: pd.DataFrame, path: Path) -> None:
    """Write beside `path`, then swap it in; a failed write leaves the old table untouched."""
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        df.to_parquet(tmp, index=False)
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()


class ParquetTableStore(TableStore):
    """One parquet file per table under `root`."""

    def __init__(self, root: Union[str, Path] = PROC):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._closed = False

    def _path(self, table: str) -> Path:
        if self._closed:
            raise RuntimeError("Store is closed")
        if not _TABLE_NAME.match(table):
            raise ValueError(f"Invalid table name {table!r}")
        return self.root / f"{table}.parquet"

    def exists(self, table: str) -> bool:
        return self._path(table).exists()

    def read(self, table: str) -> pd.DataFrame:
        path = self._path(table)
        if not path.exists():
            raise FileNotFoundError(f"Table {table!r} not found in {self.root}")
        return pd.read_parquet(path)

    def append(self, table: str, df: pd.DataFrame) -> int:
        path = self._path(table)
        if path.exists():
            current = pd.read_parquet(path)
            if list(current.columns) != list(df.columns):
                raise ValueError(
                    f"Cannot append to {table!r}: columns differ "
                    f"({list(current.columns)} vs {list(df.columns)})"
                )
            combined = pd.concat([current, df], ignore_index=True)
        else:
            combined = df.reset_index(drop=True)
        _write_parquet(combined, path)
        logger.info("Appended %d row(s) to %s", len(df), table)
        return len(df)

    def replace(self, table: str, df: pd.DataFrame) -> int:
        _write_parquet(df.reset_index(drop=True), self._path(table))
        logger.info("Replaced %s with %d row(s)", table, len(df))
        return len(df)

    def close(self) -> None:
        self._closed = True


@contextmanager
def open_store(root: Union[str, Path] = PROC) -> Iterator[ParquetTableStore]:
    """Open a parquet store for one batch; closed on exit, even on failure."""
    store = ParquetTableStore(root)
    try:
        yield store
    finally:
        store.close()


def append_once(store: TableStore, table: str, df: pd.DataFrame, *, key: str = "expedition_id") -> pd.DataFrame:
    """
    Append only rows whose `key` is not in the table yet.

    Append itself never checks for duplicates, so re-running an expedition
    must go through this filter (or `replace`). Returns the rows written.
    """
    if key not in df.columns:
        raise KeyError(f"Rows have no {key!r} column")
    present = store.existing_values(table, key)
    skip = df[key].astype(str).isin(present)
    if skip.any():
        logger.warning(
            "%s: skipping %d row(s) already uploaded for %s",
            table, int(skip.sum()), sorted(set(df.loc[skip, key].astype(str))),
        )
    new = df.loc[~skip]
    if len(new) > 0:
        store.append(table, new)
    return new
