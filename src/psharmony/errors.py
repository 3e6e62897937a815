"""Error taxonomy for identifier derivation, normalization and linking.

Derivation and joins fail fast because a malformed key corrupts every
downstream join. Normalization never raises these: it collects an issue
report instead, and `SchemaViolationError` is only raised when a caller
asks for a clean table (e.g. before upload).
"""

from __future__ import annotations
from typing import Any, Iterable, Optional


class HarmonizationError(Exception):
    """Base class for all psharmony errors."""


class MissingKeyFieldError(HarmonizationError, KeyError):
    """A row lacks a field needed to build its identifier."""

    def __init__(self, field: str, row_key: Any = None, message: Optional[str] = None):
        self.field = field
        self.row_key = row_key
        if message is None:
            where = f" for row {row_key!r}" if row_key is not None else ""
            message = f"Missing key field {field!r}{where}; identifier cannot be derived."
        super().__init__(message)

    def __str__(self) -> str:
        # KeyError would repr() the message otherwise
        return str(self.args[0])


class DuplicateKeyError(HarmonizationError, ValueError):
    """Generated or supplied identifiers collide."""

    def __init__(self, keys: Iterable[Any], message: Optional[str] = None):
        self.keys = list(keys)
        if message is None:
            message = f"Duplicate identifiers (first 10): {self.keys[:10]}"
        super().__init__(message)


class SchemaViolationError(HarmonizationError, ValueError):
    """An issue report was non-empty where a clean table was required."""

    def __init__(self, issues, message: Optional[str] = None):
        self.issues = issues
        if message is None:
            message = f"{len(issues)} schema issue(s) must be resolved first."
        super().__init__(message)


class AmbiguousJoinError(HarmonizationError, ValueError):
    """More than one right-hand row matches a key after the tie-break."""

    def __init__(self, keys: Iterable[Any], source_table: str = "right", message: Optional[str] = None):
        self.keys = list(keys)
        self.source_table = source_table
        if message is None:
            message = (
                f"{source_table} has {len(self.keys)} ambiguous key(s) with no single "
                f"accepted row (first 10): {self.keys[:10]}"
            )
        super().__init__(message)
