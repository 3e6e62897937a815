"""
Target table schemas as data.

A schema is an ordered list of fields, each with a semantic type, a required
flag and an optional allowed-value set. Schemas live in YAML files (bundled
ones under ``psharmony/schemas``) and may extend another schema, which is how
a method table adds its extension fields to the core site schema::

    name: uvs_sites
    extends: sites_core
    fields:
      - {name: habitat, type: STRING, allowed: [fore reef, back reef, ...]}

Validation compiles a schema into a pandera ``DataFrameSchema``.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

import pandera.pandas as pa
import yaml

from .config import SCHEMA_DIR

FIELD_TYPES = ("STRING", "INTEGER", "FLOAT", "BOOLEAN", "DATE", "TIME", "NUMERIC")

# pandas dtype each semantic type is stored as after normalization
PANDAS_DTYPES = {
    "STRING": "string",
    "INTEGER": "Int64",
    "FLOAT": "Float64",
    "NUMERIC": "Float64",
    "BOOLEAN": "boolean",
    "DATE": "datetime64[ns]",
    "TIME": "string",
}


@dataclass(frozen=True)
class FieldSpec:
    """One column of a target table."""

    name: str
    type: str
    required: bool = False
    allowed: Optional[tuple] = None
    description: str = ""

    def __post_init__(self):
        t = str(self.type).upper()
        if t not in FIELD_TYPES:
            raise ValueError(f"Field {self.name!r}: unknown type {self.type!r}; expected one of {FIELD_TYPES}")
        object.__setattr__(self, "type", t)
        if self.allowed is not None:
            object.__setattr__(self, "allowed", tuple(self.allowed))

    @property
    def dtype(self) -> str:
        return PANDAS_DTYPES[self.type]

    @classmethod
    def from_dict(cls, d: dict) -> "FieldSpec":
        unknown = set(d) - {"name", "type", "required", "allowed", "description"}
        if unknown:
            raise ValueError(f"Field {d.get('name')!r}: unknown attributes {sorted(unknown)}")
        return cls(
            name=str(d["name"]),
            type=d.get("type", "STRING"),
            required=bool(d.get("required", False)),
            allowed=d.get("allowed"),
            description=str(d.get("description", "") or ""),
        )


@dataclass(frozen=True)
class TableSchema:
    """Ordered field list for a named target table."""

    name: str
    fields: tuple = field(default_factory=tuple)
    key: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "fields", tuple(self.fields))
        names = [f.name for f in self.fields]
        dups = sorted({n for n in names if names.count(n) > 1})
        if dups:
            raise ValueError(f"Schema {self.name!r} repeats fields: {dups}")
        if self.key is not None and self.key not in names:
            raise ValueError(f"Schema {self.name!r}: key {self.key!r} is not one of its fields")

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    @property
    def required_fields(self) -> list[str]:
        return [f.name for f in self.fields if f.required]

    def get(self, name: str) -> FieldSpec:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(f"Schema {self.name!r} has no field {name!r}")

    def __contains__(self, name: str) -> bool:
        return name in self.field_names

    def extend(self, name: str, fields: Iterable[FieldSpec], key: Optional[str] = None) -> "TableSchema":
        """
        New schema with `fields` added after this one's.
        A field with an existing name replaces the original in place.
        """
        out = list(self.fields)
        for f in fields:
            names = [x.name for x in out]
            if f.name in names:
                out[names.index(f.name)] = f
            else:
                out.append(f)
        return TableSchema(name=name, fields=tuple(out), key=key or self.key)

    def dtypes(self) -> dict[str, str]:
        return {f.name: f.dtype for f in self.fields}


# -------------------------------
# Loading
# -------------------------------

def available_schemas(schema_dir: Union[str, Path] = SCHEMA_DIR) -> list[str]:
    """Names of the schemas bundled in `schema_dir`."""
    return sorted(p.stem for p in Path(schema_dir).glob("*.yaml"))

def _resolve_path(name_or_path: Union[str, Path], schema_dir: Path) -> Path:
    p = Path(name_or_path)
    if p.suffix in (".yaml", ".yml") and p.exists():
        return p
    candidate = schema_dir / f"{name_or_path}.yaml"
    if candidate.exists():
        return candidate
    raise FileNotFoundError(f"Schema {name_or_path!r} not found (looked in {schema_dir})")

def schema_from_dict(d: dict, *, schema_dir: Union[str, Path] = SCHEMA_DIR, _seen: Sequence[str] = ()) -> TableSchema:
    """Build a TableSchema from a parsed description, resolving `extends`."""
    name = str(d["name"])
    fields = [FieldSpec.from_dict(f) for f in d.get("fields") or []]
    parent = d.get("extends")
    if parent:
        if parent in _seen or parent == name:
            raise ValueError(f"Circular schema inheritance: {list(_seen) + [name, parent]}")
        base = load_schema(parent, schema_dir=schema_dir, _seen=tuple(_seen) + (name,))
        return base.extend(name, fields, key=d.get("key"))
    return TableSchema(name=name, fields=tuple(fields), key=d.get("key"))

def load_schema(
    name_or_path: Union[str, Path],
    *,
    schema_dir: Union[str, Path] = SCHEMA_DIR,
    _seen: Sequence[str] = (),
) -> TableSchema:
    """
    Load a schema by bundled name (e.g. "uvs_sites") or YAML path.

    Args:
        name_or_path: Schema name in `schema_dir` or a path to a YAML file
        schema_dir: Directory searched for names and `extends` parents

    Returns:
        TableSchema with inherited fields resolved
    """
    if isinstance(name_or_path, TableSchema):
        return name_or_path
    schema_dir = Path(schema_dir)
    path = _resolve_path(name_or_path, schema_dir)
    with open(path, "r", encoding="utf-8") as fh:
        d = yaml.safe_load(fh)
    if not isinstance(d, dict) or "name" not in d:
        raise ValueError(f"{path} is not a schema description (needs a 'name' and 'fields')")
    # parents of a user file may sit beside it
    parent = d.get("extends")
    search = path.parent if parent and (path.parent / f"{parent}.yaml").exists() else schema_dir
    return schema_from_dict(d, schema_dir=search, _seen=_seen)

def dump_schema(schema: TableSchema) -> dict:
    """Flat (inheritance-resolved) description suitable for yaml.safe_dump."""
    out = {"name": schema.name}
    if schema.key:
        out["key"] = schema.key
    out["fields"] = []
    for f in schema.fields:
        d = {"name": f.name, "type": f.type, "required": f.required}
        if f.allowed is not None:
            d["allowed"] = list(f.allowed)
        if f.description:
            d["description"] = f.description
        out["fields"].append(d)
    return out


# -------------------------------
# pandera
# -------------------------------

def to_pandera(schema: TableSchema) -> pa.DataFrameSchema:
    """
    Compile a TableSchema into a pandera DataFrameSchema.

    Dtypes are not checked here: the normalizer coerces cells itself so that
    every coercion failure can be reported per cell.
    """
    columns = {}
    for f in schema.fields:
        checks = []
        if f.allowed is not None:
            checks.append(pa.Check.isin(list(f.allowed), ignore_na=True))
        columns[f.name] = pa.Column(
            None,
            checks=checks,
            nullable=not f.required,
            required=True,
            name=f.name,
        )
    return pa.DataFrameSchema(columns, name=schema.name, strict=False, ordered=False)

