"""
Centralized survey-method registry.

- METHODS maps each method code to the rule used for site numbering and
  station suffixing.
- SUFFIX_KINDS lists the suffix rules a method may use.
"""

from __future__ import annotations
from dataclasses import dataclass, replace

from .config import SITE_ID_MIN_WIDTH

SUFFIX_KINDS = ("depth", "rig", "constant")


@dataclass(frozen=True)
class MethodRule:
    """How identifiers are built for one survey method."""

    code: str
    suffix_kind: str
    depth_fields: tuple = ("depth_m", "depth")
    rig_fields: tuple = ("rig", "rig_label")
    constant_suffix: str = "01"
    site_id_width: int = SITE_ID_MIN_WIDTH
    description: str = ""

    def __post_init__(self):
        if self.suffix_kind not in SUFFIX_KINDS:
            raise ValueError(f"Unknown suffix kind {self.suffix_kind!r}; expected one of {SUFFIX_KINDS}")
        if self.site_id_width < 2:
            raise ValueError("site_id_width must be at least 2")


METHODS: dict[str, MethodRule] = {
    # Underwater visual methods: one station per depth stratum
    "uvs": MethodRule("uvs", "depth", description="Underwater visual survey (fish + benthos)"),
    "fish": MethodRule("fish", "depth", description="Fish belt transects"),
    "lpi": MethodRule("lpi", "depth", description="Benthic line-point intercept"),
    "edna": MethodRule("edna", "depth", description="Environmental DNA water samples"),

    # Pelagic camera rigs: one station per rig
    "pbruvs": MethodRule("pbruvs", "rig", description="Pelagic baited remote underwater video"),

    # Submersible: station per transect depth, legacy two-digit site numbers
    "sub": MethodRule("sub", "depth", depth_fields=("transect_depth_m", "transect_depth"), site_id_width=2,
                      description="Submersible dive"),

    # Single-station methods
    "dscm": MethodRule("dscm", "constant", description="Deep-sea camera"),
    "sbruvs": MethodRule("sbruvs", "constant", description="Seabed baited remote underwater video"),
}


def get_method(code: str) -> MethodRule:
    """Return the rule for a method code (case-insensitive)."""
    key = str(code).strip().lower()
    rule = METHODS.get(key)
    if rule is None:
        raise ValueError(f"Unknown method {code!r}. Known: {sorted(METHODS)}")
    return rule


def register_method(rule: MethodRule) -> MethodRule:
    """Add or replace a method rule. Returns the stored rule."""
    stored = replace(rule, code=rule.code.strip().lower())
    METHODS[stored.code] = stored
    return stored


def configure_method(code: str, **changes) -> MethodRule:
    """Update fields of an existing rule, e.g. configure_method("sub", site_id_width=3)."""
    return register_method(replace(get_method(code), **changes))

