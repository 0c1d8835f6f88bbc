"""
Capability Models
=================
Version parsing, the feature table and the published capability descriptor.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

META_HEADER = "X-Canvas-Meta"

# Feature -> first Canvas release that ships it
FEATURE_MIN_VERSIONS: Dict[str, Tuple[int, int, int]] = {
    "graphql": (2019, 0, 0),
    "new_quizzes": (2020, 0, 0),
    "outcomes": (2021, 0, 0),
    "rubrics_v2": (2022, 0, 0),
    "canvas_studio": (2023, 0, 0),
}

KNOWN_FEATURES: FrozenSet[str] = frozenset(FEATURE_MIN_VERSIONS)

# Accepts both semantic (1.2.3) and date-style (2024-01-15, 2024.01.15) versions
_VERSION_RE = re.compile(r"(\d+)[.\-](\d+)[.\-](\d+)")


@dataclass(frozen=True, order=True)
class CanvasVersion:
    """A parsed three-part Canvas version."""
    major: int
    minor: int
    patch: int
    raw: str = field(default="", compare=False)

    def is_at_least(self, major: int, minor: int = 0, patch: int = 0) -> bool:
        return (self.major, self.minor, self.patch) >= (major, minor, patch)

    def __str__(self) -> str:
        return self.raw or f"{self.major}.{self.minor}.{self.patch}"


def parse_version(raw: str) -> Optional[CanvasVersion]:
    """Parse the first three-part number in `raw`, or None if there is none."""
    match = _VERSION_RE.search(raw or "")
    if not match:
        return None
    major, minor, patch = (int(group) for group in match.groups())
    return CanvasVersion(major=major, minor=minor, patch=patch, raw=raw)


def parse_meta_header(value: Optional[str]) -> Dict[str, str]:
    """
    Parse `key=value;key=value` metadata.

    Keys are lower-cased; segments without `=` and empty keys are ignored.
    """
    meta: Dict[str, str] = {}
    if not value:
        return meta
    for segment in value.split(";"):
        key, sep, val = segment.partition("=")
        key = key.strip().lower()
        if not sep or not key:
            continue
        meta[key] = val.strip()
    return meta


def features_for_version(version: Optional[CanvasVersion]) -> FrozenSet[str]:
    if version is None:
        return frozenset()
    return frozenset(
        name for name, minimum in FEATURE_MIN_VERSIONS.items()
        if version.is_at_least(*minimum)
    )


@dataclass(frozen=True)
class CapabilityDescriptor:
    """
    Result of the one-time capability probe.

    Published once and never edited; readers can hold a reference without
    locking.
    """
    version: Optional[str] = None
    features: FrozenSet[str] = frozenset()
    meta: Mapping[str, str] = field(default_factory=dict)

    @property
    def parsed_version(self) -> Optional[CanvasVersion]:
        return parse_version(self.version) if self.version else None

    def supports(self, feature: str) -> bool:
        return feature in self.features

    @classmethod
    def from_meta(cls, meta: Mapping[str, str]) -> "CapabilityDescriptor":
        """Build a descriptor from parsed `X-Canvas-Meta` pairs."""
        version = meta.get("version") or None
        hinted = frozenset(
            item.strip()
            for item in meta.get("features", "").split(",")
            if item.strip()
        )
        implied = features_for_version(parse_version(version) if version else None)
        return cls(version=version, features=hinted | implied, meta=dict(meta))
