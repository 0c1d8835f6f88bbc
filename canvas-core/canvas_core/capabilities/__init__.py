"""
Capability Detection
====================
Discovers the Canvas version once and answers feature checks without blocking.
"""

from .models import (
    META_HEADER,
    FEATURE_MIN_VERSIONS,
    KNOWN_FEATURES,
    CanvasVersion,
    CapabilityDescriptor,
    features_for_version,
    parse_meta_header,
    parse_version,
)
from .probe import CapabilityProbe, DISCOVERY_PATH

__all__ = [
    # Models
    "META_HEADER",
    "FEATURE_MIN_VERSIONS",
    "KNOWN_FEATURES",
    "CanvasVersion",
    "CapabilityDescriptor",
    "features_for_version",
    "parse_meta_header",
    "parse_version",
    # Probe
    "CapabilityProbe",
    "DISCOVERY_PATH",
]
