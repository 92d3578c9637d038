"""Collection layer: resource kinds, listings, and their text renderings."""

from pgo_support.collection.models import (
    NAMESPACED_RESOURCES,
    OPERATOR_RESOURCES,
    OTHER_NAMESPACED_RESOURCES,
    ResourceKindSpec,
)
from pgo_support.collection.resources import (
    ResourceCollector,
    ResourceListing,
    list_with_fallback,
    manifest,
)
from pgo_support.collection.tables import human_duration, summarize, summarize_events

__all__ = [
    "NAMESPACED_RESOURCES",
    "OPERATOR_RESOURCES",
    "OTHER_NAMESPACED_RESOURCES",
    "ResourceCollector",
    "ResourceKindSpec",
    "ResourceListing",
    "human_duration",
    "list_with_fallback",
    "manifest",
    "summarize",
    "summarize_events",
]
