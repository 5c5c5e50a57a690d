"""
Field Fusion Engine - Merge linked sources into one canonical field set.

For each field, sources are scanned in ascending priority and the first
non-empty value wins; the winning source code is recorded as provenance.
merge_source_data is pure: same inputs, same output.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from convergence.field_specs import KindSpec
from convergence.source_priority import MANUAL_SOURCE, SourcePriority, get_source_priority, is_manual


def is_empty(value: Any) -> bool:
    """None, blank strings and empty collections carry no information."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


# Zero is a placeholder for an unknown position, never a value to keep
COORDINATE_FIELDS = frozenset({"latitude", "longitude", "venue_latitude", "venue_longitude"})


def is_empty_field(name: str, value: Any) -> bool:
    if name in COORDINATE_FIELDS and not is_empty(value) and not value:
        return True
    return is_empty(value)


@dataclass(frozen=True)
class FusionSource:
    """One source's values for a kind's field set."""
    source_code: str
    values: Mapping[str, Any]
    scraped_id: Optional[int] = None


@dataclass
class FusionResult:
    merged: Dict[str, Any] = field(default_factory=dict)
    field_sources: Dict[str, str] = field(default_factory=dict)

    @property
    def contributing_sources(self) -> Set[str]:
        return set(self.field_sources.values())

    def to_dict(self) -> Dict[str, Any]:
        return {"merged": self.merged, "field_sources": self.field_sources}


def merge_source_data(
    sources: Iterable[FusionSource],
    fields: Iterable[str],
    priority: Optional[SourcePriority] = None,
) -> FusionResult:
    """
    Fuse sources field by field.

    Args:
        sources: Candidate sources, any order
        fields: Canonical field names to resolve
        priority: Priority table (defaults to the configured one)

    Returns:
        FusionResult with only the resolved fields present
    """
    priority = priority or get_source_priority()
    ordered: List[FusionSource] = priority.sort(sources)

    result = FusionResult()
    for name in fields:
        for source in ordered:
            value = source.values.get(name)
            if not is_empty_field(name, value):
                result.merged[name] = value
                result.field_sources[name] = source.source_code
                break
    return result


def _fusion_value(value: Any) -> Any:
    # Canonical timestamps fuse against scraped 'HH:MM:SS' strings
    if isinstance(value, datetime):
        return value.strftime("%H:%M:%S")
    return value


def source_from_scraped(spec: KindSpec, scraped) -> FusionSource:
    """Restrict a scraped row to the kind's field set, keyed by canonical name."""
    values = {canonical: getattr(scraped, attr, None) for canonical, attr in spec.fields.items()}
    return FusionSource(source_code=scraped.source_code, values=values, scraped_id=scraped.id)


def manual_source(spec: KindSpec, canonical) -> Optional[FusionSource]:
    """
    Synthetic source holding the hand-edited fields of a canonical row.

    Returns None when no field is attributed to a manual edit.
    """
    provenance = canonical.field_sources or {}
    values = {
        name: _fusion_value(getattr(canonical, name, None))
        for name, source_code in provenance.items()
        if name in spec.fields and is_manual(source_code)
    }
    if not values:
        return None
    return FusionSource(source_code=MANUAL_SOURCE, values=values)
