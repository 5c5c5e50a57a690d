"""
Change Detector - Diff a stored scraped snapshot against an incoming scrape.

Rules:
- a field is reported only if its normalized values differ
- an empty incoming value never overwrites a non-empty stored one
- dates compare as YYYY-MM-DD, times as HH:MM
- artist lists compare order-independently by (name, genres)
- coordinates compare only when both sides are present and non-zero, and
  move only at >= 0.0001 degrees on either axis

Keys of the returned map are scraped-table attribute names.
"""
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from convergence.audit import to_jsonable
from convergence.field_specs import get_spec
from convergence.fusion import is_empty
from utils.normalize import date_key, time_key

logger = logging.getLogger(__name__)

COORDINATE_THRESHOLD = 0.0001

DATE_FIELDS = frozenset({"date"})
TIME_FIELDS = frozenset({"start_time", "end_time"})
ARTIST_LIST_FIELDS = frozenset({"artists_json"})
NAMED_LIST_FIELDS = frozenset({"organizers_json"})
UNORDERED_FIELDS = frozenset({"genres"})

# (latitude attr, longitude attr) per kind
COORDINATE_PAIRS = {
    "event": ("venue_latitude", "venue_longitude"),
    "venue": ("latitude", "longitude"),
}


def _value(source, name: str):
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def _name_key(item) -> str:
    name = item.get("name") if isinstance(item, Mapping) else getattr(item, "name", item)
    return " ".join(str(name or "").lower().split())


def _artist_key(item) -> Tuple[str, Tuple[str, ...]]:
    genres = item.get("genres") if isinstance(item, Mapping) else getattr(item, "genres", None)
    return _name_key(item), tuple(sorted(str(g).lower() for g in genres or []))


def normalize_value(name: str, value: Any):
    """Comparison form of a field value."""
    if is_empty(value):
        return None
    if name in DATE_FIELDS:
        return date_key(value)
    if name in TIME_FIELDS:
        return time_key(value)
    if name in ARTIST_LIST_FIELDS:
        return sorted(_artist_key(item) for item in value)
    if name in NAMED_LIST_FIELDS:
        return sorted(_name_key(item) for item in value)
    if name in UNORDERED_FIELDS:
        return sorted(str(v).lower() for v in value)
    if isinstance(value, str):
        return " ".join(value.split())
    if isinstance(value, float):
        return round(value, 7)
    if hasattr(value, "model_dump"):
        return value.model_dump(exclude_none=True)
    return value


def _coordinate(value) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number != 0 else None


def coordinates_moved(old_lat, old_lon, new_lat, new_lon) -> bool:
    """Both positions known and at least one axis moved by the threshold."""
    old = (_coordinate(old_lat), _coordinate(old_lon))
    new = (_coordinate(new_lat), _coordinate(new_lon))
    if None in old or None in new:
        return False
    return any(round(abs(a - b), 7) >= COORDINATE_THRESHOLD for a, b in zip(old, new))


def detect_changes(kind: str, existing, incoming) -> Dict[str, Dict[str, Any]]:
    """
    Field-level diff between a stored snapshot and an incoming record.

    Args:
        kind: event, venue, artist or organizer
        existing: Scraped row (or mapping) as stored
        incoming: Normalized record (or mapping) about to be written

    Returns:
        {attribute: {'old': ..., 'new': ...}}; empty when nothing changed
    """
    spec = get_spec(kind)
    coordinate_fields = COORDINATE_PAIRS.get(spec.kind)
    changes: Dict[str, Dict[str, Any]] = {}

    for name in spec.fields.values():
        if coordinate_fields and name in coordinate_fields:
            continue
        new = _value(incoming, name)
        if is_empty(new):
            continue
        old = _value(existing, name)
        if normalize_value(name, old) != normalize_value(name, new):
            changes[name] = {"old": to_jsonable(old), "new": to_jsonable(_plain(new))}

    if coordinate_fields:
        lat_name, lon_name = coordinate_fields
        old_lat, old_lon = _value(existing, lat_name), _value(existing, lon_name)
        new_lat, new_lon = _value(incoming, lat_name), _value(incoming, lon_name)
        if coordinates_moved(old_lat, old_lon, new_lat, new_lon):
            changes[lat_name] = {"old": old_lat, "new": float(new_lat)}
            changes[lon_name] = {"old": old_lon, "new": float(new_lon)}

    return changes


def _plain(value):
    if hasattr(value, "model_dump"):
        return value.model_dump(exclude_none=True)
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def mark_changed(scraped, changes: Dict[str, Dict[str, Any]]) -> bool:
    """
    Persist a non-empty diff on the scraped row.

    Merged over any pending diff (keeping the oldest 'old' per field); a
    new diff also revives a dismissed event suggestion.
    """
    if not changes:
        return False
    pending = dict(scraped.changes or {}) if scraped.has_changes else {}
    for name, change in changes.items():
        if name in pending:
            pending[name] = {"old": pending[name].get("old"), "new": change["new"]}
        else:
            pending[name] = dict(change)
    scraped.changes = pending
    scraped.has_changes = True
    if hasattr(scraped, "is_dismissed"):
        scraped.is_dismissed = False
    logger.info(f"[Changes] {scraped!r} changed: {sorted(changes)}")
    return True
