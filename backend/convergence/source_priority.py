"""
Source Priority - Which source wins a field when several supply it.

Loaded from backend/config/source_priority.yaml, falling back to the
built-in table when the file is missing.
"""
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

logger = logging.getLogger(__name__)

MANUAL_SOURCE = "manual"
# Older rows attribute hand edits to 'og'
MANUAL_ALIASES = frozenset({MANUAL_SOURCE, "og"})

DEFAULT_PRIORITIES: Dict[str, int] = {
    "manual": 1,
    "og": 1,
    "musicbrainz": 2,
    "mb": 5,
    "ra": 5,
    "tm": 6,
    "eb": 7,
    "di": 8,
    "fb": 9,
}
DEFAULT_UNKNOWN_PRIORITY = 10


def is_manual(source_code: Optional[str]) -> bool:
    return bool(source_code) and source_code.lower() in MANUAL_ALIASES


class SourcePriority:
    """Priority table keyed by source code."""

    def __init__(self, priorities: Optional[Dict[str, int]] = None, default: int = DEFAULT_UNKNOWN_PRIORITY):
        table = DEFAULT_PRIORITIES if priorities is None else priorities
        self._priorities = {code.lower(): int(p) for code, p in table.items()}
        self.default = int(default)

    @classmethod
    def from_yaml(cls, path: Optional[str] = None) -> "SourcePriority":
        """
        Load priorities from YAML.

        Args:
            path: Config file. Defaults to backend/config/source_priority.yaml
        """
        path = path or str(Path(__file__).parent.parent / "config" / "source_priority.yaml")
        try:
            with open(path, "r") as f:
                config: Dict[str, Any] = yaml.safe_load(f) or {}
            logger.info(f"Loaded source priorities from {path}")
        except FileNotFoundError:
            logger.warning(f"Source priority config not found at {path}, using defaults")
            return cls()

        priorities = dict(DEFAULT_PRIORITIES)
        priorities.update(config.get("sources") or {})
        return cls(priorities, default=config.get("default", DEFAULT_UNKNOWN_PRIORITY))

    def priority(self, source_code: Optional[str]) -> int:
        if not source_code:
            return self.default
        return self._priorities.get(source_code.lower(), self.default)

    def sort(self, items: Iterable, key=lambda item: item.source_code) -> List:
        """Stable ascending sort by priority of each item's source code."""
        return sorted(items, key=lambda item: self.priority(key(item)))

    def to_dict(self) -> Dict[str, int]:
        return dict(self._priorities)


_source_priority: Optional[SourcePriority] = None


def get_source_priority() -> SourcePriority:
    """Get the process-wide priority table (lazy init)."""
    global _source_priority
    if _source_priority is None:
        _source_priority = SourcePriority.from_yaml()
    return _source_priority
