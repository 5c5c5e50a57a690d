"""
Gateway Rate Limiter - Per-service pacing for external lookups.

Each service (geocoding, musicbrainz, wikipedia) has a minimum interval
between calls. Callers block until the interval has passed; nothing is
queued. Clock and sleep are injected so tests run without waiting.

Intervals come from backend/config/gateway_rate_limits.yaml.
"""
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "defaults": {
        "min_interval_seconds": 1.0,
        "max_consecutive_errors": 5,
    },
    "services": {
        "geocoding": {"min_interval_seconds": 1.1},
        "musicbrainz": {"min_interval_seconds": 1.1},
        "wikipedia": {"min_interval_seconds": 0.5},
    },
}


def load_rate_limit_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load rate limit configuration from YAML."""
    config_path = config_path or str(
        Path(__file__).parent.parent / "config" / "gateway_rate_limits.yaml"
    )
    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f) or {}
            logger.info(f"Loaded rate limits from {config_path}")
            return config
    except FileNotFoundError:
        logger.warning(
            f"Rate limit config not found at {config_path}, using defaults"
        )
        return DEFAULT_CONFIG


class RateLimiter:
    """Minimum-interval limiter keyed by service name."""

    def __init__(
        self,
        intervals: Optional[Dict[str, float]] = None,
        default_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.intervals = dict(intervals or {})
        self.default_interval = default_interval
        self._clock = clock
        self._sleep = sleep
        self._last_call: Dict[str, float] = {}

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None, **kwargs) -> "RateLimiter":
        config = config if config is not None else load_rate_limit_config()
        defaults = config.get("defaults", {})
        intervals = {
            name: float(service.get("min_interval_seconds", defaults.get("min_interval_seconds", 1.0)))
            for name, service in (config.get("services") or {}).items()
        }
        return cls(
            intervals=intervals,
            default_interval=float(defaults.get("min_interval_seconds", 1.0)),
            **kwargs,
        )

    def interval_for(self, service: str) -> float:
        return self.intervals.get(service, self.default_interval)

    def wait(self, service: str) -> float:
        """
        Block until `service` may be called again, then record the call.

        Returns:
            Seconds slept (0 when no wait was needed)
        """
        interval = self.interval_for(service)
        last = self._last_call.get(service)
        slept = 0.0
        if last is not None:
            elapsed = self._clock() - last
            if elapsed < interval:
                slept = interval - elapsed
                logger.debug(f"Rate limited for {service}, waiting {slept:.2f}s")
                self._sleep(slept)
        self._last_call[service] = self._clock()
        return slept


_MISS = object()


class ResultCache:
    """
    In-memory lookup cache for the process lifetime.

    Misses (None results) are cached too, so a failing address is not
    looked up twice in one run.
    """

    def __init__(self):
        self._store: Dict[Tuple[str, str], Any] = {}
        self.hits = 0

    def get(self, namespace: str, key: str, default=None):
        value = self._store.get((namespace, key), _MISS)
        if value is _MISS:
            return default
        self.hits += 1
        return value

    def contains(self, namespace: str, key: str) -> bool:
        return (namespace, key) in self._store

    def set(self, namespace: str, key: str, value: Any):
        self._store[(namespace, key)] = value

    def __len__(self):
        return len(self._store)
