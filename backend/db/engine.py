"""
Store connection warmup.

Flask owns engine creation (db.init_app with Config.SQLALCHEMY_ENGINE_OPTIONS).
Batch runs call warmup() before touching any record: a store that cannot
be reached is the one failure that aborts a whole run.

Warmup with retry:
    - Handles managed-Postgres cold starts
    - Exponential backoff (0.75s, 1.5s, 3s, 6s)
    - Fails fast after 4 attempts with the last error
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

log = logging.getLogger(__name__)


def warmup(
    engine: Engine,
    attempts: int = 4,
    base_sleep: float = 0.75,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Warm up the database connection with exponential backoff retry.

    Args:
        engine: SQLAlchemy engine to warm up
        attempts: Number of retry attempts (default 4)
        base_sleep: Base sleep time in seconds (doubles each attempt)
        sleep: Injected for tests

    Raises:
        OperationalError: If all attempts fail
    """
    last_error: Optional[Exception] = None

    for i in range(attempts):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            log.info("db_warmup_success attempt=%d", i + 1)
            return
        except OperationalError as e:
            last_error = e
            sleep_s = base_sleep * (2 ** i)
            log.warning(
                "db_warmup_retry attempt=%d/%d sleep_s=%.2f err=%s",
                i + 1, attempts, sleep_s, str(e)[:100]
            )
            if i + 1 < attempts:
                sleep(sleep_s)

    log.error("db_warmup_failed after %d attempts", attempts)
    raise last_error  # type: ignore[misc]
