from __future__ import annotations

import logging
import math
from collections.abc import Callable
from typing import Any

from achievement_tracker.errors import StoreUnavailable

logger = logging.getLogger(__name__)


def _import_psycopg() -> Any:
    try:
        import psycopg  # type: ignore
    except ImportError as exc:
        raise RuntimeError("psycopg is required for PostgreSQL backends; install psycopg[binary]") from exc
    return psycopg


class PostgresTxRunner:
    """Run callback logic in one PostgreSQL transaction bounded by a statement deadline."""

    def __init__(self, dsn: str, *, timeout_ms: int = 5000) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must not be empty")
        if timeout_ms < 1:
            raise ValueError("timeout_ms must be positive")
        self._dsn = dsn.strip()
        self._timeout_ms = int(timeout_ms)

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    def run_in_tx(self, *, fn: Callable[[Any], Any]) -> Any:
        psycopg = _import_psycopg()
        try:
            with psycopg.connect(self._dsn, connect_timeout=max(1, math.ceil(self._timeout_ms / 1000))) as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT set_config('statement_timeout', %s, true)", (str(self._timeout_ms),))
                result = fn(conn)
                conn.commit()
                return result
        except psycopg.Error as exc:
            # Outcome unknown: the failure may have hit after COMMIT was sent.
            logger.warning("postgres_unavailable error=%s timeout_ms=%s", type(exc).__name__, self._timeout_ms)
            raise StoreUnavailable() from exc
