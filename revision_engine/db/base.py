"""SQLAlchemy engine and transaction helpers.

The engine targets PostgreSQL in production but supports SQLite for local
development and tests. No ORM models are defined here; this module only
manages connection lifecycle and the few dialect differences the repositories
need to care about.
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def _db_url() -> str:
    return (
        os.getenv("TEST_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or "sqlite+pysqlite:///:memory:"
    )


# Module-level cached Engine so repositories share one pool
_ENGINE: Engine | None = None
_ENGINE_URL: str | None = None


def get_engine(url: str | None = None) -> Engine:
    """Return a singleton SQLAlchemy Engine for the given URL.

    For SQLite in-memory URLs, use a StaticPool to keep a single connection
    alive across sessions and threads; otherwise the schema would vanish
    between connections.
    """
    global _ENGINE, _ENGINE_URL
    resolved_url = url or _db_url()

    if _ENGINE is None or _ENGINE_URL != resolved_url:
        kwargs: dict = {"future": True, "pool_pre_ping": True}
        if resolved_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in resolved_url:
                kwargs["poolclass"] = StaticPool
        _ENGINE = create_engine(resolved_url, **kwargs)
        _ENGINE_URL = resolved_url
        logger.info("db_engine_created dialect=%s", _ENGINE.dialect.name)

    return _ENGINE


def reset_engine() -> None:
    """Dispose the cached engine; the next get_engine() call rebuilds it."""
    global _ENGINE, _ENGINE_URL
    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = None
    _ENGINE_URL = None


@contextmanager
def transaction(engine: Engine | None = None) -> Generator[Connection, None, None]:
    """Yield a connection inside BEGIN … COMMIT, rolling back on any error."""
    eng = engine or get_engine()
    with eng.connect() as conn:
        trans = conn.begin()
        try:
            yield conn
            trans.commit()
        except Exception:
            trans.rollback()
            logger.warning("db_transaction_rolled_back", exc_info=True)
            raise


def is_sqlite(conn: Connection) -> bool:
    return (getattr(conn.dialect, "name", "") or "").lower() == "sqlite"


def json_param(conn: Connection, name: str) -> str:
    """Return the SQL placeholder for a JSON-typed bind parameter.

    PostgreSQL needs an explicit JSONB cast for text binds; SQLite stores the
    JSON text as-is.
    """
    if is_sqlite(conn):
        return f":{name}"
    return f"CAST(:{name} AS JSONB)"


def decode_json_column(raw: Any) -> Any:
    """Decode a JSON column value read back from the driver.

    psycopg2 returns JSONB already decoded. SQLite returns the stored text,
    except that scalar documents such as `3` come back as numbers because a
    JSONB-declared column has numeric affinity; those pass through as-is.
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw
    return raw


def encode_json_param(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, default=str)


__all__ = [
    "get_engine",
    "reset_engine",
    "transaction",
    "is_sqlite",
    "json_param",
    "decode_json_column",
    "encode_json_param",
]
