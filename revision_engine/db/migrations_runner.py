"""Lightweight SQL migrations runner.

Applies .sql files in lexical order from the `migrations/` directory. Skips
rollback files and records applied filenames in a file-backed journal
(`migrations/_journal.json`) so the same migration is not reapplied. The SQL
files are written to run unchanged on PostgreSQL and SQLite.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)

DEFAULT_MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "migrations"
JOURNAL_NAME = "_journal.json"


def _iter_sql_files(root: Path) -> Iterable[Path]:
    for p in sorted(root.glob("*.sql")):
        if "rollback" in p.name.lower():
            continue
        yield p


def _split_statements(sql: str) -> list[str]:
    statements: list[str] = []
    for stmt in sql.split(";"):
        lines = [ln for ln in stmt.splitlines() if not ln.strip().startswith("--")]
        s = "\n".join(lines).strip()
        if not s:
            continue
        if s.upper() in {"BEGIN", "COMMIT", "END"}:
            continue
        statements.append(s)
    return statements


def _exec_sql_compat(conn: Connection, sql: str) -> None:
    """Execute a multi-statement SQL file.

    SQLite's DB-API driver refuses several statements in one execute() call,
    so files are split on ';' for every dialect. Migration files must not
    contain semicolons inside string literals.
    """
    for statement in _split_statements(sql):
        conn.exec_driver_sql(statement)


def _load_journal(journal_path: Path) -> list[dict]:
    if not journal_path.exists():
        return []
    try:
        data = json.loads(journal_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        logger.error("migration_journal_parse_failed path=%s", str(journal_path), exc_info=True)
        return []
    if not isinstance(data, list):
        return []
    return [e for e in data if isinstance(e, dict)]


def apply_migrations(
    engine: Engine,
    migrations_dir: str | os.PathLike[str] | None = None,
    *,
    journal_path: str | os.PathLike[str] | None = None,
) -> list[str]:
    """Apply pending migrations and return the filenames applied in this run.

    The journal defaults to `_journal.json` inside the migrations directory;
    pass `journal_path` to track a separate database (tests use a temp file).
    """
    root = Path(migrations_dir) if migrations_dir is not None else DEFAULT_MIGRATIONS_DIR
    if not root.exists():
        logger.warning("migrations_dir_missing path=%s", str(root))
        return []

    journal_path = Path(journal_path) if journal_path is not None else root / JOURNAL_NAME
    journal_entries = _load_journal(journal_path)
    applied = {Path(str(e.get("filename", ""))).name for e in journal_entries}
    newly_applied: list[str] = []

    with engine.begin() as conn:
        for sql_path in _iter_sql_files(root):
            fname = sql_path.name
            if fname in applied:
                continue
            sql = sql_path.read_text(encoding="utf-8")
            if not sql.strip():
                continue
            _exec_sql_compat(conn, sql)
            logger.info("migration_applied file=%s dialect=%s", fname, conn.dialect.name)
            journal_entries.append(
                {
                    "filename": f"migrations/{fname}",
                    # ISO-8601 UTC without fractional seconds
                    "applied_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
                }
            )
            newly_applied.append(fname)

    if newly_applied:
        _atomic_write_json(journal_path, journal_entries)
    return newly_applied


def _atomic_write_json(path: Path, content: list[dict]) -> None:
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(content, ensure_ascii=False, indent=2), encoding="utf-8")
    os.replace(tmp_path, path)


__all__ = ["apply_migrations", "DEFAULT_MIGRATIONS_DIR"]
