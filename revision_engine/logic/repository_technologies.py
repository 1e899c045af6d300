"""Technology data access helpers.

Reads load a technology with its stage rows. Writes are conditional on the
row's `row_version`; a write that matches no row raises OptimisticLockError.
Column names in generated SQL always come from the registry in
`revision_engine.models.technology`, never from caller input.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import text as sql_text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from revision_engine.db.base import json_param
from revision_engine.logic.errors import OptimisticLockError
from revision_engine.models.technology import (
    SCOPES,
    STAGE_ROOTS,
    SUBJECT_ROOT,
    ColumnKind,
    TechnologyAggregate,
)

logger = logging.getLogger(__name__)


def _placeholder(conn: Connection, root: str, column: str) -> str:
    if SCOPES[root].columns.get(column) == ColumnKind.JSON or column == "extended_data":
        return json_param(conn, column)
    return f":{column}"


def _checked_columns(root: str, values: Mapping[str, Any]) -> list[str]:
    allowed = SCOPES[root].columns
    unknown = [c for c in values if c not in allowed]
    if unknown:
        raise KeyError(f"Unknown columns for {root}: {', '.join(sorted(unknown))}")
    return list(values)


def _load_stage(conn: Connection, root: str, technology_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        sql_text(f"SELECT * FROM {SCOPES[root].table} WHERE technology_id = :tid"),
        {"tid": technology_id},
    ).fetchone()
    return dict(row._mapping) if row is not None else None


def _load_aggregate(conn: Connection, where: str, value: str) -> Optional[TechnologyAggregate]:
    row = conn.execute(
        sql_text(f"SELECT * FROM technologies WHERE {where} = :value"),
        {"value": value},
    ).fetchone()
    if row is None:
        return None
    technology = dict(row._mapping)
    stages = {root: _load_stage(conn, root, str(technology["id"])) for root in STAGE_ROOTS}
    return TechnologyAggregate(technology=technology, **stages)


def get_technology_by_tech_id(conn: Connection, tech_id: str) -> Optional[TechnologyAggregate]:
    return _load_aggregate(conn, "tech_id", tech_id)


def get_technology_by_id(conn: Connection, technology_id: str) -> Optional[TechnologyAggregate]:
    return _load_aggregate(conn, "id", technology_id)


def insert_technology(
    conn: Connection,
    values: Mapping[str, Any],
    *,
    user_id: Optional[str],
    now: str,
) -> str:
    """Insert a technology at row_version 1 and return its id.

    A tech_id already taken by a concurrent create surfaces as a conflict.
    """
    columns = _checked_columns(SUBJECT_ROOT, values)
    technology_id = str(uuid.uuid4())
    names = ["id", *columns, "row_version", "last_modified_by", "last_modified_at", "created_at", "updated_at"]
    placeholders = [":id", *(_placeholder(conn, SUBJECT_ROOT, c) for c in columns), "1", ":user_id", ":now", ":now", ":now"]
    params = {"id": technology_id, "user_id": user_id, "now": now, **values}
    try:
        conn.execute(
            sql_text(f"INSERT INTO technologies ({', '.join(names)}) VALUES ({', '.join(placeholders)})"),
            params,
        )
    except IntegrityError:
        logger.warning("binding_write.conflict scope=%s tech_id=%s reason=duplicate", SUBJECT_ROOT, values.get("tech_id"))
        raise OptimisticLockError(SUBJECT_ROOT, values.get("tech_id"), None) from None
    return technology_id


def insert_stage(
    conn: Connection,
    root: str,
    technology_id: str,
    values: Mapping[str, Any],
    *,
    extended_data: Optional[str],
    now: str,
) -> str:
    """Insert a missing stage row at row_version 1 and return its id."""
    spec = SCOPES[root]
    columns = _checked_columns(root, values)
    stage_id = str(uuid.uuid4())
    names = ["id", "technology_id", *columns, "extended_data", "row_version", "created_at", "updated_at"]
    placeholders = [
        ":id",
        ":technology_id",
        *(_placeholder(conn, root, c) for c in columns),
        _placeholder(conn, root, "extended_data"),
        "1",
        ":now",
        ":now",
    ]
    params = {"id": stage_id, "technology_id": technology_id, "extended_data": extended_data, "now": now, **values}
    try:
        conn.execute(
            sql_text(f"INSERT INTO {spec.table} ({', '.join(names)}) VALUES ({', '.join(placeholders)})"),
            params,
        )
    except IntegrityError:
        # Another writer created the stage row first
        logger.warning("binding_write.conflict scope=%s technology_id=%s reason=duplicate", root, technology_id)
        raise OptimisticLockError(root, technology_id, None) from None
    return stage_id


def update_scope_row(
    conn: Connection,
    root: str,
    record_id: str,
    expected_row_version: int,
    values: Mapping[str, Any],
    *,
    extended_data: Optional[str] = None,
    user_id: Optional[str] = None,
    now: str,
) -> int:
    """Conditionally update one row and return its new row_version.

    The update only applies when the stored row_version still equals
    `expected_row_version`; it then increments the version atomically.
    """
    spec = SCOPES[root]
    columns = _checked_columns(root, values)
    assignments = [f"{c} = {_placeholder(conn, root, c)}" for c in columns]
    params: Dict[str, Any] = dict(values)
    if extended_data is not None:
        if not spec.has_extended_data:
            raise KeyError(f"{root} has no extended_data")
        assignments.append(f"extended_data = {_placeholder(conn, root, 'extended_data')}")
        params["extended_data"] = extended_data
    if root == SUBJECT_ROOT:
        assignments.append("last_modified_by = :user_id")
        assignments.append("last_modified_at = :now")
        params["user_id"] = user_id
    assignments.append("updated_at = :now")
    assignments.append("row_version = row_version + 1")
    params.update({"now": now, "id": record_id, "expected": int(expected_row_version)})

    try:
        result = conn.execute(
            sql_text(
                f"UPDATE {spec.table} SET {', '.join(assignments)} "
                "WHERE id = :id AND row_version = :expected"
            ),
            params,
        )
    except IntegrityError:
        # tech_id renamed onto one another writer holds
        logger.warning("binding_write.conflict scope=%s id=%s reason=duplicate", root, record_id)
        raise OptimisticLockError(root, record_id, int(expected_row_version)) from None
    if result.rowcount == 0:
        logger.warning(
            "binding_write.conflict scope=%s id=%s expected=%s", root, record_id, expected_row_version
        )
        raise OptimisticLockError(root, record_id, int(expected_row_version))
    return int(expected_row_version) + 1


__all__ = [
    "get_technology_by_tech_id",
    "get_technology_by_id",
    "insert_technology",
    "insert_stage",
    "update_scope_row",
]
