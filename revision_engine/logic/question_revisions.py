"""Question revision store.

A question in `question_dictionary` points at its current revision in
`question_revisions`. Revisions are append-only: creating one inserts
version `max + 1` and advances the dictionary pointer with a conditional
update on the previous `current_version`, so two editors racing on the same
question cannot both win. Answering a question never creates a revision.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import bindparam, text as sql_text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from revision_engine.db.base import (
    decode_json_column,
    encode_json_param,
    get_engine,
    json_param,
    transaction,
)
from revision_engine.logic.errors import NotFoundError, OptimisticLockError
from revision_engine.logic.events import QUESTION_REVISION_CREATED, publish
from revision_engine.logic.timestamps import format_timestamp
from revision_engine.models.answers import QuestionRevision, RevisionRef
from revision_engine.models.template import DataSource, QuestionDictionary

logger = logging.getLogger(__name__)

# Fields of a question that a revision snapshots
REVISION_CONTENT_FIELDS = ("label", "help_text", "options", "validation")

_DICTIONARY_COLUMNS = (
    "id, question_key, label, help_text, options, validation, binding_path, "
    "data_source, current_version, current_revision_id"
)
_REVISION_COLUMNS = (
    "id, question_key, version_number, label, help_text, options, validation, "
    "created_at, created_by, change_reason, significant_change"
)


def _dictionary_from_row(row: Any) -> QuestionDictionary:
    m = row._mapping
    return QuestionDictionary(
        id=str(m["id"]),
        question_key=str(m["question_key"]),
        label=m["label"] or "",
        help_text=m["help_text"],
        options=decode_json_column(m["options"]),
        validation=decode_json_column(m["validation"]),
        binding_path=str(m["binding_path"]),
        data_source=str(m["data_source"]),
        current_version=int(m["current_version"]),
        current_revision_id=m["current_revision_id"],
    )


def _revision_from_row(row: Any) -> QuestionRevision:
    m = row._mapping
    return QuestionRevision(
        id=str(m["id"]),
        question_key=str(m["question_key"]),
        version_number=int(m["version_number"]),
        label=m["label"] or "",
        help_text=m["help_text"],
        options=decode_json_column(m["options"]),
        validation=decode_json_column(m["validation"]),
        created_at=str(m["created_at"]),
        created_by=m["created_by"],
        change_reason=m["change_reason"],
        significant_change=bool(m["significant_change"]),
    )


def _fetch_dictionary(conn: Connection, question_key: str) -> Optional[QuestionDictionary]:
    row = conn.execute(
        sql_text(f"SELECT {_DICTIONARY_COLUMNS} FROM question_dictionary WHERE question_key = :key"),
        {"key": question_key},
    ).fetchone()
    return _dictionary_from_row(row) if row is not None else None


def _insert_revision(
    conn: Connection,
    *,
    revision_id: str,
    dictionary_id: str,
    question_key: str,
    version_number: int,
    content: Mapping[str, Any],
    created_at: str,
    created_by: Optional[str],
    change_reason: Optional[str],
    significant: bool,
) -> None:
    conn.execute(
        sql_text(
            f"""
            INSERT INTO question_revisions (
                id, dictionary_id, question_key, version_number, label, help_text,
                options, validation, created_at, created_by, change_reason, significant_change
            ) VALUES (
                :id, :dictionary_id, :question_key, :version_number, :label, :help_text,
                {json_param(conn, "options")}, {json_param(conn, "validation")},
                :created_at, :created_by, :change_reason, :significant
            )
            """
        ),
        {
            "id": revision_id,
            "dictionary_id": dictionary_id,
            "question_key": question_key,
            "version_number": version_number,
            "label": content.get("label") or "",
            "help_text": content.get("help_text"),
            "options": encode_json_param(content.get("options")),
            "validation": encode_json_param(content.get("validation")),
            "created_at": created_at,
            "created_by": created_by,
            "change_reason": change_reason,
            "significant": bool(significant),
        },
    )


def get_question(question_key: str, *, engine: Engine | None = None) -> QuestionDictionary:
    eng = engine or get_engine()
    with eng.connect() as conn:
        question = _fetch_dictionary(conn, question_key)
    if question is None:
        raise NotFoundError(f"Question not found for key {question_key}")
    return question


def get_current_revision_id(question_key: str, *, engine: Engine | None = None) -> Optional[str]:
    """Return the id of the question's current revision."""
    return get_question(question_key, engine=engine).current_revision_id


def create_question(
    question_key: str,
    *,
    label: str,
    binding_path: str,
    data_source: str = DataSource.STAGE_SUPPLEMENT,
    help_text: Optional[str] = None,
    options: Any = None,
    validation: Any = None,
    created_by: Optional[str] = None,
    now: datetime | None = None,
    engine: Engine | None = None,
) -> QuestionDictionary:
    """Insert a dictionary entry together with its initial revision."""
    created_at = format_timestamp(now)
    dictionary_id = str(uuid.uuid4())
    revision_id = str(uuid.uuid4())
    content = {"label": label, "help_text": help_text, "options": options, "validation": validation}
    with transaction(engine) as conn:
        conn.execute(
            sql_text(
                f"""
                INSERT INTO question_dictionary (
                    id, question_key, label, help_text, options, validation, binding_path,
                    data_source, current_version, current_revision_id, created_at, updated_at
                ) VALUES (
                    :id, :key, :label, :help_text, {json_param(conn, "options")},
                    {json_param(conn, "validation")}, :binding_path, :data_source, 1, NULL,
                    :now, :now
                )
                """
            ),
            {
                "id": dictionary_id,
                "key": question_key,
                "label": label,
                "help_text": help_text,
                "options": encode_json_param(options),
                "validation": encode_json_param(validation),
                "binding_path": binding_path,
                "data_source": data_source,
                "now": created_at,
            },
        )
        _insert_revision(
            conn,
            revision_id=revision_id,
            dictionary_id=dictionary_id,
            question_key=question_key,
            version_number=1,
            content=content,
            created_at=created_at,
            created_by=created_by,
            change_reason="Initial revision",
            significant=False,
        )
        conn.execute(
            sql_text("UPDATE question_dictionary SET current_revision_id = :rid WHERE id = :id"),
            {"rid": revision_id, "id": dictionary_id},
        )
        question = _fetch_dictionary(conn, question_key)
    logger.info("question_created key=%s revision_id=%s", question_key, revision_id)
    return question


def create_revision(
    question_key: str,
    content: Mapping[str, Any],
    *,
    significant: bool = True,
    created_by: Optional[str] = None,
    change_reason: Optional[str] = None,
    now: datetime | None = None,
    engine: Engine | None = None,
) -> RevisionRef:
    """Append a new immutable revision and make it current.

    `content` may carry any of label, help_text, options and validation;
    omitted fields carry over from the current definition. Raises
    NotFoundError for an unknown key and OptimisticLockError when a
    concurrent edit advanced the question first.
    """
    created_at = format_timestamp(now)
    revision_id = str(uuid.uuid4())
    with transaction(engine) as conn:
        question = _fetch_dictionary(conn, question_key)
        if question is None:
            raise NotFoundError(f"Question not found for key {question_key}")

        max_version = conn.execute(
            sql_text("SELECT MAX(version_number) FROM question_revisions WHERE question_key = :key"),
            {"key": question_key},
        ).scalar()
        next_version = max(int(max_version or 0), question.current_version) + 1
        snapshot = {
            field: content[field] if field in content else getattr(question, field)
            for field in REVISION_CONTENT_FIELDS
        }

        try:
            _insert_revision(
                conn,
                revision_id=revision_id,
                dictionary_id=str(question.id),
                question_key=question_key,
                version_number=next_version,
                content=snapshot,
                created_at=created_at,
                created_by=created_by,
                change_reason=change_reason,
                significant=significant,
            )
        except IntegrityError:
            logger.warning(
                "question_revision.conflict key=%s version=%s", question_key, next_version
            )
            raise OptimisticLockError("question", question_key, question.current_version) from None

        result = conn.execute(
            sql_text(
                f"""
                UPDATE question_dictionary
                SET current_version = :next_version,
                    current_revision_id = :rid,
                    label = :label,
                    help_text = :help_text,
                    options = {json_param(conn, "options")},
                    validation = {json_param(conn, "validation")},
                    updated_at = :now
                WHERE id = :id AND current_version = :expected
                """
            ),
            {
                "next_version": next_version,
                "rid": revision_id,
                "label": snapshot["label"] or "",
                "help_text": snapshot["help_text"],
                "options": encode_json_param(snapshot["options"]),
                "validation": encode_json_param(snapshot["validation"]),
                "now": created_at,
                "id": question.id,
                "expected": question.current_version,
            },
        )
        if result.rowcount == 0:
            logger.warning(
                "question_revision.conflict key=%s expected_version=%s",
                question_key,
                question.current_version,
            )
            raise OptimisticLockError("question", question_key, question.current_version)

    logger.info(
        "question_revision_created key=%s version=%s significant=%s",
        question_key,
        next_version,
        bool(significant),
    )
    publish(
        QUESTION_REVISION_CREATED,
        {
            "question_key": question_key,
            "revision_id": revision_id,
            "version_number": next_version,
            "previous_revision_id": question.current_revision_id,
            "significant": bool(significant),
        },
    )
    return RevisionRef(id=revision_id, question_key=question_key, version_number=next_version)


def current_revision_ids(conn: Connection, question_keys: Iterable[str]) -> Dict[str, Optional[str]]:
    """Read the current revision pointers for several keys inside `conn`'s transaction."""
    keys = sorted({k for k in question_keys if k})
    if not keys:
        return {}
    rows = conn.execute(
        sql_text(
            "SELECT question_key, current_revision_id FROM question_dictionary "
            "WHERE question_key IN :keys"
        ).bindparams(bindparam("keys", expanding=True)),
        {"keys": keys},
    ).fetchall()
    return {str(r[0]): r[1] for r in rows}


def get_revision(revision_id: str, *, engine: Engine | None = None) -> QuestionRevision:
    eng = engine or get_engine()
    with eng.connect() as conn:
        row = conn.execute(
            sql_text(f"SELECT {_REVISION_COLUMNS} FROM question_revisions WHERE id = :id"),
            {"id": revision_id},
        ).fetchone()
    if row is None:
        raise NotFoundError(f"Question revision not found for id {revision_id}")
    return _revision_from_row(row)


def list_revisions(question_key: str, *, engine: Engine | None = None) -> List[QuestionRevision]:
    """Return the question's revision history, oldest first."""
    eng = engine or get_engine()
    with eng.connect() as conn:
        if _fetch_dictionary(conn, question_key) is None:
            raise NotFoundError(f"Question not found for key {question_key}")
        rows = conn.execute(
            sql_text(
                f"SELECT {_REVISION_COLUMNS} FROM question_revisions "
                "WHERE question_key = :key ORDER BY version_number"
            ),
            {"key": question_key},
        ).fetchall()
    return [_revision_from_row(r) for r in rows]


__all__ = [
    "REVISION_CONTENT_FIELDS",
    "get_question",
    "get_current_revision_id",
    "current_revision_ids",
    "create_question",
    "create_revision",
    "get_revision",
    "list_revisions",
]
