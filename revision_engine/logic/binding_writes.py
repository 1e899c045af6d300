"""Write submitted answers back onto a technology and its stage rows.

Responses are partitioned by binding root. The technology row is created or
conditionally updated first, then each stage row gets its structured columns
and, for every field whose value changed, a fresh versioned answer merged
into its extended_data bag. Every statement runs on the caller's connection,
so any conflict aborts the whole write. Answering never creates a question
revision: changed fields are stamped with the revision that is current at
write time.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.engine import Connection, Engine

from revision_engine.db.base import decode_json_column, transaction
from revision_engine.logic.answer_canonical import values_equal
from revision_engine.logic.bindings import BoundField, collect_binding_metadata, group_bindings_by_root
from revision_engine.logic.errors import IncompleteSubjectError, OptimisticLockError
from revision_engine.logic.events import BINDING_WRITE_COMMITTED, publish
from revision_engine.logic.metadata_codec import build_versioned_answer
from revision_engine.logic.question_revisions import current_revision_ids
from revision_engine.logic.repository_technologies import (
    get_technology_by_id,
    get_technology_by_tech_id,
    insert_stage,
    insert_technology,
    update_scope_row,
)
from revision_engine.logic.stores import MetadataStore, coerce_column_value
from revision_engine.logic.timestamps import format_timestamp, utc_now
from revision_engine.models.answers import BindingMetadata, BindingWriteResult, VersionedAnswer
from revision_engine.models.technology import (
    REQUIRED_CREATE_FIELDS,
    SCOPES,
    STAGE_ROOTS,
    SUBJECT_ROOT,
    ColumnKind,
    RowVersions,
    TechnologyAggregate,
)
from revision_engine.models.template import FormTemplate, is_repeat_group

logger = logging.getLogger(__name__)

DRAFT_TECH_ID_PREFIX = "DRAFT-"


@dataclass
class BindingWriteOptions:
    tech_id: Optional[str] = None
    allow_create_when_incomplete: bool = False
    user_id: Optional[str] = None
    now: Optional[datetime] = None


def generate_draft_tech_id() -> str:
    return DRAFT_TECH_ID_PREFIX + uuid.uuid4().hex[:8].upper()


def _submitted_values(
    fields: List[BoundField],
    responses: Mapping[str, Any],
    repeat_groups: Mapping[str, Any],
) -> Dict[str, Tuple[BoundField, Any]]:
    """Pick the submitted value for each bound field, keyed by column.

    Fields absent from the submission are left untouched.
    """
    picked: Dict[str, Tuple[BoundField, Any]] = {}
    for bound in fields:
        code = bound.field_code
        if is_repeat_group(bound.binding.field_type) and code in repeat_groups:
            picked[bound.column] = (bound, repeat_groups[code])
        elif code in responses:
            picked[bound.column] = (bound, responses[code])
    return picked


def _stored_value(root: str, column: str, record: Optional[Mapping[str, Any]], submitted: Any) -> Any:
    if record is None:
        return None
    stored = record.get(column)
    if SCOPES[root].columns[column] == ColumnKind.JSON or isinstance(submitted, (list, dict)):
        return decode_json_column(stored)
    return stored


def _require_expected_version(root: str, record_id: str, expected_row_version: Optional[int]) -> int:
    """Return the caller's expected version for an existing row.

    Writing to a row the caller never read is a conflict, not an overwrite.
    """
    if expected_row_version is None:
        logger.warning("write_conflict scope=%s id=%s reason=no_expected_row_version", root, record_id)
        raise OptimisticLockError(
            root,
            record_id,
            None,
            message=f"{root} id={record_id} already exists; reload it and retry with its row_version",
        )
    return int(expected_row_version)


def _subject_values(submitted: Dict[str, Tuple[BoundField, Any]]) -> Dict[str, Any]:
    return {column: coerce_column_value(SUBJECT_ROOT, column, v) for column, (_, v) in submitted.items()}


def find_target_technology(
    conn: Connection,
    binding_metadata: Dict[str, BindingMetadata],
    responses: Mapping[str, Any],
    tech_id: Optional[str] = None,
) -> Optional[TechnologyAggregate]:
    """Return the stored technology a write of `responses` would update.

    None means the write would create a new technology.
    """
    subject_fields = group_bindings_by_root(binding_metadata).get(SUBJECT_ROOT, [])
    values = _subject_values(_submitted_values(subject_fields, responses, {}))
    lookup_tech_id = tech_id or values.get("tech_id")
    return get_technology_by_tech_id(conn, lookup_tech_id) if lookup_tech_id else None


def _write_subject(
    conn: Connection,
    submitted: Dict[str, Tuple[BoundField, Any]],
    expected_row_version: Optional[int],
    options: BindingWriteOptions,
    now: str,
) -> Tuple[TechnologyAggregate, int]:
    values = _subject_values(submitted)
    lookup_tech_id = options.tech_id or values.get("tech_id")
    technology = get_technology_by_tech_id(conn, lookup_tech_id) if lookup_tech_id else None

    if technology is None:
        if not values.get("tech_id") and options.tech_id:
            values["tech_id"] = options.tech_id
        missing = [f for f in REQUIRED_CREATE_FIELDS if not values.get(f)]
        if missing:
            if not options.allow_create_when_incomplete:
                raise IncompleteSubjectError(missing)
            if not values.get("tech_id"):
                values["tech_id"] = generate_draft_tech_id()
        technology_id = insert_technology(conn, values, user_id=options.user_id, now=now)
        logger.info("technology_created id=%s tech_id=%s draft=%s", technology_id, values["tech_id"], bool(missing))
        return get_technology_by_id(conn, technology_id), 1

    version = int(technology.technology["row_version"])
    if submitted:
        expected = _require_expected_version(SUBJECT_ROOT, technology.id, expected_row_version)
        version = update_scope_row(
            conn,
            SUBJECT_ROOT,
            technology.id,
            expected,
            values,
            user_id=options.user_id,
            now=now,
        )
        if "tech_id" in values and values["tech_id"]:
            technology.technology["tech_id"] = values["tech_id"]
    return technology, version


def _write_stage(
    conn: Connection,
    root: str,
    technology: TechnologyAggregate,
    submitted: Dict[str, Tuple[BoundField, Any]],
    expected_row_version: Optional[int],
    revision_ids: Mapping[str, Optional[str]],
    now: str,
) -> Optional[int]:
    record = technology.scope_record(root)
    metadata = MetadataStore({root: record.get("extended_data") if record else None})
    structured: Dict[str, Any] = {}
    updates: Dict[str, VersionedAnswer] = {}

    for column, (bound, value) in submitted.items():
        structured[column] = coerce_column_value(root, column, value)
        if values_equal(_stored_value(root, column, record, value), value):
            continue
        binding = bound.binding
        revision_id = revision_ids.get(binding.dictionary_key) or binding.current_revision_id
        if not revision_id:
            logger.warning("versioned_answer_skipped scope=%s key=%s reason=no_revision", root, binding.dictionary_key)
            continue
        updates[binding.dictionary_key] = build_versioned_answer(value, revision_id, now, root)

    extended_data = metadata.encode(root, updates) if updates else None
    if record is None:
        insert_stage(conn, root, technology.id, structured, extended_data=extended_data, now=now)
        logger.info("stage_created scope=%s technology_id=%s stamped=%s", root, technology.id, len(updates))
        return 1

    expected = _require_expected_version(root, str(record["id"]), expected_row_version)
    version = update_scope_row(
        conn,
        root,
        str(record["id"]),
        expected,
        structured,
        extended_data=extended_data,
        now=now,
    )
    logger.info("stage_updated scope=%s id=%s row_version=%s stamped=%s", root, record["id"], version, len(updates))
    return version


def apply_binding_writes(
    conn: Connection,
    *,
    template: Optional[FormTemplate] = None,
    binding_metadata: Optional[Dict[str, BindingMetadata]] = None,
    responses: Mapping[str, Any],
    repeat_groups: Optional[Mapping[str, Any]] = None,
    row_versions: Optional[RowVersions] = None,
    options: Optional[BindingWriteOptions] = None,
) -> BindingWriteResult:
    """Apply bound responses inside the caller's transaction.

    Raises IncompleteSubjectError when a technology would be created without
    its identifying fields, and OptimisticLockError when any row changed
    since the caller read it or already exists without an expected version
    in `row_versions`. Unbound field codes are ignored.
    """
    if binding_metadata is None:
        if template is None:
            raise ValueError("apply_binding_writes needs a template or binding metadata")
        binding_metadata = collect_binding_metadata(template)
    options = options or BindingWriteOptions()
    repeat_groups = repeat_groups or {}
    expected = row_versions or RowVersions()
    now = format_timestamp(options.now or utc_now())

    groups = group_bindings_by_root(binding_metadata)
    submitted = {root: _submitted_values(fields, responses, repeat_groups) for root, fields in groups.items()}

    technology, technology_version = _write_subject(
        conn,
        submitted.get(SUBJECT_ROOT, {}),
        expected.technology_row_version,
        options,
        now,
    )
    result_versions = technology.row_versions().with_scope(SUBJECT_ROOT, technology_version)

    stage_keys = [
        bound.binding.dictionary_key for root in STAGE_ROOTS for bound, _ in submitted.get(root, {}).values()
    ]
    revision_ids = current_revision_ids(conn, stage_keys)

    for root in STAGE_ROOTS:
        fields = submitted.get(root)
        if not fields:
            continue
        version = _write_stage(conn, root, technology, fields, expected.for_scope(root), revision_ids, now)
        result_versions = result_versions.with_scope(root, version)

    return BindingWriteResult(
        technology_id=technology.id,
        tech_id=technology.tech_id,
        row_versions=result_versions,
    )


def write_bindings(
    *,
    template: Optional[FormTemplate] = None,
    binding_metadata: Optional[Dict[str, BindingMetadata]] = None,
    responses: Mapping[str, Any],
    repeat_groups: Optional[Mapping[str, Any]] = None,
    row_versions: Optional[RowVersions] = None,
    options: Optional[BindingWriteOptions] = None,
    engine: Engine | None = None,
) -> BindingWriteResult:
    """Apply bound responses in a transaction of their own."""
    with transaction(engine) as conn:
        result = apply_binding_writes(
            conn,
            template=template,
            binding_metadata=binding_metadata,
            responses=responses,
            repeat_groups=repeat_groups,
            row_versions=row_versions,
            options=options,
        )
    publish(BINDING_WRITE_COMMITTED, result.model_dump())
    return result


__all__ = [
    "BindingWriteOptions",
    "DRAFT_TECH_ID_PREFIX",
    "generate_draft_tech_id",
    "find_target_technology",
    "apply_binding_writes",
    "write_bindings",
]
