"""Form submission persistence.

A save writes bound answers through to the technology and appends a complete
snapshot of the form's answers under the submission's next `save_sequence`,
all in one transaction. Records are never updated in place. Answers whose
value did not change since the previous snapshot keep the revision id and
timestamp they were originally answered with, so an auto-save does not turn
a stale answer fresh. A first save compares against the answers already
stored on the technology instead.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import text as sql_text
from sqlalchemy.engine import Connection, Engine

from revision_engine.db.base import (
    decode_json_column,
    encode_json_param,
    get_engine,
    json_param,
    transaction,
)
from revision_engine.logic.answer_canonical import is_answered, values_equal
from revision_engine.logic.binding_writes import BindingWriteOptions, apply_binding_writes, find_target_technology
from revision_engine.logic.bindings import binding_scope, collect_binding_metadata
from revision_engine.logic.errors import NotFoundError, OptimisticLockError, SubmissionIncompleteError
from revision_engine.logic.events import BINDING_WRITE_COMMITTED, SUBMISSION_SAVED, publish
from revision_engine.logic.hydration import load_template
from revision_engine.logic.question_revisions import current_revision_ids
from revision_engine.logic.stores import MetadataStore, ValueStore, normalize_for_field
from revision_engine.logic.submission_metadata import build_submission_answer_metadata
from revision_engine.logic.timestamps import format_timestamp, utc_now
from revision_engine.models.answers import AnswerMetadata, BindingMetadata
from revision_engine.models.submission import (
    FormSubmissionData,
    SaveSubmissionResult,
    SubmissionRecords,
    SubmissionRepeatGroupRecord,
    SubmissionResponseRecord,
    SubmissionStatus,
)
from revision_engine.models.technology import TechnologyAggregate
from revision_engine.models.template import FormTemplate, is_repeat_group

logger = logging.getLogger(__name__)

SUBMISSION_SCOPE = "form_submission"


def _fetch_header(conn: Connection, submission_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        sql_text(
            "SELECT id, template_id, technology_id, tech_id, status, save_sequence, row_version "
            "FROM form_submissions WHERE id = :id"
        ),
        {"id": submission_id},
    ).fetchone()
    return dict(row._mapping) if row is not None else None


def _load_snapshot(
    conn: Connection, submission_id: str, save_sequence: int
) -> Tuple[List[SubmissionResponseRecord], List[SubmissionRepeatGroupRecord]]:
    response_rows = conn.execute(
        sql_text(
            "SELECT question_code, value, question_revision_id, answered_at FROM question_responses "
            "WHERE submission_id = :sid AND save_sequence = :seq ORDER BY question_code"
        ),
        {"sid": submission_id, "seq": save_sequence},
    ).fetchall()
    group_rows = conn.execute(
        sql_text(
            "SELECT question_code, row_index, data, question_revision_id, answered_at "
            "FROM repeatable_group_responses WHERE submission_id = :sid AND save_sequence = :seq "
            "ORDER BY question_code, row_index"
        ),
        {"sid": submission_id, "seq": save_sequence},
    ).fetchall()
    responses = [
        SubmissionResponseRecord(
            question_code=str(r.question_code),
            value=decode_json_column(r.value),
            question_revision_id=r.question_revision_id,
            answered_at=r.answered_at,
        )
        for r in response_rows
    ]
    groups = []
    for r in group_rows:
        data = decode_json_column(r.data)
        groups.append(
            SubmissionRepeatGroupRecord(
                question_code=str(r.question_code),
                row_index=int(r.row_index),
                data=data if isinstance(data, dict) else {},
                question_revision_id=r.question_revision_id,
                answered_at=r.answered_at,
            )
        )
    return responses, groups


def _missing_required(template: FormTemplate, data: FormSubmissionData) -> List[str]:
    missing = []
    for question in template.iter_questions():
        if not question.is_required:
            continue
        code = question.field_code
        if is_repeat_group(question.field_type):
            answered = bool(data.repeat_groups.get(code)) or is_answered(data.responses.get(code))
        else:
            answered = is_answered(data.responses.get(code))
        if not answered:
            missing.append(code)
    return missing


def _technology_baseline(
    template: FormTemplate,
    bindings: Dict[str, BindingMetadata],
    technology: TechnologyAggregate,
) -> Tuple[List[SubmissionResponseRecord], List[SubmissionRepeatGroupRecord]]:
    """Express the answers stored on a technology as a prior snapshot.

    A submission's first save compares against this, so a prefilled answer
    that is resubmitted unchanged keeps the revision recorded in the
    technology's bag, or none when the bag has no entry for it.
    """
    values = ValueStore(technology)
    metadata = MetadataStore.from_technology(technology)
    responses: List[SubmissionResponseRecord] = []
    groups: List[SubmissionRepeatGroupRecord] = []
    for question in template.iter_questions():
        code = question.field_code
        binding = bindings.get(code)
        if binding is None:
            continue
        stored = normalize_for_field(question.field_type, values.read(binding.binding_path))
        entry = metadata.entry(binding_scope(binding.binding_path), binding.dictionary_key)
        revision_id = entry.question_revision_id if entry is not None else None
        answered_at = entry.answered_at if entry is not None else None
        if is_repeat_group(question.field_type):
            groups.extend(
                SubmissionRepeatGroupRecord(
                    question_code=code,
                    row_index=index,
                    data=row,
                    question_revision_id=revision_id,
                    answered_at=answered_at,
                )
                for index, row in enumerate(stored)
            )
        else:
            responses.append(
                SubmissionResponseRecord(
                    question_code=code,
                    value=stored,
                    question_revision_id=revision_id,
                    answered_at=answered_at,
                )
            )
    return responses, groups


def _build_snapshot(
    template: FormTemplate,
    bindings: Dict[str, BindingMetadata],
    data: FormSubmissionData,
    previous: Tuple[List[SubmissionResponseRecord], List[SubmissionRepeatGroupRecord]],
    revision_ids: Dict[str, Optional[str]],
    stamp: str,
) -> Tuple[List[SubmissionResponseRecord], List[SubmissionRepeatGroupRecord]]:
    previous_responses = {r.question_code: r for r in previous[0]}
    previous_rows = {(r.question_code, r.row_index): r for r in previous[1]}

    def current_revision(code: str) -> Optional[str]:
        binding = bindings.get(code)
        if binding is None:
            return None
        return revision_ids.get(binding.dictionary_key) or binding.current_revision_id

    responses: List[SubmissionResponseRecord] = []
    groups: List[SubmissionRepeatGroupRecord] = []
    for question in template.iter_questions():
        code = question.field_code
        if is_repeat_group(question.field_type):
            rows = data.repeat_groups.get(code)
            if rows is None:
                continue
            for index, row in enumerate(rows):
                prior = previous_rows.get((code, index))
                if prior is not None and values_equal(prior.data, row):
                    revision_id, answered_at = prior.question_revision_id, prior.answered_at
                else:
                    revision_id, answered_at = current_revision(code), stamp
                groups.append(
                    SubmissionRepeatGroupRecord(
                        question_code=code,
                        row_index=index,
                        data=dict(row),
                        question_revision_id=revision_id,
                        answered_at=answered_at,
                    )
                )
            continue

        if code not in data.responses:
            continue
        value = data.responses[code]
        prior = previous_responses.get(code)
        if prior is not None and values_equal(prior.value, value):
            revision_id, answered_at = prior.question_revision_id, prior.answered_at
        else:
            revision_id, answered_at = current_revision(code), stamp
        responses.append(
            SubmissionResponseRecord(
                question_code=code,
                value=value,
                question_revision_id=revision_id,
                answered_at=answered_at,
            )
        )
    return responses, groups


def _insert_snapshot(
    conn: Connection,
    submission_id: str,
    save_sequence: int,
    responses: List[SubmissionResponseRecord],
    groups: List[SubmissionRepeatGroupRecord],
) -> None:
    for record in responses:
        conn.execute(
            sql_text(
                f"""
                INSERT INTO question_responses (
                    id, submission_id, save_sequence, question_code, value,
                    question_revision_id, answered_at
                ) VALUES (
                    :id, :sid, :seq, :code, {json_param(conn, "value")}, :rid, :answered_at
                )
                """
            ),
            {
                "id": str(uuid.uuid4()),
                "sid": submission_id,
                "seq": save_sequence,
                "code": record.question_code,
                "value": encode_json_param(record.value),
                "rid": record.question_revision_id,
                "answered_at": record.answered_at,
            },
        )
    for row in groups:
        conn.execute(
            sql_text(
                f"""
                INSERT INTO repeatable_group_responses (
                    id, submission_id, save_sequence, question_code, row_index, data,
                    question_revision_id, answered_at
                ) VALUES (
                    :id, :sid, :seq, :code, :row_index, {json_param(conn, "data")}, :rid, :answered_at
                )
                """
            ),
            {
                "id": str(uuid.uuid4()),
                "sid": submission_id,
                "seq": save_sequence,
                "code": row.question_code,
                "row_index": row.row_index,
                "data": encode_json_param(row.data),
                "rid": row.question_revision_id,
                "answered_at": row.answered_at,
            },
        )


def save_form_submission(
    data: FormSubmissionData,
    *,
    status: str = SubmissionStatus.DRAFT,
    user_id: Optional[str] = None,
    now: datetime | None = None,
    allow_incomplete_drafts: bool = True,
    engine: Engine | None = None,
) -> SaveSubmissionResult:
    """Save a draft or submit a form in one transaction.

    Drafts may create an incomplete technology (with a generated DRAFT tech
    id) unless `allow_incomplete_drafts` is off; a submission requires every
    required question answered and the technology's identifying fields.

    Advancing an existing submission requires `submission_row_version`, and
    updating an existing technology or stage row requires its version in
    `row_versions`; without them the save is a conflict.
    """
    if status not in (SubmissionStatus.DRAFT, SubmissionStatus.SUBMITTED):
        raise ValueError(f"Unsupported submission status {status}")
    now_dt = now or utc_now()
    stamp = format_timestamp(now_dt)

    with transaction(engine) as conn:
        template = load_template(conn, data.template_id)
        bindings = collect_binding_metadata(template)
        if status == SubmissionStatus.SUBMITTED:
            missing = _missing_required(template, data)
            if missing:
                raise SubmissionIncompleteError(missing)

        header = None
        previous: Tuple[List[SubmissionResponseRecord], List[SubmissionRepeatGroupRecord]] = ([], [])
        if data.submission_id:
            header = _fetch_header(conn, data.submission_id)
            if header is None:
                raise NotFoundError(f"Form submission not found for id {data.submission_id}")
            previous = _load_snapshot(conn, header["id"], int(header["save_sequence"]))

        target_tech_id = data.tech_id or (header or {}).get("tech_id")
        write_result = None
        if bindings:
            if header is None:
                technology = find_target_technology(conn, bindings, data.responses, target_tech_id)
                if technology is not None:
                    previous = _technology_baseline(template, bindings, technology)
            write_result = apply_binding_writes(
                conn,
                binding_metadata=bindings,
                responses=data.responses,
                repeat_groups=data.repeat_groups,
                row_versions=data.row_versions,
                options=BindingWriteOptions(
                    tech_id=target_tech_id,
                    allow_create_when_incomplete=allow_incomplete_drafts and status == SubmissionStatus.DRAFT,
                    user_id=user_id,
                    now=now_dt,
                ),
            )

        revision_ids = current_revision_ids(conn, [b.dictionary_key for b in bindings.values()])
        responses, groups = _build_snapshot(template, bindings, data, previous, revision_ids, stamp)

        technology_id = write_result.technology_id if write_result else (header or {}).get("technology_id")
        tech_id = write_result.tech_id if write_result else (data.tech_id or (header or {}).get("tech_id"))
        submitted_at = stamp if status == SubmissionStatus.SUBMITTED else None

        if header is None:
            submission_id = str(uuid.uuid4())
            save_sequence = 1
            row_version = 1
            conn.execute(
                sql_text(
                    """
                    INSERT INTO form_submissions (
                        id, template_id, technology_id, tech_id, status, created_by,
                        save_sequence, row_version, submitted_at, created_at, updated_at
                    ) VALUES (
                        :id, :template_id, :technology_id, :tech_id, :status, :user_id,
                        1, 1, :submitted_at, :now, :now
                    )
                    """
                ),
                {
                    "id": submission_id,
                    "template_id": template.id,
                    "technology_id": technology_id,
                    "tech_id": tech_id,
                    "status": status,
                    "user_id": user_id,
                    "submitted_at": submitted_at,
                    "now": stamp,
                },
            )
        else:
            submission_id = str(header["id"])
            save_sequence = int(header["save_sequence"]) + 1
            expected = data.submission_row_version
            if expected is None:
                logger.warning("submission.conflict id=%s reason=no_expected_row_version", submission_id)
                raise OptimisticLockError(
                    SUBMISSION_SCOPE,
                    submission_id,
                    None,
                    message=f"Form submission {submission_id} already exists; reload it and retry with its row_version",
                )
            result = conn.execute(
                sql_text(
                    """
                    UPDATE form_submissions
                    SET save_sequence = :seq,
                        status = :status,
                        technology_id = :technology_id,
                        tech_id = :tech_id,
                        submitted_at = COALESCE(:submitted_at, submitted_at),
                        row_version = row_version + 1,
                        updated_at = :now
                    WHERE id = :id AND row_version = :expected
                    """
                ),
                {
                    "seq": save_sequence,
                    "status": status,
                    "technology_id": technology_id,
                    "tech_id": tech_id,
                    "submitted_at": submitted_at,
                    "now": stamp,
                    "id": submission_id,
                    "expected": expected,
                },
            )
            if result.rowcount == 0:
                logger.warning(
                    "submission.conflict id=%s expected=%s", submission_id, expected
                )
                raise OptimisticLockError(SUBMISSION_SCOPE, submission_id, expected)
            row_version = expected + 1

        _insert_snapshot(conn, submission_id, save_sequence, responses, groups)
        answer_metadata = build_submission_answer_metadata(
            template, responses, groups, answered_at=stamp, binding_metadata=bindings
        )

    logger.info(
        "submission_saved id=%s status=%s save_sequence=%s responses=%s rows=%s",
        submission_id,
        status,
        save_sequence,
        len(responses),
        len(groups),
    )
    if write_result is not None:
        publish(BINDING_WRITE_COMMITTED, write_result.model_dump())
    publish(
        SUBMISSION_SAVED,
        {"submission_id": submission_id, "status": status, "save_sequence": save_sequence, "tech_id": tech_id},
    )
    return SaveSubmissionResult(
        submission_id=submission_id,
        status=status,
        save_sequence=save_sequence,
        row_version=row_version,
        technology_id=technology_id,
        tech_id=tech_id,
        row_versions=write_result.row_versions if write_result else data.row_versions,
        answer_metadata=answer_metadata,
    )


def _load_records(conn: Connection, submission_id: str) -> SubmissionRecords:
    header = _fetch_header(conn, submission_id)
    if header is None:
        raise NotFoundError(f"Form submission not found for id {submission_id}")
    responses, groups = _load_snapshot(conn, submission_id, int(header["save_sequence"]))
    return SubmissionRecords(
        submission_id=str(header["id"]),
        template_id=str(header["template_id"]),
        technology_id=header["technology_id"],
        tech_id=header["tech_id"],
        status=str(header["status"]),
        save_sequence=int(header["save_sequence"]),
        row_version=int(header["row_version"]),
        responses=responses,
        repeat_groups=groups,
    )


def load_submission_records(submission_id: str, *, engine: Engine | None = None) -> SubmissionRecords:
    """Return the latest snapshot of a submission's records."""
    eng = engine or get_engine()
    with eng.connect() as conn:
        return _load_records(conn, submission_id)


def rebuild_submission_metadata(
    submission_id: str,
    *,
    answered_at: Optional[str] = None,
    engine: Engine | None = None,
) -> Dict[str, AnswerMetadata]:
    """Rebuild answer metadata from a submission's latest snapshot and its live template."""
    eng = engine or get_engine()
    with eng.connect() as conn:
        records = _load_records(conn, submission_id)
        template = load_template(conn, records.template_id)
    return build_submission_answer_metadata(
        template, records.responses, records.repeat_groups, answered_at=answered_at
    )


__all__ = [
    "SUBMISSION_SCOPE",
    "save_form_submission",
    "load_submission_records",
    "rebuild_submission_metadata",
]
