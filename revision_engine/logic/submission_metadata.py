"""Rebuild answer metadata from persisted submission records.

Used when a draft is redisplayed without reading the technology: each record
carries the revision id it was answered against, which is compared with the
question's current revision through the same evaluator hydration uses.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from revision_engine.logic.answer_status import (
    AnswerStatus,
    aggregate_row_statuses,
    evaluate_answer_status,
)
from revision_engine.logic.bindings import collect_binding_metadata
from revision_engine.models.answers import AnswerMetadata, BindingMetadata
from revision_engine.models.submission import SubmissionRepeatGroupRecord, SubmissionResponseRecord
from revision_engine.models.template import FormTemplate

SUBMISSION_SOURCE = "submission"


def build_submission_answer_metadata(
    template: FormTemplate,
    responses: Sequence[SubmissionResponseRecord],
    repeat_groups: Sequence[SubmissionRepeatGroupRecord],
    *,
    answered_at: Optional[str] = None,
    binding_metadata: Optional[Dict[str, BindingMetadata]] = None,
) -> Dict[str, AnswerMetadata]:
    """Return `{field_code: AnswerMetadata}` for dictionary-backed questions.

    A repeated group is FRESH only when every row matches the current
    revision; a single stale row makes the whole group STALE.
    """
    bindings = binding_metadata if binding_metadata is not None else collect_binding_metadata(template)
    metadata: Dict[str, AnswerMetadata] = {}

    for record in responses:
        binding = bindings.get(record.question_code)
        if binding is None:
            continue
        metadata[record.question_code] = AnswerMetadata(
            status=evaluate_answer_status(record.question_revision_id, binding.current_revision_id),
            dictionary_key=binding.dictionary_key,
            saved_revision_id=record.question_revision_id,
            current_revision_id=binding.current_revision_id,
            answered_at=record.answered_at or answered_at,
            source=SUBMISSION_SOURCE,
        )

    rows_by_code: Dict[str, List[SubmissionRepeatGroupRecord]] = {}
    for row in repeat_groups:
        rows_by_code.setdefault(row.question_code, []).append(row)

    for code, rows in rows_by_code.items():
        binding = bindings.get(code)
        if binding is None:
            continue
        rows.sort(key=lambda r: r.row_index)
        current = binding.current_revision_id
        stale_row = next(
            (r for r in rows if evaluate_answer_status(r.question_revision_id, current) == AnswerStatus.STALE),
            None,
        )
        representative = stale_row or rows[0]
        metadata[code] = AnswerMetadata(
            status=aggregate_row_statuses([r.question_revision_id for r in rows], current),
            dictionary_key=binding.dictionary_key,
            saved_revision_id=representative.question_revision_id,
            current_revision_id=current,
            answered_at=representative.answered_at or answered_at,
            source=SUBMISSION_SOURCE,
        )

    return metadata


__all__ = ["SUBMISSION_SOURCE", "build_submission_answer_metadata"]
