"""Answer status evaluation.

Status is a function of revision metadata only and never of whether a value
is present:

- FRESH   the saved revision id equals the question's current revision id
- STALE   a saved revision id exists and differs from the current one
- UNKNOWN no saved revision id (no bag entry, legacy data, form-local field)

Every revision mismatch is STALE, whether or not the intervening revision
was flagged significant. Hydration and the submission metadata builder both
call into this module; no other module compares revision ids.
"""

from __future__ import annotations

from typing import Iterable, Optional

from revision_engine.models.answers import AnswerMetadata, VersionedAnswer


class AnswerStatus:
    FRESH = "FRESH"
    STALE = "STALE"
    UNKNOWN = "UNKNOWN"


def evaluate_answer_status(saved_revision_id: Optional[str], current_revision_id: Optional[str]) -> str:
    if not saved_revision_id:
        return AnswerStatus.UNKNOWN
    if saved_revision_id == current_revision_id:
        return AnswerStatus.FRESH
    return AnswerStatus.STALE


def build_answer_metadata(
    dictionary_key: Optional[str],
    entry: Optional[VersionedAnswer],
    current_revision_id: Optional[str],
) -> AnswerMetadata:
    """Build the metadata for one field from its bag entry (or lack of one)."""
    if entry is None:
        return AnswerMetadata(
            status=AnswerStatus.UNKNOWN,
            dictionary_key=dictionary_key,
            current_revision_id=current_revision_id,
        )
    return AnswerMetadata(
        status=evaluate_answer_status(entry.question_revision_id, current_revision_id),
        dictionary_key=dictionary_key,
        saved_revision_id=entry.question_revision_id,
        current_revision_id=current_revision_id,
        answered_at=entry.answered_at,
        source=entry.source,
    )


def aggregate_row_statuses(saved_revision_ids: Iterable[Optional[str]], current_revision_id: Optional[str]) -> str:
    """Fold per-row statuses of a repeated group into one status.

    Any stale row makes the group STALE. The group is FRESH only when it has
    rows and every row is fresh; otherwise UNKNOWN.
    """
    statuses = [evaluate_answer_status(saved, current_revision_id) for saved in saved_revision_ids]
    if AnswerStatus.STALE in statuses:
        return AnswerStatus.STALE
    if statuses and all(s == AnswerStatus.FRESH for s in statuses):
        return AnswerStatus.FRESH
    return AnswerStatus.UNKNOWN


__all__ = [
    "AnswerStatus",
    "evaluate_answer_status",
    "build_answer_metadata",
    "aggregate_row_statuses",
]
