"""Question revision routes used by the form builder."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Header

from revision_engine.logic.question_revisions import create_revision, list_revisions
from revision_engine.models.answers import QuestionRevision, RevisionRef
from revision_engine.models.requests import CreateRevisionRequest

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/questions/{question_key}/revisions",
    summary="List a question's revision history",
    response_model=List[QuestionRevision],
)
def get_question_revisions(question_key: str) -> List[QuestionRevision]:
    return list_revisions(question_key)


@router.post(
    "/questions/{question_key}/revisions",
    summary="Create a new question revision",
    response_model=RevisionRef,
    status_code=201,
)
def post_question_revision(
    question_key: str,
    payload: CreateRevisionRequest,
    user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> RevisionRef:
    """Append a revision; answers recorded against older revisions become stale."""
    return create_revision(
        question_key,
        payload.content(),
        significant=payload.significant,
        created_by=user_id,
        change_reason=payload.change_reason,
    )


__all__ = ["router", "get_question_revisions", "post_question_revision"]
