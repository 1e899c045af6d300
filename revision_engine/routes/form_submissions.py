"""Form submission routes: save a draft or submit, and reload answer metadata."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Header, HTTPException

from revision_engine.config import load_config
from revision_engine.logic.form_submissions import rebuild_submission_metadata, save_form_submission
from revision_engine.models.answers import AnswerMetadata
from revision_engine.models.requests import FormSubmissionRequest
from revision_engine.models.submission import FormSubmissionData, SaveSubmissionResult

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/form-submissions",
    summary="Save a draft or submit a form",
    response_model=SaveSubmissionResult,
)
def post_form_submission(
    payload: FormSubmissionRequest,
    user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> SaveSubmissionResult:
    cfg = load_config()
    limit = cfg.answers.max_repeat_group_rows
    oversized = sorted(code for code, rows in payload.repeat_groups.items() if len(rows) > limit)
    if oversized:
        raise HTTPException(
            status_code=422,
            detail={
                "title": "Invalid Request",
                "code": "REPEAT_GROUP_TOO_LARGE",
                "detail": f"Repeated groups may hold at most {limit} rows",
                "fields": oversized,
            },
        )
    data = FormSubmissionData.model_validate(payload.model_dump(exclude={"status"}))
    return save_form_submission(
        data,
        status=payload.status,
        user_id=user_id,
        allow_incomplete_drafts=cfg.answers.allow_incomplete_drafts,
    )


@router.get(
    "/form-submissions/{submission_id}/answer-metadata",
    summary="Rebuild answer metadata from a saved submission",
    response_model=Dict[str, AnswerMetadata],
)
def get_submission_answer_metadata(submission_id: str) -> Dict[str, AnswerMetadata]:
    return rebuild_submission_metadata(submission_id)


__all__ = ["router", "post_form_submission", "get_submission_answer_metadata"]
