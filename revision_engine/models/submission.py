"""Pydantic models for persisted form submissions and their response records."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from revision_engine.models.answers import AnswerMetadata
from revision_engine.models.technology import RowVersions


class SubmissionStatus:
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"


class SubmissionResponseRecord(BaseModel):
    question_code: str
    value: Any = None
    question_revision_id: Optional[str] = None
    answered_at: Optional[str] = None


class SubmissionRepeatGroupRecord(BaseModel):
    question_code: str
    row_index: int
    data: Dict[str, Any] = Field(default_factory=dict)
    question_revision_id: Optional[str] = None
    answered_at: Optional[str] = None


class FormSubmissionData(BaseModel):
    """Inbound save/submit payload from the action layer."""

    template_id: str
    submission_id: Optional[str] = None
    # Expected row version of the submission itself when advancing an existing one
    submission_row_version: Optional[int] = None
    tech_id: Optional[str] = None
    responses: Dict[str, Any] = Field(default_factory=dict)
    repeat_groups: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    row_versions: RowVersions = Field(default_factory=RowVersions)


class SubmissionRecords(BaseModel):
    submission_id: str
    template_id: str
    technology_id: Optional[str] = None
    tech_id: Optional[str] = None
    status: str
    save_sequence: int
    row_version: int
    responses: List[SubmissionResponseRecord] = Field(default_factory=list)
    repeat_groups: List[SubmissionRepeatGroupRecord] = Field(default_factory=list)


class SaveSubmissionResult(BaseModel):
    submission_id: str
    status: str
    save_sequence: int
    row_version: int
    technology_id: Optional[str] = None
    tech_id: Optional[str] = None
    row_versions: RowVersions = Field(default_factory=RowVersions)
    answer_metadata: Dict[str, AnswerMetadata] = Field(default_factory=dict)


__all__ = [
    "SubmissionStatus",
    "SubmissionResponseRecord",
    "SubmissionRepeatGroupRecord",
    "FormSubmissionData",
    "SubmissionRecords",
    "SaveSubmissionResult",
]
