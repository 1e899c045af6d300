"""Pydantic models for answer metadata, hydration payloads and write results."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from revision_engine.models.technology import RowVersions
from revision_engine.models.template import FormTemplate


class VersionedAnswer(BaseModel):
    """One entry of a stage row's `extended_data` bag.

    Stored documents use camelCase keys; both spellings are accepted on input.
    """

    model_config = ConfigDict(populate_by_name=True)

    value: Any = None
    question_revision_id: str = Field(alias="questionRevisionId")
    answered_at: Optional[str] = Field(default=None, alias="answeredAt")
    source: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class BindingMetadata(BaseModel):
    """Per-question binding descriptor resolved when a template is loaded."""

    field_code: str
    dictionary_key: str
    current_revision_id: Optional[str] = None
    binding_path: str
    data_source: str
    field_type: str


class AnswerMetadata(BaseModel):
    status: str
    dictionary_key: Optional[str] = None
    saved_revision_id: Optional[str] = None
    current_revision_id: Optional[str] = None
    answered_at: Optional[str] = None
    source: Optional[str] = None


class TechnologyContext(BaseModel):
    id: str
    tech_id: str
    technology_name: Optional[str] = None
    has_triage_stage: bool = False
    has_viability_stage: bool = False


class HydrationResult(BaseModel):
    template: FormTemplate
    binding_metadata: Dict[str, BindingMetadata] = Field(default_factory=dict)
    initial_responses: Dict[str, Any] = Field(default_factory=dict)
    initial_repeat_groups: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    answer_metadata: Dict[str, AnswerMetadata] = Field(default_factory=dict)
    technology_context: Optional[TechnologyContext] = None
    row_versions: RowVersions = Field(default_factory=RowVersions)


class RevisionRef(BaseModel):
    id: str
    question_key: str
    version_number: int


class QuestionRevision(BaseModel):
    id: str
    question_key: str
    version_number: int
    label: str
    help_text: Optional[str] = None
    options: Any = None
    validation: Any = None
    created_at: str
    created_by: Optional[str] = None
    change_reason: Optional[str] = None
    significant_change: bool = True


class BindingWriteResult(BaseModel):
    technology_id: str
    tech_id: str
    row_versions: RowVersions


__all__ = [
    "VersionedAnswer",
    "BindingMetadata",
    "AnswerMetadata",
    "TechnologyContext",
    "HydrationResult",
    "RevisionRef",
    "QuestionRevision",
    "BindingWriteResult",
]
