"""Pydantic models for form templates consumed from the builder.

A template is an ordered list of sections, each an ordered list of
questions. A question may reference a dictionary entry (the reusable,
versioned definition) which carries the binding path and the current
revision pointer. The engine treats templates as read-only input.
"""

from __future__ import annotations

from typing import Any, Iterator, List

from pydantic import BaseModel, Field


class FieldType:
    SHORT_TEXT = "SHORT_TEXT"
    LONG_TEXT = "LONG_TEXT"
    INTEGER = "INTEGER"
    SINGLE_SELECT = "SINGLE_SELECT"
    MULTI_SELECT = "MULTI_SELECT"
    CHECKBOX_GROUP = "CHECKBOX_GROUP"
    DATE = "DATE"
    SCORING_0_3 = "SCORING_0_3"
    SCORING_MATRIX = "SCORING_MATRIX"
    REPEATABLE_GROUP = "REPEATABLE_GROUP"
    DATA_TABLE_SELECTOR = "DATA_TABLE_SELECTOR"


# Field types whose answers are a list of row objects rather than a scalar
REPEAT_GROUP_TYPES = frozenset({FieldType.REPEATABLE_GROUP, FieldType.DATA_TABLE_SELECTOR})
# Scalar field types whose answer is a list of selected option values
MULTI_VALUE_TYPES = frozenset({FieldType.MULTI_SELECT, FieldType.CHECKBOX_GROUP})


class DataSource:
    TECHNOLOGY = "TECHNOLOGY"
    STAGE_SUPPLEMENT = "STAGE_SUPPLEMENT"


def is_repeat_group(field_type: str | None) -> bool:
    return field_type in REPEAT_GROUP_TYPES


class QuestionDictionary(BaseModel):
    id: str | None = None
    question_key: str
    label: str = ""
    help_text: str | None = None
    options: Any = None
    validation: Any = None
    binding_path: str
    data_source: str = DataSource.TECHNOLOGY
    current_version: int = 1
    current_revision_id: str | None = None


class FormQuestion(BaseModel):
    id: str
    field_code: str
    label: str
    field_type: str
    is_required: bool = False
    question_order: int = 0
    help_text: str | None = None
    validation: Any = None
    dictionary_key: str | None = None
    dictionary: QuestionDictionary | None = None


class FormSection(BaseModel):
    id: str
    code: str
    title: str
    section_order: int = 0
    questions: List[FormQuestion] = Field(default_factory=list)


class FormTemplate(BaseModel):
    id: str
    name: str
    version: str = "1.0"
    is_active: bool = False
    sections: List[FormSection] = Field(default_factory=list)

    def iter_questions(self) -> Iterator[FormQuestion]:
        """Yield questions in display order (section order, then question order)."""
        for section in sorted(self.sections, key=lambda s: s.section_order):
            for question in sorted(section.questions, key=lambda q: q.question_order):
                yield question

    def question_by_code(self, field_code: str) -> FormQuestion | None:
        for question in self.iter_questions():
            if question.field_code == field_code:
                return question
        return None


__all__ = [
    "FieldType",
    "DataSource",
    "REPEAT_GROUP_TYPES",
    "MULTI_VALUE_TYPES",
    "is_repeat_group",
    "QuestionDictionary",
    "FormQuestion",
    "FormSection",
    "FormTemplate",
]
