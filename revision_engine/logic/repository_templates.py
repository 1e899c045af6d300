"""Form template data access helpers.

Templates are loaded with their sections, questions and each question's
dictionary entry in one query so the current revision pointers are read
together.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import text as sql_text
from sqlalchemy.engine import Connection, Engine

from revision_engine.db.base import decode_json_column, encode_json_param, json_param, transaction
from revision_engine.logic.timestamps import format_timestamp
from revision_engine.models.template import FormQuestion, FormSection, FormTemplate, QuestionDictionary

logger = logging.getLogger(__name__)

_TEMPLATE_TREE_SQL = """
SELECT s.id AS section_id, s.code AS section_code, s.title AS section_title,
       s.section_order AS section_order,
       q.id AS question_id, q.field_code, q.label, q.field_type, q.help_text,
       q.is_required, q.question_order, q.dictionary_key, q.validation,
       d.id AS d_id, d.question_key AS d_question_key, d.label AS d_label,
       d.help_text AS d_help_text, d.options AS d_options, d.validation AS d_validation,
       d.binding_path AS d_binding_path, d.data_source AS d_data_source,
       d.current_version AS d_current_version, d.current_revision_id AS d_current_revision_id
FROM form_sections s
LEFT JOIN form_questions q ON q.section_id = s.id
LEFT JOIN question_dictionary d ON d.question_key = q.dictionary_key
WHERE s.template_id = :tid
ORDER BY s.section_order, s.id, q.question_order, q.id
"""


def _dictionary_from_tree_row(m: Any) -> Optional[QuestionDictionary]:
    if m["d_id"] is None:
        return None
    return QuestionDictionary(
        id=str(m["d_id"]),
        question_key=str(m["d_question_key"]),
        label=m["d_label"] or "",
        help_text=m["d_help_text"],
        options=decode_json_column(m["d_options"]),
        validation=decode_json_column(m["d_validation"]),
        binding_path=str(m["d_binding_path"]),
        data_source=str(m["d_data_source"]),
        current_version=int(m["d_current_version"]),
        current_revision_id=m["d_current_revision_id"],
    )


def _load_tree(conn: Connection, header: Any) -> FormTemplate:
    h = header._mapping
    sections: Dict[str, FormSection] = {}
    rows = conn.execute(sql_text(_TEMPLATE_TREE_SQL), {"tid": h["id"]}).fetchall()
    for row in rows:
        m = row._mapping
        section = sections.get(m["section_id"])
        if section is None:
            section = FormSection(
                id=str(m["section_id"]),
                code=str(m["section_code"]),
                title=str(m["section_title"]),
                section_order=int(m["section_order"] or 0),
            )
            sections[m["section_id"]] = section
        if m["question_id"] is None:
            continue
        section.questions.append(
            FormQuestion(
                id=str(m["question_id"]),
                field_code=str(m["field_code"]),
                label=str(m["label"]),
                field_type=str(m["field_type"]),
                help_text=m["help_text"],
                is_required=bool(m["is_required"]),
                question_order=int(m["question_order"] or 0),
                dictionary_key=m["dictionary_key"],
                validation=decode_json_column(m["validation"]),
                dictionary=_dictionary_from_tree_row(m),
            )
        )
    return FormTemplate(
        id=str(h["id"]),
        name=str(h["name"]),
        version=str(h["version"]),
        is_active=bool(h["is_active"]),
        sections=list(sections.values()),
    )


def get_template_by_id(conn: Connection, template_id: str) -> Optional[FormTemplate]:
    header = conn.execute(
        sql_text("SELECT id, name, version, is_active FROM form_templates WHERE id = :id"),
        {"id": template_id},
    ).fetchone()
    if header is None:
        return None
    return _load_tree(conn, header)


def get_active_template(conn: Connection) -> Optional[FormTemplate]:
    """Return the most recently updated active template, if any."""
    header = conn.execute(
        sql_text(
            "SELECT id, name, version, is_active FROM form_templates "
            "WHERE is_active = :active ORDER BY updated_at DESC, id LIMIT 1"
        ),
        {"active": True},
    ).fetchone()
    if header is None:
        return None
    return _load_tree(conn, header)


def save_template(
    template: FormTemplate,
    *,
    now: datetime | None = None,
    engine: Engine | None = None,
) -> FormTemplate:
    """Persist a builder-authored template with its sections and questions.

    Dictionary entries are referenced by key and must already exist.
    """
    stamp = format_timestamp(now)
    with transaction(engine) as conn:
        conn.execute(
            sql_text(
                """
                INSERT INTO form_templates (id, name, version, is_active, created_at, updated_at)
                VALUES (:id, :name, :version, :is_active, :now, :now)
                """
            ),
            {
                "id": template.id,
                "name": template.name,
                "version": template.version,
                "is_active": bool(template.is_active),
                "now": stamp,
            },
        )
        for section in template.sections:
            conn.execute(
                sql_text(
                    """
                    INSERT INTO form_sections (id, template_id, code, title, section_order)
                    VALUES (:id, :tid, :code, :title, :section_order)
                    """
                ),
                {
                    "id": section.id,
                    "tid": template.id,
                    "code": section.code,
                    "title": section.title,
                    "section_order": section.section_order,
                },
            )
            for question in section.questions:
                conn.execute(
                    sql_text(
                        f"""
                        INSERT INTO form_questions (
                            id, section_id, field_code, label, field_type, help_text,
                            is_required, question_order, dictionary_key, validation
                        ) VALUES (
                            :id, :section_id, :field_code, :label, :field_type, :help_text,
                            :is_required, :question_order, :dictionary_key,
                            {json_param(conn, "validation")}
                        )
                        """
                    ),
                    {
                        "id": question.id,
                        "section_id": section.id,
                        "field_code": question.field_code,
                        "label": question.label,
                        "field_type": question.field_type,
                        "help_text": question.help_text,
                        "is_required": bool(question.is_required),
                        "question_order": question.question_order,
                        "dictionary_key": question.dictionary_key
                        or (question.dictionary.question_key if question.dictionary else None),
                        "validation": encode_json_param(question.validation),
                    },
                )
        saved = get_template_by_id(conn, template.id)
    logger.info("form_template_saved id=%s sections=%s", template.id, len(template.sections))
    return saved


__all__ = ["get_template_by_id", "get_active_template", "save_template"]
