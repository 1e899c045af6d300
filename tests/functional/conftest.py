from __future__ import annotations

"""Functional test bootstrap.

Point the engine at a file-backed SQLite database before any revision_engine
module builds an engine, apply the migrations once per session, and start
every test from empty tables. Seeding helpers are exposed as fixtures.
"""

import json
import os
import pathlib
from types import SimpleNamespace
from typing import Any, Dict, Iterable, Optional

import pytest

_ROOT = pathlib.Path(__file__).resolve().parents[2]
_DB_FILE = _ROOT / "tmp" / "functional_tests.db"
_JOURNAL = _ROOT / "tmp" / "functional_tests_journal.json"
_DB_FILE.parent.mkdir(parents=True, exist_ok=True)
for _stale in (_DB_FILE, _JOURNAL):
    if _stale.exists():
        _stale.unlink()

# Use a file-backed SQLite DB to ensure persistence across connections
os.environ["TEST_DATABASE_URL"] = f"sqlite:///{_DB_FILE}"
os.environ["DATABASE_URL"] = os.environ["TEST_DATABASE_URL"]
# Disable app startup auto-migrations; they are applied explicitly below
os.environ["AUTO_APPLY_MIGRATIONS"] = "0"

# Child tables first
_TABLES = (
    "repeatable_group_responses",
    "question_responses",
    "form_submissions",
    "form_questions",
    "form_sections",
    "form_templates",
    "question_revisions",
    "question_dictionary",
    "viability_stages",
    "triage_stages",
    "technologies",
)


@pytest.fixture(scope="session", autouse=True)
def functional_sqlite_bootstrap():
    """Session-level bootstrap: apply migrations once for the shared DB."""
    from revision_engine.db.base import get_engine, reset_engine
    from revision_engine.db.migrations_runner import apply_migrations

    reset_engine()
    engine = get_engine(os.environ["TEST_DATABASE_URL"])
    apply_migrations(engine, journal_path=_JOURNAL)
    yield engine
    reset_engine()


@pytest.fixture(autouse=True)
def clean_tables(functional_sqlite_bootstrap):
    from revision_engine.logic.events import get_buffered_events

    with functional_sqlite_bootstrap.begin() as conn:
        for table in _TABLES:
            conn.exec_driver_sql(f"DELETE FROM {table}")
    get_buffered_events(clear=True)
    yield


@pytest.fixture
def engine(functional_sqlite_bootstrap):
    return functional_sqlite_bootstrap


class Seeder:
    """Inserts questions, templates and technologies through the engine's own APIs."""

    def __init__(self, engine) -> None:
        self.engine = engine

    def question(
        self,
        key: str,
        binding_path: str,
        *,
        label: Optional[str] = None,
        data_source: Optional[str] = None,
    ):
        from revision_engine.logic.question_revisions import create_question
        from revision_engine.models.template import DataSource

        if data_source is None:
            data_source = DataSource.TECHNOLOGY if binding_path.startswith("technology.") else DataSource.STAGE_SUPPLEMENT
        return create_question(
            key,
            label=label or key,
            binding_path=binding_path,
            data_source=data_source,
            engine=self.engine,
        )

    def template(
        self,
        sections: Iterable[Dict[str, Any]],
        *,
        template_id: str = "tpl-assessment",
        name: str = "Technology Assessment",
        is_active: bool = True,
    ):
        """Save a template from plain dicts.

        Each section is `{"code", "title", "questions": [...]}` and each
        question `{"field_code", "field_type", "dictionary_key"?, "is_required"?}`.
        """
        from revision_engine.logic.repository_templates import save_template
        from revision_engine.models.template import FormQuestion, FormSection, FormTemplate

        built = []
        for s_index, section in enumerate(sections):
            questions = [
                FormQuestion(
                    id=f"{template_id}-{q['field_code']}",
                    field_code=q["field_code"],
                    label=q.get("label", q["field_code"]),
                    field_type=q["field_type"],
                    is_required=q.get("is_required", False),
                    question_order=q_index,
                    dictionary_key=q.get("dictionary_key"),
                )
                for q_index, q in enumerate(section["questions"])
            ]
            built.append(
                FormSection(
                    id=f"{template_id}-{section['code']}",
                    code=section["code"],
                    title=section.get("title", section["code"]),
                    section_order=s_index,
                    questions=questions,
                )
            )
        template = FormTemplate(id=template_id, name=name, is_active=is_active, sections=built)
        return save_template(template, engine=self.engine)

    def technology(
        self,
        tech_id: str = "TECH-001",
        technology_name: str = "Widget",
        *,
        triage: Optional[Dict[str, Any]] = None,
        triage_extended: Any = None,
        viability: Optional[Dict[str, Any]] = None,
        viability_extended: Any = None,
        row_versions: Optional[Dict[str, int]] = None,
    ):
        """Insert a technology and optional stage rows.

        `*_extended` may be a dict (encoded as JSON) or a raw string stored
        verbatim. `row_versions` forces stored versions per root.
        """
        from revision_engine.db.base import transaction
        from revision_engine.logic.repository_technologies import (
            get_technology_by_id,
            insert_stage,
            insert_technology,
        )
        from revision_engine.logic.stores import coerce_column_value
        from revision_engine.models.technology import SCOPES

        def raw(extended: Any) -> Optional[str]:
            if extended is None or isinstance(extended, str):
                return extended
            return json.dumps(extended)

        def coerce(root: str, values: Dict[str, Any]) -> Dict[str, Any]:
            return {c: coerce_column_value(root, c, v) for c, v in values.items()}

        now = "2025-01-01T09:00:00Z"
        with transaction(self.engine) as conn:
            technology_id = insert_technology(
                conn,
                {"tech_id": tech_id, "technology_name": technology_name},
                user_id="seed",
                now=now,
            )
            if triage is not None:
                insert_stage(
                    conn, "triage_stage", technology_id, coerce("triage_stage", triage),
                    extended_data=raw(triage_extended), now=now,
                )
            if viability is not None:
                insert_stage(
                    conn, "viability_stage", technology_id, coerce("viability_stage", viability),
                    extended_data=raw(viability_extended), now=now,
                )
            for root, version in (row_versions or {}).items():
                key = "id" if root == "technology" else "technology_id"
                conn.exec_driver_sql(
                    f"UPDATE {SCOPES[root].table} SET row_version = ? WHERE {key} = ?",
                    (version, technology_id),
                )
            return get_technology_by_id(conn, technology_id)


@pytest.fixture
def seed(engine) -> Seeder:
    return Seeder(engine)


@pytest.fixture
def assessment(seed):
    """A template binding technology, triage and viability fields plus one form-local field."""
    questions = {
        "techId": seed.question("techId", "technology.tech_id"),
        "technologyName": seed.question("technologyName", "technology.technology_name"),
        "missionAlignmentScore": seed.question("missionAlignmentScore", "triage_stage.mission_alignment_score"),
        "triageOverview": seed.question("triageOverview", "triageStage.technologyOverview", label="Overview"),
        "competitors": seed.question("competitors", "triage_stage.competitors"),
        "viabilityRisk": seed.question("viabilityRisk", "viability_stage.risk"),
    }
    template = seed.template(
        [
            {
                "code": "details",
                "questions": [
                    {"field_code": "tech_id", "field_type": "SHORT_TEXT", "dictionary_key": "techId", "is_required": True},
                    {"field_code": "tech_name", "field_type": "SHORT_TEXT", "dictionary_key": "technologyName", "is_required": True},
                ],
            },
            {
                "code": "triage",
                "questions": [
                    {"field_code": "mission_score", "field_type": "SCORING_0_3", "dictionary_key": "missionAlignmentScore"},
                    {"field_code": "overview", "field_type": "LONG_TEXT", "dictionary_key": "triageOverview", "is_required": True},
                    {"field_code": "competitor_rows", "field_type": "REPEATABLE_GROUP", "dictionary_key": "competitors"},
                    {"field_code": "reviewer_comment", "field_type": "LONG_TEXT"},
                ],
            },
            {
                "code": "viability",
                "questions": [
                    {"field_code": "risk", "field_type": "LONG_TEXT", "dictionary_key": "viabilityRisk"},
                ],
            },
        ]
    )
    return SimpleNamespace(template=template, questions=questions)


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from revision_engine.main import create_app

    with TestClient(create_app()) as test_client:
        yield test_client
