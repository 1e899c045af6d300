"""Functional tests for saving drafts and submissions.

Each save writes through to the technology and appends a snapshot of the
form's answers; unchanged answers keep the revision they were given under.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from revision_engine.logic.answer_status import AnswerStatus
from revision_engine.logic.binding_writes import DRAFT_TECH_ID_PREFIX
from revision_engine.logic.errors import (
    IncompleteSubjectError,
    NotFoundError,
    OptimisticLockError,
    SubmissionIncompleteError,
)
from revision_engine.logic.events import BINDING_WRITE_COMMITTED, SUBMISSION_SAVED, get_buffered_events
from revision_engine.logic.form_submissions import (
    SUBMISSION_SCOPE,
    load_submission_records,
    rebuild_submission_metadata,
    save_form_submission,
)
from revision_engine.logic.hydration import load_template_with_bindings
from revision_engine.logic.question_revisions import create_revision, get_current_revision_id
from revision_engine.logic.repository_technologies import get_technology_by_tech_id
from revision_engine.models.submission import FormSubmissionData, SubmissionStatus

FIRST_SAVE = datetime(2025, 4, 1, 9, 0, tzinfo=timezone.utc)
SECOND_SAVE = datetime(2025, 4, 2, 9, 0, tzinfo=timezone.utc)


def _data(template_id, **overrides) -> FormSubmissionData:
    values = {
        "template_id": template_id,
        "responses": {"tech_id": "TECH-200", "tech_name": "Sensor", "overview": "x", "reviewer_comment": "ok"},
        "repeat_groups": {"competitor_rows": [{"name": "Acme"}, {"name": "Globex"}]},
    }
    values.update(overrides)
    return FormSubmissionData(**values)


def _count(engine, table):
    with engine.connect() as conn:
        return conn.exec_driver_sql(f"SELECT COUNT(*) FROM {table}").scalar()


def test_first_draft_save_writes_technology_and_snapshot(assessment, engine):
    result = save_form_submission(_data(assessment.template.id), user_id="user-1", now=FIRST_SAVE)

    assert result.status == SubmissionStatus.DRAFT
    assert result.save_sequence == 1
    assert result.row_version == 1
    assert result.tech_id == "TECH-200"
    assert result.row_versions.technology_row_version == 1
    assert result.row_versions.triage_stage_row_version == 1
    assert result.answer_metadata["overview"].status == AnswerStatus.FRESH
    assert result.answer_metadata["competitor_rows"].status == AnswerStatus.FRESH
    assert "reviewer_comment" not in result.answer_metadata

    with engine.connect() as conn:
        technology = get_technology_by_tech_id(conn, "TECH-200")
    assert technology.id == result.technology_id
    assert technology.triage_stage["technology_overview"] == "x"

    records = load_submission_records(result.submission_id)
    by_code = {r.question_code: r for r in records.responses}
    assert set(by_code) == {"tech_id", "tech_name", "overview", "reviewer_comment"}
    assert by_code["overview"].question_revision_id == get_current_revision_id("triageOverview")
    assert by_code["overview"].answered_at == "2025-04-01T09:00:00Z"
    assert by_code["reviewer_comment"].question_revision_id is None
    assert [(r.row_index, r.data["name"]) for r in records.repeat_groups] == [(0, "Acme"), (1, "Globex")]


def test_snapshots_are_appended_not_updated(assessment, engine):
    first = save_form_submission(_data(assessment.template.id), now=FIRST_SAVE)
    second = save_form_submission(
        _data(
            assessment.template.id,
            submission_id=first.submission_id,
            submission_row_version=first.row_version,
            row_versions=first.row_versions,
        ),
        now=SECOND_SAVE,
    )

    assert second.submission_id == first.submission_id
    assert second.save_sequence == 2
    assert second.row_version == 2
    assert _count(engine, "question_responses") == 8
    assert _count(engine, "repeatable_group_responses") == 4
    assert load_submission_records(first.submission_id).save_sequence == 2


def test_unchanged_answer_keeps_its_original_revision(assessment, engine):
    first = save_form_submission(_data(assessment.template.id), now=FIRST_SAVE)
    original_revision = get_current_revision_id("triageOverview")
    create_revision("triageOverview", {"label": "Overview (reworded)"})

    second = save_form_submission(
        _data(
            assessment.template.id,
            submission_id=first.submission_id,
            submission_row_version=first.row_version,
            row_versions=first.row_versions,
        ),
        now=SECOND_SAVE,
    )

    assert second.answer_metadata["overview"].status == AnswerStatus.STALE
    records = {r.question_code: r for r in load_submission_records(first.submission_id).responses}
    assert records["overview"].question_revision_id == original_revision
    assert records["overview"].answered_at == "2025-04-01T09:00:00Z"
    assert rebuild_submission_metadata(first.submission_id)["overview"].status == AnswerStatus.STALE


def test_changed_answer_is_restamped_with_current_revision(assessment):
    first = save_form_submission(_data(assessment.template.id), now=FIRST_SAVE)
    revision = create_revision("triageOverview", {"label": "Overview (reworded)"})
    responses = {"tech_id": "TECH-200", "tech_name": "Sensor", "overview": "rewritten"}

    second = save_form_submission(
        _data(
            assessment.template.id,
            submission_id=first.submission_id,
            submission_row_version=first.row_version,
            row_versions=first.row_versions,
            responses=responses,
        ),
        now=SECOND_SAVE,
    )

    overview = second.answer_metadata["overview"]
    assert overview.status == AnswerStatus.FRESH
    assert overview.saved_revision_id == revision.id
    assert overview.answered_at == "2025-04-02T09:00:00Z"


def test_one_changed_row_in_group_after_edit_leaves_group_stale(assessment):
    first = save_form_submission(_data(assessment.template.id), now=FIRST_SAVE)
    create_revision("competitors", {"label": "Competitors (reworded)"})

    second = save_form_submission(
        _data(
            assessment.template.id,
            submission_id=first.submission_id,
            submission_row_version=first.row_version,
            row_versions=first.row_versions,
            repeat_groups={"competitor_rows": [{"name": "Acme"}, {"name": "Initech"}]},
        ),
        now=SECOND_SAVE,
    )

    assert second.answer_metadata["competitor_rows"].status == AnswerStatus.STALE
    rows = load_submission_records(first.submission_id).repeat_groups
    assert rows[0].answered_at == "2025-04-01T09:00:00Z"
    assert rows[1].answered_at == "2025-04-02T09:00:00Z"


def test_incomplete_draft_creates_placeholder_technology(assessment):
    result = save_form_submission(
        _data(assessment.template.id, responses={"tech_name": "Unnamed idea"}, repeat_groups={}),
    )

    assert result.tech_id.startswith(DRAFT_TECH_ID_PREFIX)
    assert load_submission_records(result.submission_id).tech_id == result.tech_id


def test_incomplete_draft_rejected_when_drafts_must_be_complete(assessment, engine):
    with pytest.raises(IncompleteSubjectError):
        save_form_submission(
            _data(assessment.template.id, responses={"tech_name": "Unnamed idea"}, repeat_groups={}),
            allow_incomplete_drafts=False,
        )
    assert _count(engine, "form_submissions") == 0


def test_submit_requires_every_required_answer(assessment, engine):
    data = _data(assessment.template.id, responses={"tech_id": "TECH-200", "tech_name": "Sensor", "overview": "  "})

    with pytest.raises(SubmissionIncompleteError) as excinfo:
        save_form_submission(data, status=SubmissionStatus.SUBMITTED)

    assert excinfo.value.missing_field_codes == ["overview"]
    assert _count(engine, "form_submissions") == 0
    assert _count(engine, "technologies") == 0


def test_submit_records_status_and_publishes_events(assessment):
    get_buffered_events(clear=True)

    result = save_form_submission(_data(assessment.template.id), status=SubmissionStatus.SUBMITTED, now=FIRST_SAVE)

    assert result.status == SubmissionStatus.SUBMITTED
    assert load_submission_records(result.submission_id).status == SubmissionStatus.SUBMITTED
    types = [e["type"] for e in get_buffered_events()]
    assert types == [BINDING_WRITE_COMMITTED, SUBMISSION_SAVED]


def test_stale_submission_row_version_conflicts(assessment, engine):
    first = save_form_submission(_data(assessment.template.id), now=FIRST_SAVE)
    second = save_form_submission(
        _data(
            assessment.template.id,
            submission_id=first.submission_id,
            submission_row_version=1,
            row_versions=first.row_versions,
        ),
        now=SECOND_SAVE,
    )

    with pytest.raises(OptimisticLockError) as excinfo:
        save_form_submission(
            _data(
                assessment.template.id,
                submission_id=first.submission_id,
                submission_row_version=1,
                row_versions=second.row_versions,
            ),
            now=SECOND_SAVE,
        )

    assert excinfo.value.scope == SUBMISSION_SCOPE
    assert load_submission_records(first.submission_id).save_sequence == 2


def test_existing_submission_needs_its_row_version(assessment):
    first = save_form_submission(_data(assessment.template.id), now=FIRST_SAVE)

    with pytest.raises(OptimisticLockError) as excinfo:
        save_form_submission(
            _data(assessment.template.id, submission_id=first.submission_id, row_versions=first.row_versions),
            now=SECOND_SAVE,
        )

    assert excinfo.value.scope == SUBMISSION_SCOPE
    assert excinfo.value.expected_row_version is None
    assert load_submission_records(first.submission_id).save_sequence == 1


def test_first_save_of_a_prefilled_form_keeps_stale_answers_stale(assessment, seed):
    first_revision = assessment.questions["triageOverview"].current_revision_id
    seed.technology(
        triage={"technology_overview": "x"},
        triage_extended={"triageOverview": {"value": "x", "questionRevisionId": first_revision}},
    )
    create_revision("triageOverview", {"label": "Overview (reworded)"})
    hydrated = load_template_with_bindings(template_id=assessment.template.id, tech_id="TECH-001")
    assert hydrated.answer_metadata["overview"].status == AnswerStatus.STALE

    result = save_form_submission(
        FormSubmissionData(
            template_id=assessment.template.id,
            tech_id="TECH-001",
            responses={**hydrated.initial_responses, "risk": "high"},
            repeat_groups=hydrated.initial_repeat_groups,
            row_versions=hydrated.row_versions,
        ),
        now=FIRST_SAVE,
    )

    overview = result.answer_metadata["overview"]
    assert overview.status == AnswerStatus.STALE
    assert overview.saved_revision_id == first_revision
    assert result.answer_metadata["tech_name"].status == AnswerStatus.UNKNOWN
    assert result.answer_metadata["risk"].status == AnswerStatus.FRESH
    rebuilt = rebuild_submission_metadata(result.submission_id)
    assert rebuilt["overview"].status == AnswerStatus.STALE
    assert rebuilt["risk"].status == AnswerStatus.FRESH
    rehydrated = load_template_with_bindings(template_id=assessment.template.id, tech_id="TECH-001")
    assert rehydrated.answer_metadata["overview"].status == AnswerStatus.STALE


def test_first_save_naming_an_existing_technology_without_versions_conflicts(assessment, seed, engine):
    seed.technology(triage={"technology_overview": "original"})

    with pytest.raises(OptimisticLockError):
        save_form_submission(
            _data(assessment.template.id, responses={"tech_id": "TECH-001", "tech_name": "Other", "overview": "y"}),
        )

    assert _count(engine, "form_submissions") == 0
    with engine.connect() as conn:
        assert get_technology_by_tech_id(conn, "TECH-001").technology["technology_name"] == "Widget"


def test_unknown_submission_is_not_found(assessment):
    with pytest.raises(NotFoundError):
        save_form_submission(_data(assessment.template.id, submission_id="missing"))
    with pytest.raises(NotFoundError):
        load_submission_records("missing")
    with pytest.raises(NotFoundError):
        rebuild_submission_metadata("missing")


def test_unsupported_status_is_rejected(assessment):
    with pytest.raises(ValueError):
        save_form_submission(_data(assessment.template.id), status="ARCHIVED")
