"""Functional tests for binding path resolution and binding metadata collection."""

from __future__ import annotations

import logging

import pytest

from revision_engine.logic.bindings import (
    binding_scope,
    collect_binding_metadata,
    group_bindings_by_root,
    resolve_binding_value,
    split_binding_path,
)
from revision_engine.models.answers import BindingMetadata
from revision_engine.models.technology import TechnologyAggregate
from revision_engine.models.template import (
    DataSource,
    FormQuestion,
    FormSection,
    FormTemplate,
    QuestionDictionary,
)


@pytest.fixture
def technology() -> TechnologyAggregate:
    return TechnologyAggregate(
        technology={"id": "t-1", "tech_id": "TECH-001", "technology_name": "Widget", "row_version": 3},
        triage_stage={"id": "s-1", "technology_overview": "x", "mission_alignment_score": 2, "row_version": 5},
        viability_stage=None,
    )


@pytest.mark.parametrize(
    "path, expected",
    [
        ("technology.technology_name", ("technology", "technology_name")),
        ("triage_stage.technology_overview", ("triage_stage", "technology_overview")),
        ("triageStage.missionAlignmentScore", ("triage_stage", "mission_alignment_score")),
        ("viabilityStage.risk", ("viability_stage", "risk")),
        (" technology . tech_id ", ("technology", "tech_id")),
    ],
)
def test_split_binding_path_normalises_two_segment_paths(path, expected):
    assert split_binding_path(path) == expected


@pytest.mark.parametrize("path", ["technology", "a.b.c", "", ".tech_id", "technology.", None, 42])
def test_split_binding_path_rejects_wrong_shapes(path):
    assert split_binding_path(path) is None


def test_resolve_binding_value_reads_structured_columns(technology):
    assert resolve_binding_value("technology.technology_name", technology) == "Widget"
    assert resolve_binding_value("triageStage.technologyOverview", technology) == "x"
    assert resolve_binding_value("triage_stage.mission_alignment_score", technology) == 2


@pytest.mark.parametrize(
    "path",
    [
        "unknownRoot.technology_name",
        "technology.not_a_column",
        "technology",
        "technology.technology_name.extra",
        "viability_stage.risk",
        # extended_data is metadata, not a bindable column
        "triage_stage.extended_data",
    ],
)
def test_resolve_binding_value_lookup_miss_returns_none(technology, path):
    assert resolve_binding_value(path, technology) is None


def test_resolve_binding_value_without_technology_returns_none():
    assert resolve_binding_value("technology.technology_name", None) is None


def test_binding_scope_names_the_written_root():
    assert binding_scope("triageStage.notes") == "triage_stage"
    assert binding_scope("technology.tech_id") == "technology"
    assert binding_scope("nowhere.notes") is None


def _template() -> FormTemplate:
    overview = QuestionDictionary(
        question_key="triageOverview",
        binding_path="triage_stage.technology_overview",
        data_source=DataSource.STAGE_SUPPLEMENT,
        current_revision_id="rev-2",
    )
    name = QuestionDictionary(
        question_key="technologyName",
        binding_path="technology.technology_name",
        current_revision_id="rev-1",
    )
    return FormTemplate(
        id="tpl",
        name="T",
        sections=[
            FormSection(
                id="s2",
                code="triage",
                title="Triage",
                section_order=1,
                questions=[
                    FormQuestion(id="q3", field_code="local_note", label="Note", field_type="LONG_TEXT", question_order=1),
                    FormQuestion(
                        id="q2",
                        field_code="overview",
                        label="Overview",
                        field_type="LONG_TEXT",
                        question_order=0,
                        dictionary_key="triageOverview",
                        dictionary=overview,
                    ),
                ],
            ),
            FormSection(
                id="s1",
                code="details",
                title="Details",
                section_order=0,
                questions=[
                    FormQuestion(
                        id="q1",
                        field_code="tech_name",
                        label="Name",
                        field_type="SHORT_TEXT",
                        dictionary_key="technologyName",
                        dictionary=name,
                    )
                ],
            ),
        ],
    )


def test_collect_binding_metadata_excludes_form_local_questions_and_keeps_display_order():
    metadata = collect_binding_metadata(_template())

    assert list(metadata) == ["tech_name", "overview"]
    overview = metadata["overview"]
    assert overview.dictionary_key == "triageOverview"
    assert overview.current_revision_id == "rev-2"
    assert overview.binding_path == "triage_stage.technology_overview"
    assert overview.data_source == DataSource.STAGE_SUPPLEMENT
    assert overview.field_type == "LONG_TEXT"


def test_group_bindings_by_root_skips_unresolvable_paths(caplog):
    bindings = {
        "tech_name": BindingMetadata(
            field_code="tech_name", dictionary_key="technologyName", binding_path="technology.technology_name",
            data_source=DataSource.TECHNOLOGY, field_type="SHORT_TEXT",
        ),
        "overview": BindingMetadata(
            field_code="overview", dictionary_key="triageOverview", binding_path="triageStage.technologyOverview",
            data_source=DataSource.STAGE_SUPPLEMENT, field_type="LONG_TEXT",
        ),
        "broken": BindingMetadata(
            field_code="broken", dictionary_key="broken", binding_path="triage_stage.no_such_column",
            data_source=DataSource.STAGE_SUPPLEMENT, field_type="LONG_TEXT",
        ),
    }

    with caplog.at_level(logging.WARNING, logger="revision_engine.logic.bindings"):
        groups = group_bindings_by_root(bindings)

    assert set(groups) == {"technology", "triage_stage"}
    assert [b.column for b in groups["triage_stage"]] == ["technology_overview"]
    assert any("binding_path_unresolved field_code=broken" in r.getMessage() for r in caplog.records)
