"""Hydration: the initial values and answer statuses for a form.

Given a template and optionally a technology, builds the prefill payload the
UI renders. For a dictionary-bound question the value comes from the
structured column only, and the status comes from the stage row's
extended_data entry only; the two are read in the same pass and neither
depends on the other. A missing technology is not an error: it means a new
record with nothing to prefill.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Connection, Engine

from revision_engine.db.base import get_engine
from revision_engine.logic.answer_status import AnswerStatus, build_answer_metadata
from revision_engine.logic.bindings import binding_scope, collect_binding_metadata
from revision_engine.logic.errors import NotFoundError
from revision_engine.logic.repository_technologies import get_technology_by_tech_id
from revision_engine.logic.repository_templates import get_active_template, get_template_by_id
from revision_engine.logic.stores import MetadataStore, ValueStore, normalize_for_field
from revision_engine.models.answers import (
    AnswerMetadata,
    BindingMetadata,
    HydrationResult,
    TechnologyContext,
)
from revision_engine.models.technology import TechnologyAggregate
from revision_engine.models.template import FormTemplate, is_repeat_group

logger = logging.getLogger(__name__)


def load_template(conn: Connection, template_id: Optional[str] = None) -> FormTemplate:
    """Load the requested template, or the active one when no id is given."""
    if template_id:
        template = get_template_by_id(conn, template_id)
        if template is None:
            raise NotFoundError(f"Form template not found for id {template_id}")
        return template
    template = get_active_template(conn)
    if template is None:
        raise NotFoundError("No active form template found")
    return template


def fetch_template_with_bindings_by_id(template_id: str, *, engine: Engine | None = None) -> HydrationResult:
    """Load a template by id with its binding metadata and no prefill."""
    eng = engine or get_engine()
    with eng.connect() as conn:
        template = load_template(conn, template_id)
    return HydrationResult(template=template, binding_metadata=collect_binding_metadata(template))


def technology_context(technology: TechnologyAggregate) -> TechnologyContext:
    return TechnologyContext(
        id=technology.id,
        tech_id=technology.tech_id,
        technology_name=technology.technology.get("technology_name"),
        has_triage_stage=technology.triage_stage is not None,
        has_viability_stage=technology.viability_stage is not None,
    )


def hydrate_technology(
    template: FormTemplate,
    binding_metadata: Dict[str, BindingMetadata],
    technology: TechnologyAggregate,
) -> HydrationResult:
    """Build the prefill payload for a loaded technology."""
    values = ValueStore(technology)
    metadata = MetadataStore.from_technology(technology)

    initial_responses: Dict[str, Any] = {}
    initial_repeat_groups: Dict[str, List[Dict[str, Any]]] = {}
    answer_metadata: Dict[str, AnswerMetadata] = {}

    for question in template.iter_questions():
        code = question.field_code
        binding = binding_metadata.get(code)
        if binding is None:
            # Form-local question outside the versioning system
            answer_metadata[code] = AnswerMetadata(status=AnswerStatus.UNKNOWN)
            continue

        raw = values.read(binding.binding_path)
        if raw is not None:
            shaped = normalize_for_field(question.field_type, raw)
            if is_repeat_group(question.field_type):
                initial_repeat_groups[code] = shaped
            else:
                initial_responses[code] = shaped

        entry = metadata.entry(binding_scope(binding.binding_path), binding.dictionary_key)
        answer_metadata[code] = build_answer_metadata(
            binding.dictionary_key, entry, binding.current_revision_id
        )

    return HydrationResult(
        template=template,
        binding_metadata=binding_metadata,
        initial_responses=initial_responses,
        initial_repeat_groups=initial_repeat_groups,
        answer_metadata=answer_metadata,
        technology_context=technology_context(technology),
        row_versions=technology.row_versions(),
    )


def load_template_with_bindings(
    *,
    template_id: Optional[str] = None,
    tech_id: Optional[str] = None,
    engine: Engine | None = None,
) -> HydrationResult:
    """Load a template and, when `tech_id` resolves, prefill it from the technology."""
    eng = engine or get_engine()
    with eng.connect() as conn:
        template = load_template(conn, template_id)
        binding_metadata = collect_binding_metadata(template)
        if not tech_id:
            return HydrationResult(template=template, binding_metadata=binding_metadata)
        technology = get_technology_by_tech_id(conn, tech_id)

    if technology is None:
        logger.info("hydration_technology_not_found tech_id=%s template_id=%s", tech_id, template.id)
        return HydrationResult(template=template, binding_metadata=binding_metadata)

    result = hydrate_technology(template, binding_metadata, technology)
    logger.info(
        "hydration_completed template_id=%s tech_id=%s fields=%s stale=%s",
        template.id,
        tech_id,
        len(result.answer_metadata),
        sum(1 for m in result.answer_metadata.values() if m.status == AnswerStatus.STALE),
    )
    return result


__all__ = [
    "load_template",
    "fetch_template_with_bindings_by_id",
    "hydrate_technology",
    "load_template_with_bindings",
    "technology_context",
]
