"""Hydration route: prefill values and answer statuses for a form."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Query

from revision_engine.logic.hydration import load_template_with_bindings
from revision_engine.models.answers import HydrationResult

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/hydration", summary="Hydrate a form template for a technology", response_model=HydrationResult)
def get_hydration(
    template_id: Optional[str] = Query(default=None),
    tech_id: Optional[str] = Query(default=None),
) -> HydrationResult:
    """Return the template with initial responses, answer metadata and row versions.

    Without `template_id` the active template is used. An unknown `tech_id`
    yields an empty prefill rather than an error.
    """
    return load_template_with_bindings(template_id=template_id, tech_id=tech_id)


__all__ = ["router", "get_hydration"]
