"""APIRouter registration for the revision engine."""

from __future__ import annotations

from fastapi import APIRouter

from revision_engine.routes.form_submissions import router as form_submissions_router
from revision_engine.routes.hydration import router as hydration_router
from revision_engine.routes.questions import router as questions_router

api_router = APIRouter()
api_router.include_router(hydration_router, tags=["Hydration"])
api_router.include_router(form_submissions_router, tags=["FormSubmissions"])
api_router.include_router(questions_router, tags=["Questions", "Revisions"])

__all__ = ["api_router"]
