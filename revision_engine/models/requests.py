"""Pydantic request bodies for the HTTP adapter."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from revision_engine.models.submission import FormSubmissionData, SubmissionStatus


class CreateRevisionRequest(BaseModel):
    label: Optional[str] = None
    help_text: Optional[str] = None
    options: Any = None
    validation: Any = None
    significant: bool = True
    change_reason: Optional[str] = None

    def content(self) -> Dict[str, Any]:
        """Only the fields the client actually sent; the rest carry over."""
        return self.model_dump(
            include={"label", "help_text", "options", "validation"},
            exclude_unset=True,
        )


class FormSubmissionRequest(FormSubmissionData):
    status: str = Field(default=SubmissionStatus.DRAFT, pattern="^(DRAFT|SUBMITTED)$")


__all__ = ["CreateRevisionRequest", "FormSubmissionRequest"]
