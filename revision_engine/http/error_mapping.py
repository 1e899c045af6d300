"""Central error mapping for domain exceptions.

Single source of truth for mapping engine errors to problem+json codes,
titles and HTTP statuses. Handlers must look codes up here instead of
hardcoding strings or numbers.
"""

from __future__ import annotations

from revision_engine.logic.errors import (
    IncompleteSubjectError,
    InvalidFieldValueError,
    NotFoundError,
    OptimisticLockError,
    SubmissionIncompleteError,
)

CONFLICT_MESSAGE = "This record was updated by someone else. Reload the form and try again."

NOT_FOUND = {"code": "NOT_FOUND", "status": 404, "title": "Not Found"}
ROW_VERSION_CONFLICT = {"code": "ROW_VERSION_CONFLICT", "status": 409, "title": "Record Updated Elsewhere"}
SUBJECT_INCOMPLETE = {"code": "SUBJECT_INCOMPLETE", "status": 422, "title": "Technology Incomplete"}
SUBMISSION_INCOMPLETE = {"code": "SUBMISSION_INCOMPLETE", "status": 422, "title": "Submission Incomplete"}
INVALID_FIELD_VALUE = {"code": "INVALID_FIELD_VALUE", "status": 422, "title": "Invalid Field Value"}

# Order matters: the first matching class wins
DOMAIN_ERROR_MAP = (
    (OptimisticLockError, ROW_VERSION_CONFLICT),
    (NotFoundError, NOT_FOUND),
    (IncompleteSubjectError, SUBJECT_INCOMPLETE),
    (SubmissionIncompleteError, SUBMISSION_INCOMPLETE),
    (InvalidFieldValueError, INVALID_FIELD_VALUE),
)


def lookup(exc: BaseException) -> dict | None:
    for exc_type, mapping in DOMAIN_ERROR_MAP:
        if isinstance(exc, exc_type):
            return mapping
    return None


__all__ = ["DOMAIN_ERROR_MAP", "CONFLICT_MESSAGE", "lookup"]
