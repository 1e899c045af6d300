"""Problem+JSON utilities and global exception handlers.

Defines the RFC7807 media type and handler callables that produce
application/problem+json responses. A row-version conflict is rendered with
its own code and a reload-and-retry message so clients can tell it apart
from a generic failure.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from revision_engine.http.error_mapping import CONFLICT_MESSAGE, ROW_VERSION_CONFLICT, lookup
from revision_engine.logic.errors import (
    IncompleteSubjectError,
    OptimisticLockError,
    RevisionEngineError,
    SubmissionIncompleteError,
)

PROBLEM_MEDIA_TYPE = "application/problem+json"

logger = logging.getLogger(__name__)


def _problem(body: dict, status: int) -> JSONResponse:
    return JSONResponse(body, status_code=status, media_type=PROBLEM_MEDIA_TYPE)


async def handle_domain_error(request: Request, exc: RevisionEngineError) -> JSONResponse:  # noqa: D401
    mapping = lookup(exc)
    if mapping is None:
        logger.error("unmapped_domain_error type=%s", type(exc).__name__, exc_info=exc)
        return _problem({"title": "Internal Server Error", "status": 500}, 500)

    problem = {
        "type": f"about:blank#{mapping['code']}",
        "title": mapping["title"],
        "status": mapping["status"],
        "code": mapping["code"],
        "detail": str(exc),
    }
    if isinstance(exc, OptimisticLockError):
        problem["detail"] = CONFLICT_MESSAGE
        problem["conflict"] = exc.to_dict()
    elif isinstance(exc, IncompleteSubjectError):
        problem["missing"] = exc.missing
    elif isinstance(exc, SubmissionIncompleteError):
        problem["missing"] = exc.missing_field_codes

    if mapping is ROW_VERSION_CONFLICT:
        logger.warning("problem_conflict path=%s scope=%s", request.url.path, getattr(exc, "scope", None))
    else:
        logger.info("problem_response path=%s code=%s", request.url.path, mapping["code"])
    return _problem(problem, mapping["status"])


async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:  # noqa: D401
    status = int(exc.status_code or 500)
    if isinstance(exc.detail, dict):
        detail = dict(exc.detail)
        detail.setdefault("status", status)
    else:
        detail = {"title": "Error", "status": status, "detail": str(exc.detail or "")}
    return JSONResponse(
        detail,
        status_code=status,
        media_type=PROBLEM_MEDIA_TYPE,
        headers=dict(exc.headers) if exc.headers else None,
    )


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:  # noqa: D401
    problem = {
        "title": "Invalid Request",
        "status": 422,
        "detail": "Request validation failed",
        "errors": [
            {"loc": list(e.get("loc", ())), "msg": str(e.get("msg", "")), "type": str(e.get("type", ""))}
            for e in exc.errors()
        ],
    }
    return _problem(problem, 422)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:  # noqa: D401
    logger.error("unexpected_error path=%s", request.url.path, exc_info=exc)
    return _problem({"title": "Internal Server Error", "status": 500}, 500)


__all__ = [
    "PROBLEM_MEDIA_TYPE",
    "handle_domain_error",
    "handle_http_exception",
    "handle_request_validation_error",
    "handle_unexpected_error",
]
