"""Domain exceptions raised by the revision engine.

Lookup misses on binding paths are not errors and have no exception type;
the resolver returns None for them.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class RevisionEngineError(Exception):
    """Base class for domain errors surfaced to callers."""


class NotFoundError(RevisionEngineError):
    """A template, question or submission required by the caller is missing."""


class OptimisticLockError(RevisionEngineError):
    """A conditional write affected zero rows: someone else wrote first."""

    def __init__(
        self,
        scope: str,
        record_id: Optional[str] = None,
        expected_row_version: Optional[int] = None,
        message: Optional[str] = None,
    ) -> None:
        self.scope = scope
        self.record_id = record_id
        self.expected_row_version = expected_row_version
        super().__init__(
            message
            or f"{scope} id={record_id} was modified concurrently (expected row_version {expected_row_version})"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": self.scope,
            "record_id": self.record_id,
            "expected_row_version": self.expected_row_version,
        }


class MalformedMetadataError(RevisionEngineError):
    """An extended_data entry failed to parse. Always contained by the codec."""

    def __init__(self, scope: str, key: Optional[str], reason: str) -> None:
        self.scope = scope
        self.key = key
        self.reason = reason
        super().__init__(f"malformed metadata scope={scope} key={key}: {reason}")


class IncompleteSubjectError(RevisionEngineError, ValueError):
    """A technology cannot be created without its identifying fields."""

    def __init__(self, missing: List[str]) -> None:
        self.missing = list(missing)
        super().__init__(
            "Technology ID and name are required to create a technology: missing "
            + ", ".join(self.missing)
        )


class InvalidFieldValueError(RevisionEngineError, ValueError):
    """A submitted value cannot be stored in its bound column."""

    def __init__(self, field: str, kind: str, value: object) -> None:
        self.field = field
        self.kind = kind
        super().__init__(f"Value {value!r} is not a valid {kind} for {field}")


class SubmissionIncompleteError(RevisionEngineError, ValueError):
    """A submission was finalised with required questions left unanswered."""

    def __init__(self, missing_field_codes: List[str]) -> None:
        self.missing_field_codes = list(missing_field_codes)
        super().__init__("Required questions are unanswered: " + ", ".join(self.missing_field_codes))


__all__ = [
    "RevisionEngineError",
    "NotFoundError",
    "OptimisticLockError",
    "MalformedMetadataError",
    "IncompleteSubjectError",
    "InvalidFieldValueError",
    "SubmissionIncompleteError",
]
