"""Codec for the per-row `extended_data` bag of versioned answers.

The bag is one JSON object per stage row, keyed by dictionary key:

    {"triageNotes": {"value": "...", "questionRevisionId": "rev-1",
                     "answeredAt": "2025-01-01T10:00:00Z", "source": "triage_stage"}}

It only carries revision-tracking metadata, so parsing is tolerant: bad
entries are skipped and logged, a bad document parses as empty. Encoding is
a superset merge over the raw stored document, so keys outside the current
update batch survive untouched, including entries this codec cannot parse.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

from revision_engine.logic.errors import MalformedMetadataError
from revision_engine.models.answers import VersionedAnswer

logger = logging.getLogger(__name__)


def _load_document(raw: Any, scope: str) -> Dict[str, Any]:
    """Return the stored bag as a plain dict, or {} when it is unusable."""
    if raw is None:
        return {}
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("extended_data_unparsable scope=%s error=%s", scope, exc)
            return {}
    if not isinstance(raw, dict):
        logger.warning("extended_data_not_object scope=%s type=%s", scope, type(raw).__name__)
        return {}
    return dict(raw)


def _parse_entry(scope: str, key: str, entry: Any) -> VersionedAnswer:
    if not isinstance(entry, dict):
        raise MalformedMetadataError(scope, key, "entry is not an object")
    revision_id = entry.get("questionRevisionId")
    if not isinstance(revision_id, str) or not revision_id:
        raise MalformedMetadataError(scope, key, "questionRevisionId missing or not a string")
    answered_at = entry.get("answeredAt")
    source = entry.get("source")
    return VersionedAnswer(
        value=entry.get("value"),
        question_revision_id=revision_id,
        answered_at=answered_at if isinstance(answered_at, str) else None,
        source=source if isinstance(source, str) else None,
    )


def parse_extended_data(raw: Any, scope: str) -> Dict[str, VersionedAnswer]:
    """Parse a stored bag into `{dictionary_key: VersionedAnswer}`.

    Accepts a JSON string, bytes, an already-decoded dict or None. Never
    raises for bad content; the affected entries simply report no metadata.
    """
    document = _load_document(raw, scope)
    parsed: Dict[str, VersionedAnswer] = {}
    for key, entry in document.items():
        try:
            parsed[str(key)] = _parse_entry(scope, str(key), entry)
        except MalformedMetadataError as exc:
            logger.warning("extended_data_entry_skipped scope=%s key=%s reason=%s", exc.scope, exc.key, exc.reason)
    return parsed


def merge_extended_data(
    existing: Any,
    updates: Mapping[str, VersionedAnswer],
    scope: str = "unknown",
) -> Dict[str, Any]:
    """Merge `updates` into a stored bag and return the new dict.

    Only the raw stored document keeps every key: a map returned by
    parse_extended_data has already lost the entries that failed to parse.
    """
    merged: Dict[str, Any] = {
        key: entry.to_document() if isinstance(entry, VersionedAnswer) else entry
        for key, entry in _load_document(existing, scope).items()
    }
    for key, answer in updates.items():
        merged[key] = answer.to_document()
    return merged


def encode_extended_data(
    existing: Any,
    updates: Mapping[str, VersionedAnswer],
    scope: str = "unknown",
) -> str:
    """Encode the superset merge of `existing` and `updates` as JSON text.

    `existing` may be the raw stored value (str, bytes, dict, None) or a map
    previously returned by parse_extended_data. Pass the raw value when
    unparsable entries must survive; MetadataStore.encode always does.
    """
    merged = merge_extended_data(existing, updates, scope)
    return json.dumps(merged, ensure_ascii=False, sort_keys=True, default=str)


def build_versioned_answer(
    value: Any,
    revision_id: str,
    answered_at: Optional[str],
    source: Optional[str],
) -> VersionedAnswer:
    return VersionedAnswer(
        value=value,
        question_revision_id=revision_id,
        answered_at=answered_at,
        source=source,
    )


__all__ = [
    "VersionedAnswer",
    "parse_extended_data",
    "merge_extended_data",
    "encode_extended_data",
    "build_versioned_answer",
]
