"""The two storage tiers behind a bound question.

`ValueStore` reads and prepares values for the structured columns of the
technology and its stage rows. `MetadataStore` reads and merges the per-row
`extended_data` bags. Hydration and the write service compose both: the value
of a dictionary-bound field always comes from the ValueStore, its revision
metadata always from the MetadataStore.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from revision_engine.db.base import decode_json_column
from revision_engine.logic.bindings import resolve_binding_value, split_binding_path
from revision_engine.logic.errors import InvalidFieldValueError
from revision_engine.logic.metadata_codec import encode_extended_data, parse_extended_data
from revision_engine.models.answers import VersionedAnswer
from revision_engine.models.technology import (
    SCOPES,
    STAGE_ROOTS,
    ColumnKind,
    TechnologyAggregate,
    column_kind,
)
from revision_engine.models.template import MULTI_VALUE_TYPES, is_repeat_group

logger = logging.getLogger(__name__)


def normalize_row_list(value: Any) -> List[Dict[str, Any]]:
    """Return a repeated-group value as a list of row dicts."""
    if isinstance(value, str):
        if not value.strip():
            return []
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            logger.warning("repeat_group_value_unparsable length=%s", len(value))
            return []
    if not isinstance(value, list):
        return []
    return [dict(row) for row in value if isinstance(row, dict)]


def normalize_for_field(field_type: str, value: Any) -> Any:
    """Shape a stored value for the field type it is displayed as."""
    if is_repeat_group(field_type):
        return normalize_row_list(value)
    if field_type in MULTI_VALUE_TYPES:
        if value is None:
            return []
        if isinstance(value, str):
            decoded = decode_json_column(value)
            if isinstance(decoded, list):
                return decoded
            return [value] if value.strip() else []
        if isinstance(value, list):
            return value
        return [value]
    return value


def coerce_column_value(root: str, column: str, value: Any) -> Any:
    """Convert a submitted value into the bind value for a registered column.

    JSON columns are returned encoded; callers bind them with `json_param`.
    """
    kind = SCOPES[root].columns[column]
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if kind == ColumnKind.JSON:
        return json.dumps(value, ensure_ascii=False, default=str)
    if kind == ColumnKind.TEXT:
        if isinstance(value, (list, dict)):
            return json.dumps(value, ensure_ascii=False, default=str)
        return str(value)
    try:
        if kind == ColumnKind.INTEGER:
            if isinstance(value, bool):
                return int(value)
            number = float(value)
            if not number.is_integer():
                raise ValueError(value)
            return int(number)
        if kind == ColumnKind.NUMBER:
            if isinstance(value, bool):
                raise ValueError(value)
            return float(value)
    except (TypeError, ValueError):
        raise InvalidFieldValueError(f"{root}.{column}", kind, value) from None
    return value


class ValueStore:
    """Structured-column tier: reads bound values off a loaded technology."""

    def __init__(self, technology: Optional[TechnologyAggregate]) -> None:
        self.technology = technology

    def read(self, binding_path: str) -> Any:
        value = resolve_binding_value(binding_path, self.technology)
        if value is None:
            return None
        root, column = split_binding_path(binding_path)
        if column_kind(root, column) == ColumnKind.JSON:
            return decode_json_column(value)
        return value

    def record(self, root: str) -> Optional[Dict[str, Any]]:
        if self.technology is None:
            return None
        return self.technology.scope_record(root)


class MetadataStore:
    """Extended-data tier: one parsed bag per stage row.

    Each bag is parsed once on construction. A bag that fails to parse
    degrades its scope to no metadata.
    """

    def __init__(self, documents: Mapping[str, Any]) -> None:
        self._raw: Dict[str, Any] = dict(documents)
        self._parsed: Dict[str, Dict[str, VersionedAnswer]] = {
            scope: parse_extended_data(raw, scope) for scope, raw in self._raw.items()
        }

    @classmethod
    def from_technology(cls, technology: Optional[TechnologyAggregate]) -> "MetadataStore":
        documents: Dict[str, Any] = {}
        if technology is not None:
            for root in STAGE_ROOTS:
                record = technology.scope_record(root)
                if record is not None:
                    documents[root] = record.get("extended_data")
        return cls(documents)

    def entry(self, scope: Optional[str], dictionary_key: str) -> Optional[VersionedAnswer]:
        if scope is None:
            return None
        return self._parsed.get(scope, {}).get(dictionary_key)

    def entries(self, scope: str) -> Dict[str, VersionedAnswer]:
        return dict(self._parsed.get(scope, {}))

    def encode(self, scope: str, updates: Mapping[str, VersionedAnswer]) -> str:
        """Return the scope's stored bag merged with `updates` as JSON text."""
        return encode_extended_data(self._raw.get(scope), updates, scope)


__all__ = [
    "ValueStore",
    "MetadataStore",
    "normalize_row_list",
    "normalize_for_field",
    "coerce_column_value",
]
