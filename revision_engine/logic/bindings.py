"""Binding resolution between template questions and technology records.

A binding path is `<root>.<field>`: the root names the technology record or
one of its stage rows, the field names a registered column on it. Paths that
do not resolve are lookup misses and yield None, never an exception.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from revision_engine.models.answers import BindingMetadata
from revision_engine.models.technology import SCOPES, TechnologyAggregate
from revision_engine.models.template import FormTemplate

logger = logging.getLogger(__name__)

# Stored paths authored before the snake_case registry use camelCase
_ROOT_ALIASES = {
    "triageStage": "triage_stage",
    "viabilityStage": "viability_stage",
}
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


class BoundField(NamedTuple):
    field_code: str
    column: str
    binding: BindingMetadata


def _to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def split_binding_path(path: Any) -> Optional[Tuple[str, str]]:
    """Split a binding path into `(root, field)`.

    Only paths with exactly two non-empty segments are valid. Known camelCase
    roots and fields are normalised to the registry's snake_case names.
    """
    if not isinstance(path, str):
        return None
    parts = path.strip().split(".")
    if len(parts) != 2 or not all(p.strip() for p in parts):
        return None
    root, field = (p.strip() for p in parts)
    root = _ROOT_ALIASES.get(root, root)
    return root, _to_snake(field)


def _resolve_target(path: Any) -> Optional[Tuple[str, str]]:
    split = split_binding_path(path)
    if split is None:
        return None
    root, field = split
    spec = SCOPES.get(root)
    if spec is None or field not in spec.columns:
        return None
    return root, field


def resolve_binding_value(path: Any, technology: Optional[TechnologyAggregate]) -> Any:
    """Return the structured value at `path`, or None on any lookup miss."""
    if technology is None:
        return None
    target = _resolve_target(path)
    if target is None:
        return None
    root, field = target
    record = technology.scope_record(root)
    if record is None:
        return None
    return record.get(field)


def binding_scope(path: Any) -> Optional[str]:
    """Return the root a path writes to, or None when it does not resolve."""
    target = _resolve_target(path)
    return target[0] if target else None


def collect_binding_metadata(template: FormTemplate) -> Dict[str, BindingMetadata]:
    """Map field codes to binding metadata for dictionary-backed questions.

    Form-local questions (no dictionary link) are left out. Order follows
    the template's display order.
    """
    metadata: Dict[str, BindingMetadata] = {}
    for question in template.iter_questions():
        dictionary = question.dictionary
        if dictionary is None:
            continue
        metadata[question.field_code] = BindingMetadata(
            field_code=question.field_code,
            dictionary_key=dictionary.question_key,
            current_revision_id=dictionary.current_revision_id,
            binding_path=dictionary.binding_path,
            data_source=dictionary.data_source,
            field_type=question.field_type,
        )
    return metadata


def group_bindings_by_root(binding_metadata: Dict[str, BindingMetadata]) -> Dict[str, List[BoundField]]:
    """Partition bindings by the record they write to."""
    groups: Dict[str, List[BoundField]] = {}
    for field_code, binding in binding_metadata.items():
        target = _resolve_target(binding.binding_path)
        if target is None:
            logger.warning(
                "binding_path_unresolved field_code=%s path=%s", field_code, binding.binding_path
            )
            continue
        root, column = target
        groups.setdefault(root, []).append(BoundField(field_code, column, binding))
    return groups


__all__ = [
    "BindingMetadata",
    "BoundField",
    "split_binding_path",
    "resolve_binding_value",
    "binding_scope",
    "collect_binding_metadata",
    "group_bindings_by_root",
]
