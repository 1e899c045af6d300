"""Subject entity registry: the technology record and its stage sub-records.

Binding paths address fields as `<root>.<column>`. The registry below is the
single allowlist of writable columns per root, together with each column's
kind so submitted values can be coerced before they reach SQL.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel


class ColumnKind:
    TEXT = "text"
    INTEGER = "integer"
    NUMBER = "number"
    JSON = "json"


SUBJECT_ROOT = "technology"
TRIAGE_STAGE_ROOT = "triage_stage"
VIABILITY_STAGE_ROOT = "viability_stage"
STAGE_ROOTS = (TRIAGE_STAGE_ROOT, VIABILITY_STAGE_ROOT)


@dataclass(frozen=True)
class ScopeSpec:
    root: str
    table: str
    columns: Dict[str, str]
    row_version_key: str
    has_extended_data: bool


TECHNOLOGY_COLUMNS: Dict[str, str] = {
    "tech_id": ColumnKind.TEXT,
    "technology_name": ColumnKind.TEXT,
    "short_description": ColumnKind.TEXT,
    "inventor_name": ColumnKind.TEXT,
    "inventor_title": ColumnKind.TEXT,
    "inventor_dept": ColumnKind.TEXT,
    "reviewer_name": ColumnKind.TEXT,
    "domain_asset_class": ColumnKind.TEXT,
    "team_members": ColumnKind.JSON,
    "current_stage": ColumnKind.TEXT,
    "status": ColumnKind.TEXT,
}

TRIAGE_STAGE_COLUMNS: Dict[str, str] = {
    "technology_overview": ColumnKind.TEXT,
    "mission_alignment_text": ColumnKind.TEXT,
    "mission_alignment_score": ColumnKind.INTEGER,
    "unmet_need_text": ColumnKind.TEXT,
    "unmet_need_score": ColumnKind.INTEGER,
    "state_of_art_text": ColumnKind.TEXT,
    "state_of_art_score": ColumnKind.INTEGER,
    "market_overview": ColumnKind.TEXT,
    "market_score": ColumnKind.INTEGER,
    "impact_score": ColumnKind.NUMBER,
    "value_score": ColumnKind.NUMBER,
    "recommendation": ColumnKind.TEXT,
    "recommendation_notes": ColumnKind.TEXT,
    "notes": ColumnKind.TEXT,
    "competitors": ColumnKind.JSON,
}

VIABILITY_STAGE_COLUMNS: Dict[str, str] = {
    "technical_feasibility": ColumnKind.TEXT,
    "regulatory_pathway": ColumnKind.TEXT,
    "risk": ColumnKind.TEXT,
    "commercial_viability": ColumnKind.TEXT,
    "overall_viability": ColumnKind.TEXT,
    "technical_score": ColumnKind.INTEGER,
    "commercial_score": ColumnKind.INTEGER,
    "viability_score": ColumnKind.NUMBER,
    "recommendation": ColumnKind.TEXT,
}

SCOPES: Dict[str, ScopeSpec] = {
    SUBJECT_ROOT: ScopeSpec(
        root=SUBJECT_ROOT,
        table="technologies",
        columns=TECHNOLOGY_COLUMNS,
        row_version_key="technology_row_version",
        has_extended_data=False,
    ),
    TRIAGE_STAGE_ROOT: ScopeSpec(
        root=TRIAGE_STAGE_ROOT,
        table="triage_stages",
        columns=TRIAGE_STAGE_COLUMNS,
        row_version_key="triage_stage_row_version",
        has_extended_data=True,
    ),
    VIABILITY_STAGE_ROOT: ScopeSpec(
        root=VIABILITY_STAGE_ROOT,
        table="viability_stages",
        columns=VIABILITY_STAGE_COLUMNS,
        row_version_key="viability_stage_row_version",
        has_extended_data=True,
    ),
}

# Minimum identifying fields required to create a technology outside draft saves
REQUIRED_CREATE_FIELDS = ("tech_id", "technology_name")


def column_kind(root: str, column: str) -> Optional[str]:
    spec = SCOPES.get(root)
    if spec is None:
        return None
    return spec.columns.get(column)


class RowVersions(BaseModel):
    technology_row_version: int | None = None
    triage_stage_row_version: int | None = None
    viability_stage_row_version: int | None = None

    def for_scope(self, root: str) -> int | None:
        return getattr(self, SCOPES[root].row_version_key)

    def with_scope(self, root: str, version: int | None) -> "RowVersions":
        return self.model_copy(update={SCOPES[root].row_version_key: version})


@dataclass
class TechnologyAggregate:
    """A technology row with its eagerly loaded stage rows (plain dicts)."""

    technology: Dict[str, Any]
    triage_stage: Optional[Dict[str, Any]] = None
    viability_stage: Optional[Dict[str, Any]] = None

    def records(self) -> Dict[str, Optional[Dict[str, Any]]]:
        return {
            SUBJECT_ROOT: self.technology,
            TRIAGE_STAGE_ROOT: self.triage_stage,
            VIABILITY_STAGE_ROOT: self.viability_stage,
        }

    @property
    def id(self) -> str:
        return str(self.technology["id"])

    @property
    def tech_id(self) -> str:
        return str(self.technology["tech_id"])

    def scope_record(self, root: str) -> Optional[Dict[str, Any]]:
        return self.records().get(root)

    def row_versions(self) -> RowVersions:
        versions = RowVersions()
        for root, record in self.records().items():
            if record is not None and record.get("row_version") is not None:
                versions = versions.with_scope(root, int(record["row_version"]))
        return versions


__all__ = [
    "ColumnKind",
    "ScopeSpec",
    "SCOPES",
    "SUBJECT_ROOT",
    "TRIAGE_STAGE_ROOT",
    "VIABILITY_STAGE_ROOT",
    "STAGE_ROOTS",
    "REQUIRED_CREATE_FIELDS",
    "column_kind",
    "RowVersions",
    "TechnologyAggregate",
]
