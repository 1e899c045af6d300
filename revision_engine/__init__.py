"""Question revision reconciliation engine.

Binds revisable questions to technology records, reconciles each field's
value (structured columns) with its revision metadata (extended_data bags),
and persists answers under optimistic row-version checks. Business logic
lives in `revision_engine/logic/`; `create_app` wraps it in a thin FastAPI
adapter.
"""

from __future__ import annotations

from revision_engine.main import create_app

__all__ = ["create_app"]
