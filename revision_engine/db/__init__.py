"""Database bootstrap utilities for the revision engine.

Exposes engine construction, the shared transaction helper and the SQL
migrations runner. The DB layer does not leak ORM models into callers;
repositories issue parameterised SQL through these helpers.
"""

from revision_engine.db.base import get_engine, reset_engine, transaction
from revision_engine.db.migrations_runner import apply_migrations

__all__ = [
    "get_engine",
    "reset_engine",
    "transaction",
    "apply_migrations",
]
