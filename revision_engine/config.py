"""Configuration utilities for the revision engine.

This module loads application configuration with the following rules:
- Primary source: `engine_config.json` at the project root.
- Overrides: environment variables, then optional text files under `config/`.
- Validation: Pydantic models enforce required fields and value constraints.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator


CONFIG_DIR = Path("config")
ROOT_ENGINE_CONFIG = Path("engine_config.json")
logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _read_config_file(rel_path: str) -> Optional[str]:
    path = CONFIG_DIR / rel_path
    try:
        if path.exists():
            return path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as e:
        # Recoverable: log and ignore unreadable override
        logger.warning("Failed to read override %s: %s", path, e)
        return None
    return None


def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(key, default)


def _as_bool(text: Optional[str]) -> bool:
    return str(text).strip().lower() in _TRUE_VALUES


class DatabaseConfig(BaseModel):
    url: str

    @field_validator("url")
    @classmethod
    def url_must_be_non_empty(cls, v: str) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("database.url must be a non-empty string")
        return v


class MigrationsConfig(BaseModel):
    auto_apply: bool = Field(default=True)
    directory: Optional[str] = None


class AnswersConfig(BaseModel):
    allow_incomplete_drafts: bool = Field(default=True)
    max_repeat_group_rows: int = Field(default=200, gt=0)


class AppConfig(BaseModel):
    database: DatabaseConfig
    migrations: MigrationsConfig
    answers: AnswersConfig


def _read_json_file(path: Path) -> dict:
    try:
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error("Failed to read JSON config %s: %s", path, e)
    return {}


def load_config() -> AppConfig:
    """Load configuration with validation.

    Precedence (highest first):
    1) Environment variables
    2) Text files in `config/` (optional)
    3) engine_config.json at project root (primary base)
    4) Safe defaults for development
    """

    base = _read_json_file(ROOT_ENGINE_CONFIG)

    def _base(path: str, default: Optional[str] = None) -> Optional[str]:
        cur: object = base
        for key in path.split("."):
            if not isinstance(cur, dict) or key not in cur:
                return default
            cur = cur[key]
        return str(cur) if cur is not None else default

    # Database
    url = (
        _env("TEST_DATABASE_URL")
        or _env("DATABASE_URL")
        or _read_config_file("database.url")
        or _base("database.url")
        or "sqlite+pysqlite:///:memory:"
    )

    # Migrations
    auto_apply_text = _env("AUTO_APPLY_MIGRATIONS") or _read_config_file("migrations.auto_apply") or _base("migrations.auto_apply", "true")
    migrations_dir = _env("MIGRATIONS_DIR") or _read_config_file("migrations.dir") or _base("migrations.directory")

    # Answers
    drafts_text = _env("ALLOW_INCOMPLETE_DRAFTS") or _read_config_file("answers.allow_incomplete_drafts") or _base("answers.allow_incomplete_drafts", "true")
    max_rows_text = _env("MAX_REPEAT_GROUP_ROWS") or _read_config_file("answers.max_repeat_group_rows") or _base("answers.max_repeat_group_rows", "200")

    try:
        cfg = AppConfig(
            database=DatabaseConfig(url=url),
            migrations=MigrationsConfig(auto_apply=_as_bool(auto_apply_text), directory=migrations_dir),
            answers=AnswersConfig(
                allow_incomplete_drafts=_as_bool(drafts_text),
                max_repeat_group_rows=int(str(max_rows_text).strip()),
            ),
        )
        return cfg
    except (PydanticValidationError, ValueError) as e:
        logger.error("Invalid application configuration: %s", e)
        raise


__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "MigrationsConfig",
    "AnswersConfig",
    "load_config",
]
