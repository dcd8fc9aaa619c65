"""Tiny home-grown migration helpers for SQLite databases."""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import text
from sqlalchemy.engine import Engine

logger = logging.getLogger("stockroom.migrate")

INDEXES: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    ("instances", "ix_instances_sku_tag", ("sku_id", "tag_id")),
    ("instances", "ix_instances_sku_acquired", ("sku_id", "acquisition_date")),
    ("tags", "ix_tags_status_due", ("status", "due_date")),
)


def _column_names(engine: Engine, table: str) -> set[str]:
    with engine.connect() as conn:
        return {record["name"] for record in conn.execute(text(f"PRAGMA table_info({table})")).mappings().all()}


def _create_index_if_not_exists(engine: Engine, table: str, name: str, cols: Iterable[str]) -> None:
    with engine.begin() as conn:
        conn.execute(text(f"CREATE INDEX IF NOT EXISTS {name} ON {table} ({', '.join(cols)})"))


def _backfill_condition_class(engine: Engine) -> int:
    """Imported condition tags only recorded their purpose in ``project_name``."""

    with engine.begin() as conn:
        result = conn.execute(
            text(
                """
                UPDATE tags
                SET condition_class = CASE
                    WHEN project_name LIKE 'Tool condition: broken%' THEN 'broken'
                    ELSE 'needs_maintenance'
                END
                WHERE condition_class IS NULL AND project_name LIKE 'Tool condition:%'
                """
            )
        )
        return result.rowcount or 0


def run_migrations(engine: Engine) -> None:
    """Add lookup indexes and backfill ``condition_class`` on SQLite."""

    if engine.dialect.name != "sqlite":
        return
    for table, name, cols in INDEXES:
        if _column_names(engine, table):
            _create_index_if_not_exists(engine, table, name, cols)

    if "condition_class" in _column_names(engine, "tags"):
        updated = _backfill_condition_class(engine)
        if updated:
            logger.info("migrate.condition_class_backfilled", extra={"extra_data": {"tags": updated}})
