"""
shared/utils/sql.py
Dialect-aware SQL building blocks: storage-level upserts and month bucketing.
MySQL is the production target; SQLite and PostgreSQL are supported for local runs and tests.
"""

from typing import Any, Dict, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement


def dialect_name(db: AsyncSession) -> str:
    return db.get_bind().dialect.name


def upsert(
    db: AsyncSession,
    model: Any,
    values: Dict[str, Any],
    conflict_columns: Iterable[str],
    update_columns: Iterable[str],
    extra_updates: Optional[Dict[str, Any]] = None,
):
    """
    Build a single INSERT that updates `update_columns` when a row with the same
    `conflict_columns` (a primary key or unique constraint) already exists.
    With no update columns the existing row is left untouched.
    """
    name = dialect_name(db)
    conflict_columns = list(conflict_columns)
    update_columns = list(update_columns)

    if name in ("mysql", "mariadb"):
        stmt = mysql.insert(model).values(**values)
        updates = {col: stmt.inserted[col] for col in update_columns}
        updates.update(extra_updates or {})
        if not updates:
            # No-op assignment; MySQL has no DO NOTHING form
            updates = {col: model.__table__.c[col] for col in conflict_columns}
        return stmt.on_duplicate_key_update(updates)

    if name in ("sqlite", "postgresql"):
        insert = sqlite.insert if name == "sqlite" else postgresql.insert
        stmt = insert(model).values(**values)
        updates = {col: stmt.excluded[col] for col in update_columns}
        updates.update(extra_updates or {})
        if not updates:
            return stmt.on_conflict_do_nothing(index_elements=conflict_columns)
        return stmt.on_conflict_do_update(index_elements=conflict_columns, set_=updates)

    raise NotImplementedError(f"Upsert is not supported for dialect '{name}'")


def month_bucket(db: AsyncSession, column: Any) -> ColumnElement:
    """'YYYY-MM' string for a date/datetime column."""
    name = dialect_name(db)
    if name in ("mysql", "mariadb"):
        return func.date_format(column, "%Y-%m")
    if name == "sqlite":
        return func.strftime("%Y-%m", column)
    if name == "postgresql":
        return func.to_char(column, "YYYY-MM")
    raise NotImplementedError(f"Month grouping is not supported for dialect '{name}'")
