"""Dialect-aware INSERT ... ON CONFLICT DO UPDATE."""

from typing import Any, Iterable

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from .models.base import utcnow


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Upsert is not supported on dialect {dialect!r}")


async def upsert(
    db: AsyncSession,
    model,
    values: dict[str, Any],
    conflict_columns: Iterable[str],
) -> None:
    """
    Insert a row or update it in place when the conflict key already exists.

    The statement is a single round trip, so concurrent writers for the same
    key serialize at the storage layer. Columns in ``conflict_columns`` are
    never overwritten.

    Args:
        db: Async database session
        model: Mapped class to write
        values: Column values for the row
        conflict_columns: Columns backing the unique constraint
    """
    conflict_columns = list(conflict_columns)
    insert = _insert_for(db)
    stmt = insert(model).values(**values)
    update_values = {
        key: getattr(stmt.excluded, key)
        for key in values
        if key not in conflict_columns and key != "id"
    }
    # onupdate defaults are not applied to ON CONFLICT updates
    if hasattr(model, "updated_at") and "updated_at" not in update_values:
        update_values["updated_at"] = utcnow()
    stmt = stmt.on_conflict_do_update(
        index_elements=conflict_columns,
        set_=update_values,
    )
    await db.execute(stmt)
