from __future__ import annotations

from typing import Any, Dict, Iterable

from sqlalchemy.dialects import postgresql, sqlite

from paysync.extensions import db


def _insert_for(model):
    """
    Dialect-specific Core INSERT on the model's table, so ON CONFLICT is
    available on Postgres and SQLite alike. Keys are column names.
    """
    table = model.__table__
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise RuntimeError(f"ON CONFLICT writes are not supported on dialect {dialect!r}")


def insert_or_ignore(model, values: Dict[str, Any], *, conflict_on: Iterable[str]) -> bool:
    """
    INSERT … ON CONFLICT (conflict_on) DO NOTHING.
    Returns True when a row was written, False when the key already existed.
    Does not commit.
    """
    stmt = _insert_for(model).values(**values).on_conflict_do_nothing(index_elements=list(conflict_on))
    result = db.session.execute(stmt)
    return (result.rowcount or 0) > 0


def upsert(model, values: Dict[str, Any], *, conflict_on: Iterable[str], update: Iterable[str]) -> None:
    """
    INSERT … ON CONFLICT (conflict_on) DO UPDATE SET <update> = EXCLUDED.<update>.
    Never delete-then-insert: the existing row (and its id/created_at) survives.
    Does not commit.
    """
    stmt = _insert_for(model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_on),
        set_={name: getattr(stmt.excluded, name) for name in update},
    )
    db.session.execute(stmt)
