"""Insert-or-ignore helpers with a tagged result.

The ledger tables rely on unique keys for idempotency. Instead of letting a
duplicate-key conflict surface as an exception, insert_or_ignore() issues
INSERT ... ON CONFLICT DO NOTHING and reports WriteResult.DUPLICATE_KEY, so
callers branch on the result. Every other database error still propagates
as a SQLAlchemyError.
"""

import enum
import logging

from sqlalchemy.dialects import postgresql, sqlite

from credit_ledger.extensions import db

logger = logging.getLogger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class WriteResult(enum.Enum):
    INSERTED = "inserted"
    DUPLICATE_KEY = "duplicate_key"


def insert_or_ignore(model, **values):
    """Insert one row for `model`, ignoring unique-key conflicts.

    Values are keyed by column name. Python-side column defaults (UUID
    primary keys) are applied as for any Core insert.

    Returns WriteResult.INSERTED or WriteResult.DUPLICATE_KEY.
    """
    dialect = db.session.get_bind().dialect.name
    insert = _INSERT_BY_DIALECT.get(dialect)
    if insert is None:
        raise RuntimeError(f"insert_or_ignore does not support dialect '{dialect}'")

    # Pending ORM objects must reach the database before the Core insert
    db.session.flush()

    stmt = insert(model.__table__).values(**values).on_conflict_do_nothing()
    result = db.session.execute(stmt)

    if result.rowcount:
        return WriteResult.INSERTED
    return WriteResult.DUPLICATE_KEY

