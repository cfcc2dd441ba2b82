from __future__ import annotations

import logging

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateColumn

from shortlink.db import Base
from shortlink.errors import SchemaError, ValidationError
from shortlink.models import UPGRADE_COLUMNS, Mapping, utcnow
from shortlink.service import parse_expiry

logger = logging.getLogger(__name__)

# SQLAlchemy's SQLite DATETIME storage format; string comparisons in SQL
# only order correctly when every row uses it.
SQLITE_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"
TIMESTAMP_COLUMNS = ("expiry", "created_at")


def ensure_schema(engine: Engine) -> None:
    """
    Bring the mappings table up to date. Safe to call on every start:
      1) CREATE TABLE if missing
      2) ALTER TABLE ... ADD COLUMN for upgrade columns an older table lacks
      3) rewrite legacy ISO-8601 timestamps (SQLite) into the storage format
      4) CREATE INDEX for any missing index
    Never drops or renames anything.
    """
    table = Mapping.__table__
    try:
        Base.metadata.create_all(bind=engine, tables=[table])

        existing = {col["name"] for col in inspect(engine).get_columns(table.name)}
        missing = [col for col in table.columns if col.name in UPGRADE_COLUMNS and col.name not in existing]

        if missing:
            with engine.begin() as conn:
                preparer = conn.dialect.identifier_preparer
                for column in missing:
                    ddl = CreateColumn(column).compile(dialect=conn.dialect)
                    conn.execute(text(f"ALTER TABLE {preparer.format_table(table)} ADD COLUMN {ddl}"))
                    logger.info("added column %s to %s", column.name, table.name)

        if engine.dialect.name == "sqlite":
            with engine.begin() as conn:
                normalize_legacy_timestamps(conn)

        for index in table.indexes:
            index.create(bind=engine, checkfirst=True)
    except SQLAlchemyError as e:
        logger.exception("schema initialisation failed")
        raise SchemaError(f"Schema initialisation failed: {e}") from e


def normalize_legacy_timestamps(conn: Connection) -> int:
    """
    Older deployments wrote timestamps as ISO text ("2099-01-01T00:00:00.000Z")
    or CURRENT_TIMESTAMP ("2024-01-01 12:00:00"). Rewrite them as naive UTC in
    SQLITE_DATETIME_FORMAT. Unparsable expiries become NULL (never expires),
    unparsable created_at values become now. Returns the number of rows fixed.
    """
    fixed = 0
    for column in TIMESTAMP_COLUMNS:
        rows = conn.execute(
            text(
                f"SELECT path, {column} FROM mappings "
                f"WHERE {column} IS NOT NULL "
                f"AND (length({column}) != 26 OR substr({column}, 11, 1) != ' ')"
            )
        ).all()

        for path, raw in rows:
            try:
                value = parse_expiry(str(raw))
            except ValidationError:
                value = None
            if value is None:
                logger.warning("unparsable %s %r on %s", column, raw, path)
                value = None if column == "expiry" else utcnow()

            stored = value.strftime(SQLITE_DATETIME_FORMAT) if value is not None else None
            conn.execute(
                text(f"UPDATE mappings SET {column} = :value WHERE path = :path"),
                {"value": stored, "path": path},
            )
            fixed += 1

    if fixed:
        logger.info("normalised %d legacy timestamps", fixed)
    return fixed
