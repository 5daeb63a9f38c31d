"""Reference DDL for an outbox table and its optional wake-up plumbing.

Not a migration tool: applications own their schema. These statements are
what the live tests run and what the README-level docs refer to.
"""
from __future__ import annotations

from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateIndex, CreateTable

from trx_outbox.config import validate_identifier
from trx_outbox.infrastructure.db.models.outbox import resolve_table

_NOTIFY_FUNCTION = """
CREATE OR REPLACE FUNCTION {table}_notify() RETURNS trigger AS $$
BEGIN
    PERFORM pg_notify('{channel}', NEW.id::text);
    RETURN NEW;
END;
$$ LANGUAGE plpgsql
"""

_NOTIFY_TRIGGER = """
CREATE TRIGGER {table}_notify
AFTER INSERT ON {table}
FOR EACH ROW EXECUTE FUNCTION {table}_notify()
"""


def table_ddl(table_name: str = "pg_trx_outbox") -> list[str]:
    """CREATE TABLE plus index statements for ``table_name``."""
    validate_identifier(table_name)
    table = resolve_table(table_name)
    dialect = postgresql.dialect()
    statements = [str(CreateTable(table).compile(dialect=dialect)).strip()]
    for index in sorted(table.indexes, key=lambda i: i.name or ""):
        statements.append(str(CreateIndex(index).compile(dialect=dialect)).strip())
    return statements


def notify_ddl(table_name: str = "pg_trx_outbox", channel: str = "pg_trx_outbox") -> list[str]:
    """Trigger that sends a NOTIFY on ``channel`` for every inserted row."""
    validate_identifier(table_name)
    validate_identifier(channel)
    return [
        _NOTIFY_FUNCTION.format(table=table_name, channel=channel).strip(),
        _NOTIFY_TRIGGER.format(table=table_name).strip(),
    ]


def publication_ddl(table_name: str = "pg_trx_outbox", publication: str = "pg_trx_outbox") -> list[str]:
    """Publication the logical replication bridge reads inserts from."""
    validate_identifier(table_name)
    validate_identifier(publication)
    return [f"CREATE PUBLICATION {publication} FOR TABLE {table_name} WITH (publish = 'insert')"]
