"""
Database migrations for catalog_sync.

Uses SQLite ALTER TABLE ADD COLUMN for incremental schema evolution.
Each migration is idempotent: columns are only added if absent.

Called automatically from get_engine() after create_all() so databases
created before a column existed pick it up without manual steps.
"""
from sqlalchemy import inspect, text

# (table, column, type) in the order they were introduced
COLUMN_MIGRATIONS = [
    # Per-sub-vendor breakdown for batched catalog submissions
    ("catalogsynclog", "details_json", "TEXT"),
    # Explicit tenant ownership on durable rows
    ("catalogsynclog", "tenant_id", "VARCHAR"),
    ("dlqrecord", "tenant_id", "VARCHAR"),
    ("idempotencyrecord", "tenant_id", "VARCHAR"),
]


def run_migrations(engine) -> None:
    """Apply all pending schema migrations.

    Safe to call multiple times: checks column existence before altering.
    Tables that do not exist yet are skipped (create_all builds them whole).

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).
    """
    with engine.connect() as conn:
        for table, column, col_type in COLUMN_MIGRATIONS:
            _add_column_if_missing(conn, table, column, col_type)
        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> None:
    """Add a column to a table if it doesn't already exist.

    Args:
        conn: SQLAlchemy connection.
        table: Table name (lowercase, as SQLModel names it).
        column: Column name to add.
        col_type: SQL type string, e.g. "INTEGER", "TEXT".
    """
    inspector = inspect(conn)
    if not inspector.has_table(table):
        return
    existing_columns = {col["name"] for col in inspector.get_columns(table)}
    if column not in existing_columns:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
