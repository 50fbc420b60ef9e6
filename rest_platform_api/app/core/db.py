"""
SQLite database integration and simple migration system.

This module provides functions for obtaining a database connection
(``get_connection``), a unit-of-work helper (``transaction``) used by
package imports, and ``init_db`` which applies migrations on
application start.

The migration mechanism stores applied migration versions in the
``migrations`` table and executes new migrations in order.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .config import settings


logger = logging.getLogger(__name__)


def get_database_path() -> str:
    """Compute the path to the SQLite database file.

    If ``settings.database_url`` is an absolute path, use it directly.
    Otherwise resolve it relative to the project root.
    """
    db_url = settings.database_url
    if os.path.isabs(db_url):
        return db_url
    base_dir = Path(__file__).resolve().parent.parent.parent.parent
    return str((base_dir / db_url).resolve())


def get_connection(autocommit: bool = False) -> sqlite3.Connection:
    """Create and return a new SQLite connection.

    Rows are returned as ``sqlite3.Row`` so columns can be accessed by
    name.  With ``autocommit`` the connection does not open implicit
    transactions; callers then manage ``BEGIN``/``COMMIT`` themselves.
    """
    db_path = get_database_path()
    conn = sqlite3.connect(db_path, isolation_level=None if autocommit else "")
    conn.row_factory = sqlite3.Row
    # Foreign key support is off by default in SQLite and must be enabled
    # per connection, outside of any transaction.
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_cursor() -> Iterator[sqlite3.Cursor]:
    """Context manager that yields a cursor and closes the connection on exit."""
    conn = get_connection()
    try:
        yield conn.cursor()
        conn.commit()
    finally:
        conn.close()


@contextmanager
def connection() -> Iterator[sqlite3.Connection]:
    """Context manager that yields a connection, commits on success and always closes it."""
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Run a block as one database transaction.

    Yields a connection with an explicit ``BEGIN`` already issued.  The
    transaction is committed when the block exits normally and rolled
    back when it raises; the exception is then re-raised unchanged.
    SQLite DDL is transactional, so tables created inside the block are
    rolled back as well.
    """
    conn = get_connection(autocommit=True)
    try:
        conn.execute("BEGIN")
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
                logger.info("Transaction rolled back")
            raise
    finally:
        conn.close()


MIGRATIONS: list[tuple[int, str]] = [
    # Migration 1: services and applications
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS services (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE,
            label TEXT,
            description TEXT,
            type TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            mutable INTEGER NOT NULL DEFAULT 1,
            deletable INTEGER NOT NULL DEFAULT 1,
            config TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS apps (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE,
            description TEXT,
            is_active INTEGER NOT NULL DEFAULT 0,
            type INTEGER NOT NULL DEFAULT 0,
            path TEXT,
            url TEXT,
            storage_service_id INTEGER,
            storage_container TEXT,
            requires_fullscreen INTEGER NOT NULL DEFAULT 0,
            allow_fullscreen_toggle INTEGER NOT NULL DEFAULT 1,
            toggle_location TEXT NOT NULL DEFAULT 'top',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(storage_service_id) REFERENCES services(id)
        );
        """,
    ),
    # Migration 2: table definitions owned by sql_db services
    (
        2,
        """
        -- Structural description of every table created through a
        -- sql_db service.  The physical table is named
        -- <service>__<table> in this same database.
        CREATE TABLE IF NOT EXISTS schema_tables (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            service_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            definition TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(service_id, name),
            FOREIGN KEY(service_id) REFERENCES services(id) ON DELETE CASCADE
        );
        CREATE INDEX IF NOT EXISTS idx_schema_tables_service_id ON schema_tables(service_id);
        """,
    ),
]


def init_db() -> None:
    """Initialise the database and apply pending migrations.

    Creates the ``migrations`` table if it does not exist, checks the
    current schema version, and applies any new migrations defined in
    ``MIGRATIONS``.  Built-in system services are seeded afterwards.
    """
    with get_cursor() as cursor:
        cursor.execute(
            "CREATE TABLE IF NOT EXISTS migrations (version INTEGER PRIMARY KEY)"
        )
        cursor.execute("SELECT MAX(version) as version FROM migrations")
        row = cursor.fetchone()
        current_version = row["version"] if row and row["version"] is not None else 0

        for version, sql in MIGRATIONS:
            if version > current_version:
                cursor.executescript(sql)
                cursor.execute(
                    "INSERT INTO migrations (version) VALUES (?)", (version,)
                )
                current_version = version
                logger.info("Applied migration %s", version)

        # Built-in services: the system API itself, the default file
        # storage and the default SQL database.  None of them are
        # deletable and therefore never exported.
        cursor.execute(
            "INSERT OR IGNORE INTO services (id, name, label, type, mutable, deletable, config)"
            " VALUES (1, 'system', 'System Management', 'system', 0, 0, '{}')"
        )
        cursor.execute(
            "INSERT OR IGNORE INTO services (id, name, label, type, mutable, deletable, config)"
            " VALUES (2, 'files', 'Local File Storage', 'local_file', 1, 0, '{}')"
        )
        cursor.execute(
            "INSERT OR IGNORE INTO services (id, name, label, type, mutable, deletable, config)"
            " VALUES (3, 'db', 'Local SQL Database', 'sql_db', 1, 0, '{}')"
        )
