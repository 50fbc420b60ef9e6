"""
Service layer for applications.

This module provides create, read and delete operations on the
``apps`` table.  Every method receives the connection to run on so it
can take part in a larger unit of work, such as a package import that
must be rolled back as a whole.

All queries use parameterized statements to avoid SQL injection
vulnerabilities.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import List, Optional

from rest_platform_api.app.core.exceptions import BadRequestError
from rest_platform_api.app.schemas.app import AppCreate, AppRead


class AppService:
    """Service class for managing application records."""

    @classmethod
    def create_app(cls, conn: sqlite3.Connection, data: AppCreate) -> AppRead:
        """Insert a new application and return the created record.

        Raises ``BadRequestError`` when the name is already taken or the
        storage service does not exist.
        """
        logger = logging.getLogger(__name__)
        cursor = conn.cursor()
        try:
            cursor.execute(
                """
                INSERT INTO apps (name, description, is_active, type, path, url, storage_service_id,
                                  storage_container, requires_fullscreen, allow_fullscreen_toggle, toggle_location)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data.name,
                    data.description,
                    int(data.is_active),
                    int(data.type),
                    data.path,
                    data.url,
                    data.storage_service_id,
                    data.storage_container,
                    int(data.requires_fullscreen),
                    int(data.allow_fullscreen_toggle),
                    data.toggle_location,
                ),
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                raise BadRequestError(f"An application named '{data.name}' already exists.") from exc
            raise BadRequestError(f"Invalid application record: {exc}") from exc
        app_id = cursor.lastrowid
        logger.info("Created app %s (%s)", app_id, data.name)
        return cls.get_app(conn, app_id)

    @classmethod
    def get_app(cls, conn: sqlite3.Connection, app_id: int) -> Optional[AppRead]:
        """Retrieve a single application by its ID."""
        row = conn.execute("SELECT * FROM apps WHERE id = ?", (app_id,)).fetchone()
        if not row:
            return None
        return cls._row_to_app_read(row)

    @classmethod
    def get_app_by_name(cls, conn: sqlite3.Connection, name: str) -> Optional[AppRead]:
        row = conn.execute("SELECT * FROM apps WHERE name = ?", (name,)).fetchone()
        if not row:
            return None
        return cls._row_to_app_read(row)

    @classmethod
    def list_apps(cls, conn: sqlite3.Connection, limit: int = 100, offset: int = 0) -> List[AppRead]:
        """Return a page of applications ordered by ID."""
        rows = conn.execute(
            "SELECT * FROM apps ORDER BY id ASC LIMIT ? OFFSET ?",
            (limit, offset),
        ).fetchall()
        return [cls._row_to_app_read(row) for row in rows]

    @classmethod
    def delete_app(cls, conn: sqlite3.Connection, app_id: int) -> bool:
        """Delete an application by ID.

        Returns ``True`` if a record was deleted, ``False`` otherwise.
        Files hosted for the app are left in storage.
        """
        cursor = conn.execute("DELETE FROM apps WHERE id = ?", (app_id,))
        if cursor.rowcount:
            logging.getLogger(__name__).info("Deleted app %s", app_id)
        return cursor.rowcount > 0

    @staticmethod
    def _row_to_app_read(row: sqlite3.Row) -> AppRead:
        """Convert a database row to an AppRead schema instance."""
        return AppRead(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            is_active=bool(row["is_active"]),
            type=row["type"],
            path=row["path"],
            url=row["url"],
            storage_service_id=row["storage_service_id"],
            storage_container=row["storage_container"],
            requires_fullscreen=bool(row["requires_fullscreen"]),
            allow_fullscreen_toggle=bool(row["allow_fullscreen_toggle"]),
            toggle_location=row["toggle_location"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
