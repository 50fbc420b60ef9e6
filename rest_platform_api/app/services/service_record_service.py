"""
Service layer for platform service records.

Services are stored in the ``services`` table together with their type
tag and a JSON ``config`` document.  Besides plain CRUD this module
answers the two lookups the packager needs: a service by id or name
(``resolve``) and the services of one type, the first ``local_file``
service being the platform's default file storage.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Iterable, List, Optional, Union

from rest_platform_api.app.core.exceptions import BadRequestError
from rest_platform_api.app.schemas.service import ServiceCreate, ServiceRead

STORAGE_SERVICE_TYPES = {"local_file"}
DATABASE_SERVICE_TYPES = {"sql_db"}


class ServiceRecordService:
    """Service class for managing service records."""

    @classmethod
    def create_service(cls, conn: sqlite3.Connection, data: ServiceCreate) -> ServiceRead:
        """Insert a new service and return the created record."""
        logger = logging.getLogger(__name__)
        cursor = conn.cursor()
        try:
            cursor.execute(
                """
                INSERT INTO services (name, label, description, type, is_active, mutable, deletable, config)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data.name,
                    data.label,
                    data.description,
                    data.type,
                    int(data.is_active),
                    int(data.mutable),
                    int(data.deletable),
                    json.dumps(data.config),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise BadRequestError(f"A service named '{data.name}' already exists.") from exc
        service_id = cursor.lastrowid
        logger.info("Created service %s (%s, %s)", service_id, data.name, data.type)
        return cls.get_service(conn, service_id)

    @classmethod
    def create_services(cls, conn: sqlite3.Connection, items: Iterable[ServiceCreate]) -> List[ServiceRead]:
        """Insert several services; the first failure aborts the rest."""
        return [cls.create_service(conn, item) for item in items]

    @classmethod
    def get_service(cls, conn: sqlite3.Connection, service_id: int) -> Optional[ServiceRead]:
        row = conn.execute("SELECT * FROM services WHERE id = ?", (service_id,)).fetchone()
        return cls._row_to_service_read(row) if row else None

    @classmethod
    def get_service_by_name(cls, conn: sqlite3.Connection, name: str) -> Optional[ServiceRead]:
        row = conn.execute("SELECT * FROM services WHERE name = ?", (name,)).fetchone()
        return cls._row_to_service_read(row) if row else None

    @classmethod
    def resolve(cls, conn: sqlite3.Connection, ref: Union[int, str]) -> Optional[ServiceRead]:
        """Look a service up by numeric ID or by name."""
        if isinstance(ref, int) or (isinstance(ref, str) and ref.isdigit()):
            return cls.get_service(conn, int(ref))
        return cls.get_service_by_name(conn, ref)

    @classmethod
    def list_services(
        cls,
        conn: sqlite3.Connection,
        service_type: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ServiceRead]:
        """Return a page of services, optionally restricted to one type."""
        if service_type:
            rows = conn.execute(
                "SELECT * FROM services WHERE type = ? ORDER BY id ASC LIMIT ? OFFSET ?",
                (service_type, limit, offset),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM services ORDER BY id ASC LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()
        return [cls._row_to_service_read(row) for row in rows]

    @staticmethod
    def _row_to_service_read(row: sqlite3.Row) -> ServiceRead:
        """Convert a database row to a ServiceRead schema instance."""
        config = {}
        if row["config"]:
            try:
                config = json.loads(row["config"])
            except (TypeError, json.JSONDecodeError):
                config = {}
        return ServiceRead(
            id=row["id"],
            name=row["name"],
            label=row["label"],
            description=row["description"],
            type=row["type"],
            is_active=bool(row["is_active"]),
            mutable=bool(row["mutable"]),
            deletable=bool(row["deletable"]),
            config=config,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
