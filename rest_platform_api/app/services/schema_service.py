"""
Schema and record operations for ``sql_db`` services.

Each SQL database service owns a set of tables inside the platform
database.  A table created through service ``db1`` with name
``orders`` is stored physically as ``db1__orders``; its structural
description is kept in ``schema_tables`` so it can be described and
exported later.  A table definition looks like::

    {
        "name": "orders",
        "label": "Orders",
        "field": [
            {"name": "id", "type": "id"},
            {"name": "customer", "type": "string", "allow_null": false},
            {"name": "total", "type": "money", "default": 0}
        ]
    }

Because all tables live in the platform database, schema changes made
on a transactional connection roll back together with the rest of the
unit of work.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from typing import Any, Dict, List, Optional, Sequence

from rest_platform_api.app.core.exceptions import BadRequestError, NotFoundError
from rest_platform_api.app.schemas.service import ServiceRead

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

COLUMN_TYPES = {
    "integer": "INTEGER",
    "boolean": "INTEGER",
    "reference": "INTEGER",
    "float": "REAL",
    "double": "REAL",
    "decimal": "REAL",
    "money": "REAL",
}


def quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def physical_name(service_name: str, table_name: str) -> str:
    """Name of the SQLite table backing ``table_name`` of a service."""
    return f"{service_name}__{table_name}"


class SchemaService:
    """Service class for tables owned by SQL database services."""

    @classmethod
    def describe_tables(
        cls,
        conn: sqlite3.Connection,
        service: ServiceRead,
        names: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, Any]]:
        """Return the definitions of ``names`` (all tables when omitted).

        Definitions come back in the order requested.  An unknown table
        name raises ``NotFoundError``.
        """
        rows = conn.execute(
            "SELECT name, definition FROM schema_tables WHERE service_id = ? ORDER BY id ASC",
            (service.id,),
        ).fetchall()
        definitions = {row["name"]: json.loads(row["definition"]) for row in rows}
        if names is None:
            return list(definitions.values())
        result = []
        for name in names:
            if name not in definitions:
                raise NotFoundError(f"Table '{name}' does not exist in service '{service.name}'.")
            result.append(definitions[name])
        return result

    @classmethod
    def create_tables(
        cls,
        conn: sqlite3.Connection,
        service: ServiceRead,
        tables: Sequence[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        """Create every table in ``tables`` and record its definition.

        Raises ``BadRequestError`` if a definition is invalid or a table
        already exists.
        """
        logger = logging.getLogger(__name__)
        created = []
        for definition in tables:
            name = cls._validate_definition(definition)
            exists = conn.execute(
                "SELECT 1 FROM schema_tables WHERE service_id = ? AND name = ?",
                (service.id, name),
            ).fetchone()
            if exists:
                raise BadRequestError(f"Table '{name}' already exists in service '{service.name}'.")
            columns = ", ".join(cls._column_sql(field) for field in definition["field"])
            conn.execute(f"CREATE TABLE {quote(physical_name(service.name, name))} ({columns})")
            conn.execute(
                "INSERT INTO schema_tables (service_id, name, definition) VALUES (?, ?, ?)",
                (service.id, name, json.dumps(definition)),
            )
            logger.info("Created table %s in service %s", name, service.name)
            created.append({"name": name})
        return created

    @classmethod
    def list_records(
        cls,
        conn: sqlite3.Connection,
        service: ServiceRead,
        table: str,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return the records of ``table`` in insertion order."""
        cls._field_names(conn, service, table)
        query = f"SELECT * FROM {quote(physical_name(service.name, table))} ORDER BY rowid ASC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        return [dict(row) for row in conn.execute(query, params).fetchall()]

    @classmethod
    def insert_records(
        cls,
        conn: sqlite3.Connection,
        service: ServiceRead,
        table: str,
        records: Sequence[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        """Insert ``records`` into ``table`` and return their row IDs.

        Unknown columns raise ``BadRequestError``; nested values are
        stored as JSON text.
        """
        fields = cls._field_names(conn, service, table)
        target = quote(physical_name(service.name, table))
        inserted = []
        for record in records:
            if not isinstance(record, dict) or not record:
                raise BadRequestError(f"Records for table '{table}' must be non-empty objects.")
            unknown = [key for key in record if key not in fields]
            if unknown:
                raise BadRequestError(f"Unknown field(s) {', '.join(unknown)} for table '{table}'.")
            columns = list(record)
            values = [
                json.dumps(value) if isinstance(value, (dict, list)) else value
                for value in record.values()
            ]
            cursor = conn.execute(
                f"INSERT INTO {target} ({', '.join(quote(c) for c in columns)})"
                f" VALUES ({', '.join('?' for _ in columns)})",
                values,
            )
            inserted.append({"id": record.get("id", cursor.lastrowid)})
        logging.getLogger(__name__).info(
            "Inserted %s record(s) into %s/%s", len(inserted), service.name, table
        )
        return inserted

    @classmethod
    def _field_names(cls, conn: sqlite3.Connection, service: ServiceRead, table: str) -> List[str]:
        definition = cls.describe_tables(conn, service, [table])[0]
        return [field["name"] for field in definition["field"]]

    @staticmethod
    def _validate_definition(definition: Any) -> str:
        if not isinstance(definition, dict):
            raise BadRequestError("Table definitions must be objects.")
        name = definition.get("name")
        if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
            raise BadRequestError(f"Invalid table name {name!r}.")
        fields = definition.get("field")
        if not isinstance(fields, list) or not fields:
            raise BadRequestError(f"Table '{name}' needs at least one field.")
        seen = set()
        for field in fields:
            field_name = field.get("name") if isinstance(field, dict) else None
            if not isinstance(field_name, str) or not IDENTIFIER_PATTERN.match(field_name):
                raise BadRequestError(f"Invalid field name {field_name!r} in table '{name}'.")
            if field_name in seen:
                raise BadRequestError(f"Duplicate field '{field_name}' in table '{name}'.")
            seen.add(field_name)
        return name

    @staticmethod
    def _column_sql(field: Dict[str, Any]) -> str:
        field_type = str(field.get("type") or "string").lower()
        if field_type == "id":
            return f"{quote(field['name'])} INTEGER PRIMARY KEY AUTOINCREMENT"
        parts = [quote(field["name"]), COLUMN_TYPES.get(field_type, "TEXT")]
        if field.get("is_primary_key"):
            parts.append("PRIMARY KEY")
        if field.get("allow_null") is False:
            parts.append("NOT NULL")
        if "default" in field and field["default"] is not None:
            parts.append(f"DEFAULT {_literal(field['default'])}")
        return " ".join(parts)


def _literal(value: Any) -> str:
    """Render a column default as an SQL literal."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return repr(value)
    return "'" + str(value).replace("'", "''") + "'"
