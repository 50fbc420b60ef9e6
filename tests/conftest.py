"""Pytest configuration and fixtures."""

import json
import zipfile
from contextlib import contextmanager
from itertools import count

import pytest

from rest_platform_api.app.core import db
from rest_platform_api.app.core.config import settings
from rest_platform_api.app.core.exceptions import NotFoundError
from rest_platform_api.app.schemas.service import ServiceCreate
from rest_platform_api.app.services.schema_service import SchemaService
from rest_platform_api.app.services.service_handler import unwrap, wrap
from rest_platform_api.app.services.service_record_service import ServiceRecordService


ORDERS_TABLE = {
    "name": "orders",
    "field": [
        {"name": "id", "type": "id"},
        {"name": "customer", "type": "string", "allow_null": False},
        {"name": "total", "type": "money", "default": 0},
    ],
}

CUSTOMERS_TABLE = {
    "name": "customers",
    "field": [
        {"name": "id", "type": "id"},
        {"name": "email", "type": "string"},
    ],
}


@pytest.fixture
def platform_db(tmp_path, monkeypatch):
    """Point the platform at a fresh database, storage root and temp dir."""
    temp_dir = tmp_path / "tmp"
    temp_dir.mkdir()
    monkeypatch.setattr(settings, "database_url", str(tmp_path / "platform.db"))
    monkeypatch.setattr(settings, "storage_root", str(tmp_path / "storage"))
    monkeypatch.setattr(settings, "temp_dir", str(temp_dir))
    db.init_db()
    return tmp_path


@pytest.fixture
def conn(platform_db):
    """Connection to the test database, committed and closed after the test."""
    with db.connection() as connection:
        yield connection


@pytest.fixture
def shop_services(conn):
    """User-defined services: an e-mail gateway and a database with two tables."""
    email = ServiceRecordService.create_service(
        conn, ServiceCreate(name="email_service", label="Mail", type="smtp_email", config={"host": "mail.local"})
    )
    db1 = ServiceRecordService.create_service(conn, ServiceCreate(name="db1", label="Shop DB", type="sql_db"))
    SchemaService.create_tables(conn, db1, [ORDERS_TABLE, CUSTOMERS_TABLE])
    conn.commit()
    return {"email": email, "db1": db1}


@pytest.fixture
def make_package(tmp_path):
    """Write a package file from ``{entry name: bytes, str or JSON-able}``."""
    numbers = count(1)

    def _make(entries, name=None):
        path = tmp_path / (name or f"package_{next(numbers)}.dfpkg")
        with zipfile.ZipFile(path, "w") as zf:
            for entry, content in entries.items():
                if not isinstance(content, (bytes, str)):
                    content = json.dumps(content)
                zf.writestr(entry, content)
        return str(path)

    return _make


class FakeServiceHandler:
    """In-memory request handler recording every call.

    ``errors`` maps ``(verb, service, resource)`` to an exception raised
    for that request.
    """

    def __init__(self, errors=None, storage_service=None):
        self.calls = []
        self.errors = errors or {}
        self.apps = []
        self.storage_service = storage_service or {"id": 2, "name": "files", "type": "local_file", "config": {}}

    def handle_request(self, verb, service, resource, options=None, payload=None):
        self.calls.append((verb, service, resource, payload))
        error = self.errors.get((verb, service, resource))
        if error is not None:
            raise error
        if (verb, service, resource) == ("POST", "system", "app"):
            record = dict(unwrap(payload)[0])
            record["id"] = len(self.apps) + 1
            self.apps.append(record)
            return wrap([record])
        if (verb, service, resource) == ("GET", "system", "service"):
            return wrap([self.storage_service])
        if verb == "GET" and service == "system" and resource.startswith("service/"):
            ref = resource.split("/", 1)[1]
            if ref in (str(self.storage_service["id"]), self.storage_service["name"]):
                return self.storage_service
            raise NotFoundError(f"Service '{ref}' not found.")
        return wrap([])

    def requests_to(self, resource_prefix):
        return [call for call in self.calls if call[2].startswith(resource_prefix)]


class RecordingTransaction:
    """Stand-in for ``db.transaction`` remembering how the block ended."""

    def __init__(self):
        self.committed = False
        self.rolled_back = False

    @contextmanager
    def __call__(self):
        try:
            yield None
        except BaseException:
            self.rolled_back = True
            raise
        self.committed = True


@pytest.fixture
def make_handler():
    """Build a ``FakeServiceHandler``; keyword arguments are passed through."""
    return FakeServiceHandler


@pytest.fixture
def recording_transaction():
    return RecordingTransaction()
