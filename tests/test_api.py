"""End-to-end tests for the application and service endpoints."""

import inspect
import io
import json
import zipfile

import pytest
from fastapi.testclient import TestClient

from rest_platform_api.app.api.v1.router import router
from rest_platform_api.app.main import app


@pytest.fixture
def client(platform_db):
    with TestClient(app) as test_client:
        yield test_client


def _package_bytes(entries):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in entries.items():
            zf.writestr(name, json.dumps(content))
    return buffer.getvalue()


def test_database_routes_run_in_threadpool():
    """SQLite calls block, so every route is a plain function."""
    for route in router.routes:
        assert not inspect.iscoroutinefunction(route.endpoint), route.path


class TestServices:
    def test_built_in_services_listed(self, client):
        response = client.get("/api/v1/services/", params={"type": "sql_db"})

        assert response.status_code == 200
        assert [service["name"] for service in response.json()] == ["db"]

    def test_create_and_get(self, client):
        response = client.post("/api/v1/services/", json={"name": "crm", "type": "rest"})

        assert response.status_code == 201
        service_id = response.json()["id"]
        assert client.get(f"/api/v1/services/{service_id}").json()["deletable"] is True

    def test_invalid_name(self, client):
        response = client.post("/api/v1/services/", json={"name": "no spaces", "type": "rest"})

        assert response.status_code == 422


class TestExportImport:
    def test_export_then_import_renamed(self, client):
        client.post("/api/v1/services/", json={"name": "crm", "type": "rest", "config": {"url": "http://crm"}})
        created = client.post("/api/v1/apps/", json={"name": "shop", "description": "Web shop"}).json()

        exported = client.post(f"/api/v1/apps/{created['id']}/export", json={"services": ["crm"]})

        assert exported.status_code == 200
        assert exported.headers["content-type"] == "application/zip"
        assert "shop.dfpkg" in exported.headers["content-disposition"]
        with zipfile.ZipFile(io.BytesIO(exported.content)) as zf:
            assert sorted(zf.namelist()) == ["description.json", "services.json"]

        package = _package_bytes({"description.json": {"name": "shop", "description": "Web shop"}})
        imported = client.post(
            "/api/v1/apps/import",
            files={"file": ("shop.dfpkg", package, "application/zip")},
            data={"name": "journal"},
        )

        assert imported.status_code == 201
        assert imported.json()["name"] == "journal"
        assert imported.json()["description"] == "Web shop"
        names = [item["name"] for item in client.get("/api/v1/apps/").json()]
        assert names == ["shop", "journal"]

    def test_export_without_body(self, client):
        created = client.post("/api/v1/apps/", json={"name": "shop"}).json()

        response = client.post(f"/api/v1/apps/{created['id']}/export")

        assert response.status_code == 200

    def test_export_unknown_app(self, client):
        response = client.post("/api/v1/apps/999/export", json={})

        assert response.status_code == 404
        assert response.json()["detail"] == "App not found in database with app id - 999"

    def test_import_wrong_extension(self, client):
        response = client.post(
            "/api/v1/apps/import",
            files={"file": ("shop.zip", _package_bytes({"description.json": {"name": "shop"}}), "application/zip")},
        )

        assert response.status_code == 400

    def test_create_app_with_path_in_name(self, client):
        response = client.post("/api/v1/apps/", json={"name": "../evil"})

        assert response.status_code == 422

    def test_import_without_package(self, client):
        response = client.post("/api/v1/apps/import", data={"name": "shop"})

        assert response.status_code == 400

    def test_import_not_a_zip(self, client):
        response = client.post(
            "/api/v1/apps/import",
            files={"file": ("shop.dfpkg", b"not a zip", "application/zip")},
        )

        assert response.status_code == 400

    def test_failed_import_keeps_nothing(self, client):
        package = _package_bytes(
            {
                "description.json": {"name": "shop"},
                "services.json": [{"name": "crm", "type": "rest"}],
                "schema.json": {"service": [{"name": "missing_db", "table": [{"name": "t", "field": [{"name": "id"}]}]}]},
            }
        )

        response = client.post("/api/v1/apps/import", files={"file": ("shop.dfpkg", package, "application/zip")})

        assert response.status_code == 404
        assert client.get("/api/v1/apps/").json() == []
        assert "crm" not in [service["name"] for service in client.get("/api/v1/services/").json()]
