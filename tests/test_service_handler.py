"""Tests for internal request dispatch against the SQLite platform database."""

import pytest

from rest_platform_api.app.core import db
from rest_platform_api.app.core.config import settings
from rest_platform_api.app.core.exceptions import BadRequestError, NotFoundError
from rest_platform_api.app.services.service_handler import ServiceHandler, unwrap, wrap

from conftest import ORDERS_TABLE


@pytest.fixture
def handler(shop_services):
    with db.transaction() as conn:
        yield ServiceHandler(conn)


class TestSystemRoutes:
    def test_create_and_get_app(self, handler):
        created = unwrap(handler.handle_request("POST", "system", "app", {"fields": "*"}, [{"name": "shop"}]))

        assert created[0]["name"] == "shop"
        fetched = handler.handle_request("GET", "system", f"app/{created[0]['id']}")
        assert fetched["name"] == "shop"

    def test_missing_app(self, handler):
        with pytest.raises(NotFoundError):
            handler.handle_request("GET", "system", "app/999")

    def test_duplicate_app_name(self, handler):
        handler.handle_request("POST", "system", "app", payload=[{"name": "shop"}])

        with pytest.raises(BadRequestError, match="already exists"):
            handler.handle_request("POST", "system", "app", payload=[{"name": "shop"}])

    def test_invalid_app_record(self, handler):
        with pytest.raises(BadRequestError):
            handler.handle_request("POST", "system", "app", payload=[{"description": "no name"}])

    @pytest.mark.parametrize("name", ["../evil", "team/app", "a\\b"])
    def test_path_like_app_name_rejected(self, handler, name):
        with pytest.raises(BadRequestError, match="may not contain"):
            handler.handle_request("POST", "system", "app", payload=[{"name": name}])

    def test_service_lookup_by_name_and_id(self, handler, shop_services):
        by_name = handler.handle_request("GET", "system", "service/db1")
        by_id = handler.handle_request("GET", "system", f"service/{shop_services['db1'].id}")

        assert by_name["id"] == by_id["id"] == shop_services["db1"].id

    def test_list_services_by_type(self, handler):
        services = unwrap(handler.handle_request("GET", "system", "service", {"type": "local_file"}))

        assert [service["name"] for service in services] == ["files"]

    def test_create_services(self, handler):
        payload = wrap([{"name": "crm", "type": "rest"}, {"name": "crm_db", "type": "sql_db"}])
        created = unwrap(handler.handle_request("POST", "system", "service", payload=payload))

        assert [service["name"] for service in created] == ["crm", "crm_db"]

    def test_unsupported_resource(self, handler):
        with pytest.raises(BadRequestError):
            handler.handle_request("DELETE", "system", "app")


class TestDatabaseRoutes:
    def test_unknown_service(self, handler):
        with pytest.raises(NotFoundError):
            handler.handle_request("GET", "nope", "_schema")

    def test_non_database_service(self, handler):
        with pytest.raises(BadRequestError):
            handler.handle_request("GET", "email_service", "_schema")

    def test_describe_in_requested_order(self, handler):
        tables = unwrap(handler.handle_request("GET", "db1", "_schema", {"ids": "customers,orders"}))

        assert [table["name"] for table in tables] == ["customers", "orders"]

    def test_describe_unknown_table(self, handler):
        with pytest.raises(NotFoundError):
            handler.handle_request("GET", "db1", "_schema", {"ids": "invoices"})

    def test_create_existing_table(self, handler):
        with pytest.raises(BadRequestError, match="already exists"):
            handler.handle_request("POST", "db1", "_schema", payload=wrap([ORDERS_TABLE]))

    def test_failed_request_leaves_no_partial_effects(self, handler):
        """The first table of a failing batch is rolled back with it."""
        invoices = {"name": "invoices", "field": [{"name": "id", "type": "id"}]}

        with pytest.raises(BadRequestError):
            handler.handle_request("POST", "db1", "_schema", payload=wrap([invoices, ORDERS_TABLE]))

        names = [table["name"] for table in unwrap(handler.handle_request("GET", "db1", "_schema"))]
        assert "invoices" not in names

    def test_insert_and_list_records(self, handler):
        inserted = unwrap(
            handler.handle_request(
                "POST", "db1", "_table/orders", payload=wrap([{"customer": "ann", "total": 10.5}, {"customer": "bob"}])
            )
        )
        records = unwrap(handler.handle_request("GET", "db1", "_table/orders"))

        assert [row["id"] for row in inserted] == [1, 2]
        assert records == [
            {"id": 1, "customer": "ann", "total": 10.5},
            {"id": 2, "customer": "bob", "total": 0},
        ]

    def test_insert_unknown_table(self, handler):
        with pytest.raises(NotFoundError):
            handler.handle_request("POST", "db1", "_table/invoices", payload=wrap([{"a": 1}]))

    def test_insert_unknown_column(self, handler):
        with pytest.raises(BadRequestError, match="Unknown field"):
            handler.handle_request("POST", "db1", "_table/orders", payload=wrap([{"colour": "red"}]))


def test_unwrapped_responses(shop_services, monkeypatch):
    monkeypatch.setattr(settings, "always_wrap_resources", False)
    with db.transaction() as conn:
        tables = ServiceHandler(conn).handle_request("GET", "db1", "_schema", {"ids": "orders"})

    assert isinstance(tables, list)
    assert tables[0]["name"] == "orders"
