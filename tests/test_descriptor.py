"""Tests for the package document codec."""

import json

import pytest

from rest_platform_api.app.core.exceptions import BadRequestError
from rest_platform_api.app.services import descriptor
from rest_platform_api.app.services.descriptor import DataGroup, SchemaGroup, TableRecords


class TestDescription:
    def test_missing_description(self):
        with pytest.raises(BadRequestError, match="No application description"):
            descriptor.decode_description(None)

    def test_invalid_json(self):
        with pytest.raises(BadRequestError):
            descriptor.decode_description(b"{not json")

    def test_api_name_wins(self):
        record = descriptor.decode_description(b'{"name": "Display", "api_name": "shop"}')

        assert record["name"] == "shop"
        assert "api_name" not in record

    def test_null_fields_dropped(self):
        record = descriptor.decode_description(b'{"name": "shop", "toggle_location": null}')

        assert record == {"name": "shop"}

    def test_encode_keeps_portable_fields(self):
        """The storage service id is instance specific and never exported."""
        app = {
            "id": 7,
            "name": "shop",
            "type": 1,
            "storage_service_id": 2,
            "storage_container": "applications",
            "toggle_location": "top",
        }
        record = json.loads(descriptor.encode_description(app))

        assert record["name"] == "shop"
        assert record["storage_container"] == "applications"
        assert "storage_service_id" not in record
        assert "id" not in record


class TestServices:
    def test_absent_and_empty_differ(self):
        assert descriptor.decode_services(None) is None
        assert descriptor.decode_services(b"[]") == []

    def test_must_be_a_list(self):
        with pytest.raises(BadRequestError):
            descriptor.decode_services(b'{"name": "x"}')

    def test_encode_redacts_record(self):
        services = [{"id": 9, "name": "mail", "type": "smtp_email", "config": {"host": "h"}, "created_at": "now"}]
        decoded = json.loads(descriptor.encode_services(services))

        assert decoded == [
            {
                "name": "mail",
                "label": None,
                "description": None,
                "type": "smtp_email",
                "is_active": None,
                "mutable": None,
                "deletable": None,
                "config": {"host": "h"},
            }
        ]


class TestSchemaAndData:
    def test_schema_shape(self):
        groups = [SchemaGroup(name="db1", tables=[{"name": "orders"}, {"name": "customers"}])]

        assert json.loads(descriptor.encode_schema(groups)) == {
            "service": [{"name": "db1", "table": [{"name": "orders"}, {"name": "customers"}]}]
        }

    def test_schema_without_services_is_empty(self):
        """Present but empty is reported as an empty list, not as absent."""
        assert descriptor.decode_schema(b"{}") == []
        assert descriptor.decode_schema(None) is None

    def test_schema_service_needs_name(self):
        with pytest.raises(BadRequestError):
            descriptor.decode_schema(b'{"service": [{"table": []}]}')

    def test_data_decode(self):
        document = {
            "service": [
                {"name": "db1", "table": [{"name": "orders", "record": [{"customer": "ann"}]}]},
            ]
        }
        groups = descriptor.decode_data(json.dumps(document).encode())

        assert groups == [DataGroup(name="db1", tables=[TableRecords(name="orders", records=[{"customer": "ann"}])])]
        assert json.loads(descriptor.encode_data(groups)) == document

    def test_data_table_needs_name(self):
        with pytest.raises(BadRequestError):
            descriptor.decode_data(b'{"service": [{"name": "db1", "table": [{"record": []}]}]}')
