"""
Codec for the JSON documents stored in an application package.

Every function here is a pure transformation between bytes and Python
structures; reading and writing the archive is the packager's job.
Decoders return ``None`` when the entry bytes are ``None`` (entry not
in the package, the phase is skipped) and an empty list when the entry
exists but carries nothing to apply.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from rest_platform_api.app.core.exceptions import BadRequestError

# Current name first; ``app.json`` is written by old exporters.
DESCRIPTION_ENTRIES = ("description.json", "app.json")
SERVICES_ENTRY = "services.json"
SCHEMA_ENTRY = "schema.json"
DATA_ENTRY = "data.json"

DESCRIPTION_FIELDS = (
    "name",
    "description",
    "is_active",
    "type",
    "path",
    "url",
    "requires_fullscreen",
    "allow_fullscreen_toggle",
    "toggle_location",
)

SERVICE_FIELDS = (
    "name",
    "label",
    "description",
    "type",
    "is_active",
    "mutable",
    "deletable",
    "config",
)


@dataclass
class SchemaGroup:
    """Table definitions belonging to one database service."""

    name: str
    tables: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class TableRecords:
    name: str
    records: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class DataGroup:
    """Records to insert, per table, into one database service."""

    name: str
    tables: List[TableRecords] = field(default_factory=list)


def _dumps(document: Any) -> bytes:
    return json.dumps(document, ensure_ascii=False).encode("utf-8")


def _loads(data: bytes, entry: str) -> Any:
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise BadRequestError(f"Package entry '{entry}' is not valid JSON: {exc}") from exc


def encode_description(app: Mapping[str, Any]) -> bytes:
    """Serialize the portable fields of an application record.

    ``storage_container`` is kept when set so files land in the same
    container on import; ``storage_service_id`` is instance specific
    and never exported.
    """
    record = {key: app.get(key) for key in DESCRIPTION_FIELDS}
    if app.get("storage_container"):
        record["storage_container"] = app["storage_container"]
    return _dumps(record)


def decode_description(data: Optional[bytes]) -> Dict[str, Any]:
    """Parse the application description.

    Unlike the other entries the description is required.  ``api_name``
    takes precedence over ``name`` and is folded into it.  Null fields
    are dropped so the platform defaults apply.
    """
    if data is None:
        raise BadRequestError("No application description file in this package file.")
    record = _loads(data, DESCRIPTION_ENTRIES[0])
    if not isinstance(record, dict):
        raise BadRequestError("Application description must be a JSON object.")
    api_name = record.pop("api_name", None)
    if api_name:
        record["name"] = api_name
    return {key: value for key, value in record.items() if value is not None}


def encode_services(services: Iterable[Mapping[str, Any]]) -> bytes:
    return _dumps([{key: service.get(key) for key in SERVICE_FIELDS} for service in services])


def decode_services(data: Optional[bytes]) -> Optional[List[Dict[str, Any]]]:
    if data is None:
        return None
    services = _loads(data, SERVICES_ENTRY)
    if not isinstance(services, list) or not all(isinstance(item, dict) for item in services):
        raise BadRequestError(f"Package entry '{SERVICES_ENTRY}' must be a list of service objects.")
    return services


def encode_schema(groups: Iterable[SchemaGroup]) -> bytes:
    return _dumps({"service": [{"name": group.name, "table": group.tables} for group in groups]})


def decode_schema(data: Optional[bytes]) -> Optional[List[SchemaGroup]]:
    if data is None:
        return None
    groups = []
    for item in _service_list(_loads(data, SCHEMA_ENTRY), SCHEMA_ENTRY):
        tables = item.get("table") or []
        if not isinstance(tables, list):
            raise BadRequestError(f"Tables of service '{item.get('name')}' in '{SCHEMA_ENTRY}' must be a list.")
        groups.append(SchemaGroup(name=item.get("name"), tables=tables))
    return groups


def encode_data(groups: Iterable[DataGroup]) -> bytes:
    return _dumps(
        {
            "service": [
                {
                    "name": group.name,
                    "table": [{"name": table.name, "record": table.records} for table in group.tables],
                }
                for group in groups
            ]
        }
    )


def decode_data(data: Optional[bytes]) -> Optional[List[DataGroup]]:
    if data is None:
        return None
    groups = []
    for item in _service_list(_loads(data, DATA_ENTRY), DATA_ENTRY):
        tables = []
        for table in item.get("table") or []:
            if not isinstance(table, dict) or not table.get("name"):
                raise BadRequestError(f"Every table in '{DATA_ENTRY}' needs a name.")
            records = table.get("record") or []
            if not isinstance(records, list):
                raise BadRequestError(f"Records of table '{table['name']}' in '{DATA_ENTRY}' must be a list.")
            tables.append(TableRecords(name=table["name"], records=records))
        groups.append(DataGroup(name=item.get("name"), tables=tables))
    return groups


def _service_list(document: Any, entry: str) -> List[Dict[str, Any]]:
    if not isinstance(document, dict):
        raise BadRequestError(f"Package entry '{entry}' must be a JSON object.")
    services = document.get("service") or []
    if not isinstance(services, list):
        raise BadRequestError(f"'service' in package entry '{entry}' must be a list.")
    for item in services:
        if not isinstance(item, dict) or not item.get("name"):
            raise BadRequestError(f"Every service in '{entry}' needs a name.")
    return services
