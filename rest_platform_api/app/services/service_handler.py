"""
Internal request dispatch to platform services.

Code that needs to change platform state on behalf of a caller (the
packager above all) goes through ``handle_request`` instead of calling
the record services directly.  A request names a verb, a service and a
resource path, exactly like an API call::

    handler.handle_request("POST", "system", "app", payload=[record])
    handler.handle_request("GET", "db1", "_schema", {"ids": "orders,customers"})
    handler.handle_request("POST", "db1", "_table/orders", payload={"resource": rows})

``ServiceHandler`` is bound to one connection, so every request made
while importing a package joins that import's transaction.  Each
request additionally runs in its own SAVEPOINT: a failed request
leaves no partial effects behind and the outer transaction remains
usable.

Supported routes:

* ``system/app`` and ``system/app/<id>`` (GET, POST)
* ``system/service`` and ``system/service/<id or name>`` (GET, POST)
* ``<sql_db service>/_schema`` (GET with ``ids``, POST)
* ``<sql_db service>/_table/<name>`` (GET, POST)
"""

from __future__ import annotations

import itertools
import logging
import sqlite3
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError

from rest_platform_api.app.core.config import settings
from rest_platform_api.app.core.exceptions import (
    BadRequestError,
    InternalServerError,
    NotFoundError,
    PlatformError,
)
from rest_platform_api.app.schemas.app import AppCreate
from rest_platform_api.app.schemas.service import ServiceCreate, ServiceRead
from rest_platform_api.app.services.app_service import AppService
from rest_platform_api.app.services.schema_service import SchemaService
from rest_platform_api.app.services.service_record_service import (
    DATABASE_SERVICE_TYPES,
    ServiceRecordService,
)


logger = logging.getLogger(__name__)

_savepoint_ids = itertools.count(1)


class ServiceRequestHandler(Protocol):
    """Anything that can execute a platform request."""

    def handle_request(
        self,
        verb: str,
        service: str,
        resource: str,
        options: Optional[Dict[str, Any]] = None,
        payload: Any = None,
    ) -> Any:
        ...


def wrap(records: List[Any]) -> Any:
    """Wrap a list payload the way the platform is configured to."""
    if settings.always_wrap_resources:
        return {settings.resources_wrapper: records}
    return records


def unwrap(response: Any) -> Any:
    """Undo :func:`wrap` on a response or payload; other values pass through."""
    if isinstance(response, dict) and settings.resources_wrapper in response:
        return response[settings.resources_wrapper]
    return response


def _as_list(payload: Any) -> List[Any]:
    payload = unwrap(payload)
    if payload is None:
        return []
    if isinstance(payload, dict):
        return [payload]
    if isinstance(payload, list):
        return payload
    raise BadRequestError("Request payload must be an object or a list of objects.")


def _split_ids(value: Any) -> Optional[List[str]]:
    if value is None or value == "":
        return None
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return [item.strip() for item in str(value).split(",") if item.strip()]


class ServiceHandler:
    """Executes platform requests on a single database connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def handle_request(
        self,
        verb: str,
        service: str,
        resource: str,
        options: Optional[Dict[str, Any]] = None,
        payload: Any = None,
    ) -> Any:
        verb = verb.upper()
        options = options or {}
        resource = resource.strip("/")
        savepoint = f"request_{next(_savepoint_ids)}"
        logger.debug("%s %s/%s", verb, service, resource)
        self.conn.execute(f"SAVEPOINT {savepoint}")
        try:
            result = self._dispatch(verb, service, resource, options, payload)
        except PlatformError:
            self._rollback_to(savepoint)
            raise
        except sqlite3.Error as exc:
            self._rollback_to(savepoint)
            raise InternalServerError(f"{verb} {service}/{resource} failed: {exc}") from exc
        self.conn.execute(f"RELEASE SAVEPOINT {savepoint}")
        return result

    def _rollback_to(self, savepoint: str) -> None:
        self.conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
        self.conn.execute(f"RELEASE SAVEPOINT {savepoint}")

    def _dispatch(self, verb: str, service: str, resource: str, options: Dict[str, Any], payload: Any) -> Any:
        if service == "system":
            return self._handle_system(verb, resource, options, payload)
        record = ServiceRecordService.get_service_by_name(self.conn, service)
        if record is None:
            raise NotFoundError(f"Service '{service}' not found.")
        if record.type in DATABASE_SERVICE_TYPES:
            return self._handle_database(record, verb, resource, options, payload)
        raise BadRequestError(f"Service '{service}' of type '{record.type}' does not support '{resource}'.")

    def _handle_system(self, verb: str, resource: str, options: Dict[str, Any], payload: Any) -> Any:
        name, _, key = resource.partition("/")
        if name == "app":
            if verb == "GET" and key:
                if not key.isdigit():
                    raise BadRequestError(f"Invalid app id '{key}'.")
                app = AppService.get_app(self.conn, int(key))
                if app is None:
                    raise NotFoundError(f"App with id '{key}' not found.")
                return app.model_dump()
            if verb == "GET":
                ids = _split_ids(options.get("ids"))
                apps = AppService.list_apps(self.conn, limit=int(options.get("limit", 100)))
                if ids is not None:
                    apps = [app for app in apps if str(app.id) in ids]
                return wrap([app.model_dump() for app in apps])
            if verb == "POST" and not key:
                records = [self._validate(AppCreate, item) for item in _as_list(payload)]
                created = [AppService.create_app(self.conn, item) for item in records]
                return wrap([app.model_dump() for app in created])
        elif name == "service":
            if verb == "GET" and key:
                found = ServiceRecordService.resolve(self.conn, key)
                if found is None:
                    raise NotFoundError(f"Service '{key}' not found.")
                return found.model_dump()
            if verb == "GET":
                services = ServiceRecordService.list_services(
                    self.conn,
                    service_type=options.get("type"),
                    limit=int(options.get("limit", 100)),
                )
                return wrap([service.model_dump() for service in services])
            if verb == "POST" and not key:
                records = [self._validate(ServiceCreate, item) for item in _as_list(payload)]
                created = ServiceRecordService.create_services(self.conn, records)
                return wrap([service.model_dump() for service in created])
        raise BadRequestError(f"{verb} is not supported on system/{resource}.")

    def _handle_database(
        self,
        service: ServiceRead,
        verb: str,
        resource: str,
        options: Dict[str, Any],
        payload: Any,
    ) -> Any:
        if resource == "_schema":
            if verb == "GET":
                return wrap(SchemaService.describe_tables(self.conn, service, _split_ids(options.get("ids"))))
            if verb == "POST":
                return wrap(SchemaService.create_tables(self.conn, service, _as_list(payload)))
        elif resource.startswith("_table/") and resource.count("/") == 1:
            table = resource.split("/", 1)[1]
            if verb == "GET":
                limit = options.get("limit")
                return wrap(SchemaService.list_records(self.conn, service, table, int(limit) if limit else None))
            if verb == "POST":
                return wrap(SchemaService.insert_records(self.conn, service, table, _as_list(payload)))
        raise BadRequestError(f"{verb} is not supported on {service.name}/{resource}.")

    @staticmethod
    def _validate(model, item: Any):
        if not isinstance(item, dict):
            raise BadRequestError("Each record must be an object.")
        try:
            return model(**item)
        except ValidationError as exc:
            raise BadRequestError(f"Invalid record: {exc}") from exc
