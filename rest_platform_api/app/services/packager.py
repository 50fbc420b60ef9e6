"""
Application package export and import.

An application package (``<app>.dfpkg``) is a zip archive that carries
everything needed to recreate an application on another instance:

* ``description.json`` - the application record (required);
* ``services.json`` - user-defined services the app depends on;
* ``schema.json`` - table definitions per SQL database service;
* ``data.json`` - records per service and table;
* ``<app name>/...`` - the files of a storage-hosted application.

Export reads the live records through a :class:`ServiceRequestHandler`
and writes the archive.  It changes nothing, so a failure simply
discards the partial package.

Import replays the package in order: application record, services,
schema, data, files.  All database work runs in one transaction that is
committed only after the files were written; any failure rolls back
every record created by the call.  Files already written to storage
when a later step fails are not removed.

Both directions talk to the rest of the platform only through the
request handler and the storage resolver given to :class:`Packager`,
so tests can substitute fakes for either.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from rest_platform_api.app.core.config import settings
from rest_platform_api.app.core.db import transaction
from rest_platform_api.app.core.exceptions import (
    BadRequestError,
    InternalServerError,
    NotFoundError,
    PlatformError,
)
from rest_platform_api.app.schemas.app import AppType
from rest_platform_api.app.services import descriptor
from rest_platform_api.app.services.archive import PackageArchive
from rest_platform_api.app.services.descriptor import DataGroup, SchemaGroup, TableRecords
from rest_platform_api.app.services.service_handler import ServiceHandler, ServiceRequestHandler, unwrap, wrap
from rest_platform_api.app.services.service_record_service import DATABASE_SERVICE_TYPES
from rest_platform_api.app.services.storage import FileStorage, get_storage


logger = logging.getLogger(__name__)

# Bridge errors that abort schema and data replay; any other error
# class only skips the failing service or table.
FATAL_STATUS_CODES = (404, 500)

ServiceRef = Union[int, str]


def package_basename(app_name: str) -> str:
    """File name stem for the package of ``app_name``.

    Only the last path component is kept; names that leave nothing
    usable are rejected.
    """
    stem = os.path.basename(app_name.replace("\\", "/").rstrip("/")).strip()
    if not stem or stem in (".", ".."):
        raise BadRequestError(f"Application name '{app_name}' can not be used as a package file name.")
    return stem


@dataclass
class ExportSelection:
    """What to include in an exported package besides the app itself."""

    services: List[ServiceRef] = field(default_factory=list)
    schemas: Dict[ServiceRef, Union[List[str], str]] = field(default_factory=dict)


@dataclass
class ExportedPackage:
    """A finished package waiting to be delivered."""

    path: str
    filename: str
    directory: str

    def cleanup(self) -> None:
        """Remove the package and the temporary directory holding it."""
        shutil.rmtree(self.directory, ignore_errors=True)


class Packager:
    """Exports applications to package files and imports them back."""

    def __init__(
        self,
        handler_factory: Callable[[Any], ServiceRequestHandler] = ServiceHandler,
        storage_resolver: Callable[[Optional[Mapping[str, Any]]], Optional[FileStorage]] = get_storage,
        transaction_factory: Callable[[], AbstractContextManager] = transaction,
    ) -> None:
        self._handler_factory = handler_factory
        self._storage_resolver = storage_resolver
        self._transaction = transaction_factory

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_application(
        self,
        app_id: int,
        selection: Optional[ExportSelection] = None,
        include_files: bool = True,
        include_data: bool = False,
    ) -> ExportedPackage:
        """Build a package for application ``app_id``.

        Returns the finished package; the caller delivers it and then
        calls :meth:`ExportedPackage.cleanup`.  Raises ``NotFoundError``
        when the application does not exist.
        """
        selection = selection or ExportSelection()
        with self._transaction() as conn:
            handler = self._handler_factory(conn)
            app = self._get_app(handler, app_id)
            package = self._init_export_package(app["name"])
            archive = None
            try:
                archive = PackageArchive.create(package.path, owns_file=False)
                self._package_app_description(archive, app)
                services = self._package_services(handler, archive, selection.services)
                schemas = self._package_schemas(handler, archive, selection.schemas)
                if include_data:
                    self._package_data(handler, archive, schemas)
                if app.get("type") == AppType.STORAGE_SERVICE and include_files:
                    self._package_app_files(handler, archive, app)
                archive.seal()
            except BaseException:
                if archive is not None:
                    archive.close()
                package.cleanup()
                raise
            archive.close()
        logger.info(
            "Exported app %s (%s) with %s service(s) and schema of %s service(s) to %s",
            app_id,
            app["name"],
            len(services),
            len(schemas),
            package.path,
        )
        return package

    @staticmethod
    def _get_app(handler: ServiceRequestHandler, app_id: int) -> Dict[str, Any]:
        try:
            return handler.handle_request("GET", "system", f"app/{app_id}")
        except NotFoundError as exc:
            raise NotFoundError(f"App not found in database with app id - {app_id}") from exc

    @staticmethod
    def _init_export_package(app_name: str) -> ExportedPackage:
        # One directory per export keeps concurrent exports of the same
        # app from sharing a file name.
        filename = f"{package_basename(app_name)}.{settings.package_extension}"
        directory = tempfile.mkdtemp(prefix="package_", dir=settings.get_temp_dir())
        return ExportedPackage(path=os.path.join(directory, filename), filename=filename, directory=directory)

    @staticmethod
    def _package_app_description(archive: PackageArchive, app: Mapping[str, Any]) -> None:
        archive.write_entry(descriptor.DESCRIPTION_ENTRIES[0], descriptor.encode_description(app))

    @staticmethod
    def _resolve_exportable(handler: ServiceRequestHandler, ref: ServiceRef) -> Optional[Dict[str, Any]]:
        """Return the service named by ``ref`` if it exists and is user-defined."""
        try:
            service = handler.handle_request("GET", "system", f"service/{ref}")
        except NotFoundError:
            return None
        if not service.get("deletable"):
            return None
        return service

    def _package_services(
        self,
        handler: ServiceRequestHandler,
        archive: PackageArchive,
        refs: Sequence[ServiceRef],
    ) -> List[Dict[str, Any]]:
        services = []
        for ref in refs:
            service = self._resolve_exportable(handler, ref)
            if service is None:
                logger.warning("Service %s not found or not exportable, skipped", ref)
                continue
            services.append(service)
        if services:
            archive.write_entry(descriptor.SERVICES_ENTRY, descriptor.encode_services(services))
            logger.info("Packaged %s service(s)", len(services))
        return services

    def _package_schemas(
        self,
        handler: ServiceRequestHandler,
        archive: PackageArchive,
        selected: Mapping[ServiceRef, Union[List[str], str]],
    ) -> List[SchemaGroup]:
        groups = []
        for ref, components in selected.items():
            if isinstance(components, str):
                components = [part.strip() for part in components.split(",") if part.strip()]
            service = self._resolve_exportable(handler, ref)
            if service is None:
                raise NotFoundError(f"Can not export schema, service '{ref}' not found or not exportable.")
            if service.get("type") not in DATABASE_SERVICE_TYPES or not components:
                continue
            try:
                tables = handler.handle_request(
                    "GET", service["name"], "_schema", {"ids": ",".join(components)}
                )
            except PlatformError as exc:
                raise exc.with_context(f"Can not export schema of service '{service['name']}'.") from exc
            groups.append(SchemaGroup(name=service["name"], tables=unwrap(tables)))
        if groups:
            archive.write_entry(descriptor.SCHEMA_ENTRY, descriptor.encode_schema(groups))
            logger.info("Packaged schema of %s service(s)", len(groups))
        return groups

    @staticmethod
    def _package_data(
        handler: ServiceRequestHandler,
        archive: PackageArchive,
        schemas: Sequence[SchemaGroup],
    ) -> None:
        groups = []
        for schema in schemas:
            tables = []
            for table in schema.tables:
                try:
                    records = handler.handle_request("GET", schema.name, f"_table/{table['name']}")
                except PlatformError as exc:
                    raise exc.with_context(
                        f"Can not export data of table '{table['name']}' in service '{schema.name}'."
                    ) from exc
                tables.append(TableRecords(name=table["name"], records=unwrap(records)))
            groups.append(DataGroup(name=schema.name, tables=tables))
        if groups:
            archive.write_entry(descriptor.DATA_ENTRY, descriptor.encode_data(groups))
            logger.info("Packaged data of %s service(s)", len(groups))

    def _resolve_storage(
        self,
        handler: ServiceRequestHandler,
        storage_service_id: Optional[int],
    ) -> tuple[Optional[Dict[str, Any]], Optional[FileStorage]]:
        """Find the storage service by id, falling back to the platform default."""
        service = None
        if storage_service_id:
            try:
                service = handler.handle_request("GET", "system", f"service/{storage_service_id}")
            except NotFoundError:
                service = None
        else:
            candidates = unwrap(
                handler.handle_request("GET", "system", "service", {"type": "local_file", "limit": 1})
            )
            service = candidates[0] if candidates else None
        return service, self._storage_resolver(service)

    def _package_app_files(self, handler: ServiceRequestHandler, archive: PackageArchive, app: Mapping[str, Any]) -> None:
        app_name = app["name"]
        storage_service_id = app.get("storage_service_id")
        service, storage = self._resolve_storage(handler, storage_service_id)
        if service is None:
            raise InternalServerError("Can not find storage service identifier.")
        if storage is None:
            raise InternalServerError(
                f"Can not find storage service by identifier '{storage_service_id or service.get('id')}'."
            )
        container = app.get("storage_container")
        if not container:
            if storage.container_exists(app_name):
                storage.pack_folder_to_archive(app_name, "", archive, root=app_name)
        elif storage.folder_exists(container, app_name):
            storage.pack_folder_to_archive(container, app_name, archive, root=app_name)

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_application(self, archive: PackageArchive, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Create an application from ``archive``.

        ``overrides`` win over the fields stored in the package; ``None``
        values are ignored.  Returns the created application record.
        The archive is closed on every exit path.
        """
        try:
            record = self._get_app_info(archive)
            source_name = record.get("name")
            record.update({key: value for key, value in (overrides or {}).items() if value is not None})
            self._apply_storage_defaults(record)

            with self._transaction() as conn:
                handler = self._handler_factory(conn)
                app = self._insert_app_record(handler, record)
                try:
                    phases = {
                        "services": self._insert_services(handler, archive),
                        "schema": self._insert_schemas(handler, archive),
                        "data": self._insert_data(handler, archive),
                    }
                    files = self._store_application_files(handler, archive, record, source_name)
                except Exception:
                    logger.error("Import of app %s failed, rolling back", record.get("name"))
                    raise
            logger.info(
                "Imported app %s (%s); applied: %s; %s file(s) stored",
                app.get("id"),
                app.get("name"),
                ", ".join(name for name, applied in phases.items() if applied) or "app record only",
                len(files),
            )
            return app
        finally:
            archive.close()

    @staticmethod
    def _get_app_info(archive: PackageArchive) -> Dict[str, Any]:
        data = None
        for name in descriptor.DESCRIPTION_ENTRIES:
            entry = archive.take_entry(name)
            # An empty current entry falls through to the legacy one.
            if not data:
                data = entry
        return descriptor.decode_description(data)

    @staticmethod
    def _apply_storage_defaults(record: Dict[str, Any]) -> None:
        # Files of a storage-hosted app are unpacked into the default
        # folder when the package names none; record it on the app so a
        # later export finds them again.
        if record.get("type") == AppType.STORAGE_SERVICE and record.get("storage_container") is None:
            record["storage_container"] = settings.default_storage_folder

    @staticmethod
    def _insert_app_record(handler: ServiceRequestHandler, record: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            result = handler.handle_request("POST", "system", "app", {"fields": "*"}, [dict(record)])
        except PlatformError as exc:
            raise InternalServerError(f"Could not create the application.\n{exc.message}") from exc
        return unwrap(result)[0]

    @staticmethod
    def _insert_services(handler: ServiceRequestHandler, archive: PackageArchive) -> bool:
        services = descriptor.decode_services(archive.take_entry(descriptor.SERVICES_ENTRY))
        if services is None:
            return False
        if not services:
            logger.info("Package lists no services")
            return True
        try:
            handler.handle_request("POST", "system", "service", payload=wrap(services))
        except PlatformError as exc:
            raise exc.with_context("Could not create the services.") from exc
        logger.info("Created %s service(s)", len(services))
        return True

    @staticmethod
    def _insert_schemas(handler: ServiceRequestHandler, archive: PackageArchive) -> bool:
        groups = descriptor.decode_schema(archive.take_entry(descriptor.SCHEMA_ENTRY))
        if groups is None:
            return False
        if not groups:
            raise BadRequestError(
                "Could not create the database tables for this application.\n"
                f"Database service or schema not found in {descriptor.SCHEMA_ENTRY}."
            )
        for group in groups:
            if not group.tables:
                continue
            try:
                handler.handle_request("POST", group.name, "_schema", payload=wrap(group.tables))
            except PlatformError as exc:
                if exc.status_code in FATAL_STATUS_CODES:
                    raise exc.with_context(
                        f"Could not create the database tables for service '{group.name}'."
                    ) from exc
                logger.warning("Schema for service %s skipped: %s", group.name, exc.message)
        return True

    @staticmethod
    def _insert_data(handler: ServiceRequestHandler, archive: PackageArchive) -> bool:
        groups = descriptor.decode_data(archive.take_entry(descriptor.DATA_ENTRY))
        if groups is None:
            return False
        if not groups:
            raise BadRequestError(
                "Could not create the database records for this application.\n"
                f"Database service or data not found in {descriptor.DATA_ENTRY}."
            )
        for group in groups:
            for table in group.tables:
                try:
                    handler.handle_request(
                        "POST", group.name, f"_table/{table.name}", payload=wrap(table.records)
                    )
                except PlatformError as exc:
                    if exc.status_code in FATAL_STATUS_CODES:
                        raise exc.with_context(
                            f"Could not insert records into table '{table.name}' of service '{group.name}'."
                        ) from exc
                    logger.warning("Data for %s/%s skipped: %s", group.name, table.name, exc.message)
        return True

    def _store_application_files(
        self,
        handler: ServiceRequestHandler,
        archive: PackageArchive,
        record: Mapping[str, Any],
        source_name: Optional[str],
    ) -> List[str]:
        if not archive.names():
            return []
        app_name = record["name"]
        storage_service_id = record.get("storage_service_id")
        service, storage = self._resolve_storage(handler, storage_service_id)
        if storage is None:
            raise InternalServerError(
                "App record created, but failed to import files due to unknown storage service"
                f" with id '{storage_service_id or (service or {}).get('id')}'."
            )
        storage_folder = record.get("storage_container")
        if storage_folder is None:
            storage_folder = settings.default_storage_folder
        strip_prefix = f"{source_name or app_name}/"
        try:
            if not storage_folder:
                return storage.unpack_archive_to_folder(app_name, "", archive, strip_prefix)
            return storage.unpack_archive_to_folder(storage_folder, app_name, archive, strip_prefix)
        except PlatformError as exc:
            raise exc.with_context("App record created, but failed to import files.") from exc
        except OSError as exc:
            raise InternalServerError(f"App record created, but failed to import files.\n{exc}") from exc
