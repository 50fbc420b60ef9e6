"""
Application endpoints for API v1.

Besides listing, creating and deleting applications these routes
expose package export and import:

* ``POST /apps/{app_id}/export`` streams a ``.dfpkg`` package holding
  the application and the selected services, schemas, data and files;
* ``POST /apps/import`` accepts a package as a multipart upload
  (``file``) or as a URL to download (``import_url``).  Optional form
  fields override values stored in the package.
"""

from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse

from rest_platform_api.app.core.db import connection
from rest_platform_api.app.core.exceptions import BadRequestError
from rest_platform_api.app.schemas.app import AppCreate, AppRead
from rest_platform_api.app.schemas.package import ExportRequest, ImportOverrides
from rest_platform_api.app.services.app_service import AppService
from rest_platform_api.app.services.package_source import open_upload, open_url
from rest_platform_api.app.services.packager import ExportSelection, Packager

router = APIRouter()


def get_packager() -> Packager:
    return Packager()


@router.get("/", response_model=List[AppRead])
def list_apps(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[AppRead]:
    """Return a paginated list of applications ordered by ID."""
    with connection() as conn:
        return AppService.list_apps(conn, limit=limit, offset=offset)


@router.post("/", response_model=AppRead, status_code=status.HTTP_201_CREATED)
def create_app(app_in: AppCreate) -> AppRead:
    """Create a new application record."""
    with connection() as conn:
        return AppService.create_app(conn, app_in)


@router.post("/import", response_model=AppRead, status_code=status.HTTP_201_CREATED)
def import_app(
    file: Optional[UploadFile] = File(None),
    import_url: Optional[str] = Form(None),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    is_active: Optional[bool] = Form(None),
    storage_service_id: Optional[int] = Form(None),
    storage_container: Optional[str] = Form(None),
    packager: Packager = Depends(get_packager),
) -> AppRead:
    """Import an application package.

    The package extension is checked before the upload is stored or the
    URL is fetched.  Either the whole application is created (record,
    services, schema, data and files) or, on error, none of its records
    are kept.
    """
    overrides = ImportOverrides(
        name=name,
        description=description,
        is_active=is_active,
        storage_service_id=storage_service_id,
        storage_container=storage_container,
    )
    if file is not None and file.filename:
        archive = open_upload(file.filename, file.file)
    elif import_url:
        archive = open_url(import_url)
    else:
        raise BadRequestError("No package file or URL was given for import.")
    return packager.import_application(archive, overrides.model_dump())


@router.get("/{app_id}", response_model=AppRead)
def get_app(app_id: int) -> AppRead:
    """Retrieve a single application by ID."""
    with connection() as conn:
        app = AppService.get_app(conn, app_id)
    if app is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="App not found")
    return app


@router.delete("/{app_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_app(app_id: int) -> None:
    """Delete an application record.  Hosted files are kept."""
    with connection() as conn:
        deleted = AppService.delete_app(conn, app_id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="App not found")
    return None


@router.post("/{app_id}/export", response_class=FileResponse)
def export_app(
    app_id: int,
    background_tasks: BackgroundTasks,
    export_in: Optional[ExportRequest] = None,
    packager: Packager = Depends(get_packager),
) -> FileResponse:
    """Download application ``app_id`` as a package file.

    The temporary package is removed once the response has been sent.
    """
    export_in = export_in or ExportRequest()
    package = packager.export_application(
        app_id,
        ExportSelection(services=list(export_in.services), schemas=dict(export_in.schemas)),
        include_files=export_in.include_files,
        include_data=export_in.include_data,
    )
    background_tasks.add_task(package.cleanup)
    return FileResponse(package.path, filename=package.filename, media_type="application/zip")
