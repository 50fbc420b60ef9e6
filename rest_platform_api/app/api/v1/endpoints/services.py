"""
Service endpoints for API v1.

These routes list, inspect and create platform services.  Built-in
services (``system``, the default file storage and database) are
created by the database migrations and flagged non-deletable.
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, status

from rest_platform_api.app.core.db import connection
from rest_platform_api.app.schemas.service import ServiceCreate, ServiceRead
from rest_platform_api.app.services.service_record_service import ServiceRecordService

router = APIRouter()


@router.get("/", response_model=List[ServiceRead])
def list_services(
    type: Optional[str] = Query(None, description="Only return services of this type"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[ServiceRead]:
    """Return a paginated list of services ordered by ID."""
    with connection() as conn:
        return ServiceRecordService.list_services(conn, service_type=type, limit=limit, offset=offset)


@router.get("/{service_id}", response_model=ServiceRead)
def get_service(service_id: int) -> ServiceRead:
    """Retrieve a single service by ID."""
    with connection() as conn:
        service = ServiceRecordService.get_service(conn, service_id)
    if service is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Service not found")
    return service


@router.post("/", response_model=ServiceRead, status_code=status.HTTP_201_CREATED)
def create_service(service_in: ServiceCreate) -> ServiceRead:
    """Create a new user-defined service."""
    with connection() as conn:
        return ServiceRecordService.create_service(conn, service_in)
