"""
Pydantic schemas for applications.

An application is a named entry point into the platform.  Depending on
its ``type`` it is hosted from a storage service (files uploaded to a
container), redirects to an external ``url`` or is served from a local
``path``.  UI flags control how clients embed the application.
"""

from enum import IntEnum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class AppType(IntEnum):
    """How an application is delivered to clients."""

    NONE = 0
    STORAGE_SERVICE = 1
    URL = 2
    PATH = 3


class AppCreate(BaseModel):
    """Schema for creating a new application."""

    name: str = Field(..., description="Unique API name of the application")
    description: Optional[str] = None
    is_active: bool = False
    type: AppType = AppType.NONE
    path: Optional[str] = Field(None, description="Launch path for path-hosted apps")
    url: Optional[str] = Field(None, description="Launch URL for URL-hosted apps")
    storage_service_id: Optional[int] = Field(None, description="File storage service hosting the app files")
    storage_container: Optional[str] = Field(None, description="Container (top folder) holding the app files")
    requires_fullscreen: bool = False
    allow_fullscreen_toggle: bool = True
    toggle_location: str = "top"

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Application name must not be empty")
        if "/" in v or "\\" in v or ".." in v:
            raise ValueError("Application name may not contain '/', '\\' or '..'")
        return v


class AppRead(BaseModel):
    """Schema for reading an application."""

    id: int
    name: str
    description: Optional[str]
    is_active: bool
    type: AppType
    path: Optional[str]
    url: Optional[str]
    storage_service_id: Optional[int]
    storage_container: Optional[str]
    requires_fullscreen: bool
    allow_fullscreen_toggle: bool
    toggle_location: str
    created_at: str
    updated_at: str
