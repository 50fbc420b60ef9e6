"""
Pydantic schemas for platform services.

A service is a named, configured backend exposed through the API: a
SQL database, a file storage, an e-mail gateway and so on.  Built-in
services are flagged non-deletable; only user-defined services can be
exported in application packages.
"""

import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

SERVICE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")


class ServiceCreate(BaseModel):
    """Schema for creating a new service."""

    name: str = Field(..., description="Unique API name used in request paths")
    label: Optional[str] = None
    description: Optional[str] = None
    type: str = Field(..., description="Service type tag, e.g. ``sql_db`` or ``local_file``")
    is_active: bool = True
    mutable: bool = True
    deletable: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not SERVICE_NAME_PATTERN.match(v):
            raise ValueError("Service name may only contain letters, digits, '_' and '-'")
        return v

    @field_validator("config", mode="before")
    @classmethod
    def validate_config(cls, v):
        # Packages produced by older exporters store an empty config as null.
        return {} if v is None else v


class ServiceRead(BaseModel):
    """Schema for reading a service."""

    id: int
    name: str
    label: Optional[str]
    description: Optional[str]
    type: str
    is_active: bool
    mutable: bool
    deletable: bool
    config: Dict[str, Any]
    created_at: str
    updated_at: str
