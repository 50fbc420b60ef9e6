"""
Pydantic schemas for application package import and export.
"""

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field


class ExportRequest(BaseModel):
    """Options for exporting an application as a package file."""

    services: List[Union[int, str]] = Field(
        default_factory=list,
        description="Services (id or name) whose definitions are included",
    )
    schemas: Dict[str, Union[List[str], str]] = Field(
        default_factory=dict,
        description="Service (id or name) mapped to the tables whose schema is included",
    )
    include_files: bool = True
    include_data: bool = False


class ImportOverrides(BaseModel):
    """Fields supplied with an import request that win over the package."""

    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    storage_service_id: Optional[int] = None
    storage_container: Optional[str] = None
