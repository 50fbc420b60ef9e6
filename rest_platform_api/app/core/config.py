"""
Simple configuration management.

The ``Settings`` dataclass reads configuration directly from
environment variables.  Defaults are provided for all fields so the
platform can start with an empty environment; in a production
deployment override them via environment variables.
"""

import os
import tempfile
from dataclasses import dataclass


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    project_name: str = os.getenv("PROJECT_NAME", "REST Platform API")
    api_version: str = os.getenv("API_VERSION", "1.0.0")
    debug: bool = _env_flag("DEBUG", "false")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "")

    # Path or connection string for the SQLite database.  Relative paths
    # are resolved against the project root by the ``db`` module.
    database_url: str = os.getenv("DATABASE_URL", "rest_platform.db")

    # Base directory for ``local_file`` storage services that do not
    # declare their own ``root`` in the service config.
    storage_root: str = os.getenv("STORAGE_ROOT", "storage")

    # Application packages must carry this extension to be imported.
    package_extension: str = os.getenv("PACKAGE_EXTENSION", "dfpkg")

    # Storage container used for imported app files when the package
    # does not name one.
    default_storage_folder: str = os.getenv("DEFAULT_STORAGE_FOLDER", "applications")

    # When enabled, list payloads exchanged with platform services are
    # wrapped as ``{resources_wrapper: [...]}``.
    always_wrap_resources: bool = _env_flag("ALWAYS_WRAP_RESOURCES", "true")
    resources_wrapper: str = os.getenv("RESOURCES_WRAPPER", "resource")

    # Seconds to wait for a remote package download.
    url_fetch_timeout: int = int(os.getenv("URL_FETCH_TIMEOUT", "30"))

    # Directory for package temp files; empty means the system default.
    temp_dir: str = os.getenv("TEMP_DIR", "")

    def get_temp_dir(self) -> str:
        return self.temp_dir or tempfile.gettempdir()


# Instantiate settings once so other modules can import it without
# repeatedly reading environment variables.  Environment variables
# should be set before importing this module.
settings = Settings()
