"""
Acceptance of package files for import.

A package reaches the importer either as an uploaded file or as a URL
to download.  Both paths check the file extension first, before any
byte is read, then copy the package into a fresh temporary file.  The
caller owns that file and normally hands it to
``PackageArchive.open(path, owns_file=True)`` so it is removed when the
archive is closed.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import PurePosixPath
from typing import BinaryIO
from urllib.parse import urlparse

import requests

from rest_platform_api.app.core.config import settings
from rest_platform_api.app.core.exceptions import BadRequestError, InternalServerError
from rest_platform_api.app.services.archive import PackageArchive


logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def verify_extension(name: str) -> None:
    """Reject names that do not end with the package extension."""
    extension = PurePosixPath(name or "").suffix.lstrip(".").lower()
    if extension != settings.package_extension.lower():
        raise BadRequestError(
            f"Only package files ending with '{settings.package_extension}' are allowed for import."
        )


def _new_temp_file() -> tuple[int, str]:
    return tempfile.mkstemp(suffix="." + settings.package_extension, dir=settings.get_temp_dir())


def accept_upload(filename: str, stream: BinaryIO) -> str:
    """Validate an uploaded package and copy it to a temporary file.

    Returns the path of the temporary copy.
    """
    verify_extension(filename)
    fd, path = _new_temp_file()
    try:
        with os.fdopen(fd, "wb") as out:
            shutil.copyfileobj(stream, out, CHUNK_SIZE)
    except OSError as exc:
        os.unlink(path)
        raise InternalServerError(f"Failed to receive upload of '{filename}': {exc}") from exc
    logger.info("Received package upload %s", filename)
    return path


def accept_url(url: str) -> str:
    """Validate a package URL and download it to a temporary file.

    Network errors and non-2xx responses raise ``InternalServerError``.
    Returns the path of the downloaded file.
    """
    verify_extension(urlparse(url).path)
    fd, path = _new_temp_file()
    try:
        with os.fdopen(fd, "wb") as out:
            with requests.get(url, stream=True, timeout=settings.url_fetch_timeout) as response:
                response.raise_for_status()
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    out.write(chunk)
    except (requests.RequestException, OSError) as exc:
        os.unlink(path)
        raise InternalServerError(f"Failed to import package {url}.\n{exc}") from exc
    logger.info("Downloaded package %s", url)
    return path


def open_upload(filename: str, stream: BinaryIO) -> PackageArchive:
    return PackageArchive.open(accept_upload(filename, stream), owns_file=True)


def open_url(url: str) -> PackageArchive:
    return PackageArchive.open(accept_url(url), owns_file=True)
