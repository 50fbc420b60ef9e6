"""
File storage backends used to host application files.

The packager only needs four capabilities from a storage backend, all
declared on :class:`FileStorage`: checking that a container or a
folder exists, packing a folder into a package archive and unpacking
the remaining archive entries into a folder.  A *container* is the
top-level folder of a storage service; a *folder* is a path inside it.

:class:`LocalFileStorage` keeps containers as directories below a base
path.  :func:`get_storage` turns a ``local_file`` service record into
such a backend.
"""

from __future__ import annotations

import logging
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

from rest_platform_api.app.core.config import settings
from rest_platform_api.app.core.exceptions import ForbiddenError, NotFoundError
from rest_platform_api.app.services.archive import PackageArchive
from rest_platform_api.app.services.service_record_service import STORAGE_SERVICE_TYPES


logger = logging.getLogger(__name__)


class FileStorage(ABC):
    """Abstract base class for file storage backends."""

    @abstractmethod
    def container_exists(self, container: str) -> bool:
        ...

    @abstractmethod
    def folder_exists(self, container: str, folder: str) -> bool:
        ...

    @abstractmethod
    def pack_folder_to_archive(self, container: str, folder: str, archive: PackageArchive, root: str) -> int:
        """
        Add every file below ``container/folder`` to ``archive``.

        Args:
            container: Storage container holding the folder
            folder: Folder inside the container; empty for the whole container
            archive: Package being written
            root: Entry name prefix, the files are stored as ``root/<relative path>``

        Returns:
            Number of files added
        """
        ...

    @abstractmethod
    def unpack_archive_to_folder(
        self,
        container: str,
        folder: str,
        archive: PackageArchive,
        strip_prefix: Optional[str] = None,
    ) -> List[str]:
        """
        Extract the entries still present in ``archive`` below ``container/folder``.

        Args:
            container: Destination container, created when missing
            folder: Destination folder inside the container
            archive: Package being read; extracted entries are taken from it
            strip_prefix: Leading path removed from entry names; entries
                outside the prefix are left in the archive

        Returns:
            Storage paths of the written files
        """
        ...


class LocalFileStorage(FileStorage):
    """
    Local filesystem storage backend.

    Containers are directories directly below ``base_path``.  Every
    resolved path must stay inside ``base_path``.
    """

    def __init__(self, base_path: Union[str, Path]) -> None:
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve_path(self, *parts: str) -> Path:
        """Resolve storage path parts to an absolute filesystem path."""
        clean_parts = [Path(part).as_posix().strip("/") for part in parts if part]
        full_path = self.base_path.joinpath(*clean_parts).resolve()
        try:
            full_path.relative_to(self.base_path)
        except ValueError:
            raise ForbiddenError(f"Invalid path: {'/'.join(clean_parts)} (outside storage root)")
        return full_path

    def container_exists(self, container: str) -> bool:
        return bool(container) and self._resolve_path(container).is_dir()

    def folder_exists(self, container: str, folder: str) -> bool:
        return self._resolve_path(container, folder).is_dir()

    def pack_folder_to_archive(self, container: str, folder: str, archive: PackageArchive, root: str) -> int:
        source = self._resolve_path(container, folder)
        if not source.is_dir():
            raise NotFoundError(f"Folder '{container}/{folder}' does not exist.")
        root = root.strip("/")
        count = 0
        for file_path in sorted(source.rglob("*")):
            if not file_path.is_file():
                continue
            relative = file_path.relative_to(source).as_posix()
            archive.write_file(f"{root}/{relative}" if root else relative, file_path)
            count += 1
        logger.info("Packed %s file(s) from %s/%s", count, container, folder)
        return count

    def unpack_archive_to_folder(
        self,
        container: str,
        folder: str,
        archive: PackageArchive,
        strip_prefix: Optional[str] = None,
    ) -> List[str]:
        written = []
        for name in archive.names():
            relative = name
            if strip_prefix:
                if not name.startswith(strip_prefix):
                    logger.warning("Skipping package entry %s outside of %s", name, strip_prefix)
                    continue
                relative = name[len(strip_prefix):]
            if not relative or relative.endswith("/"):
                archive.delete_entry(name)
                continue
            target = self._resolve_path(container, folder, relative)
            target.parent.mkdir(parents=True, exist_ok=True)
            with archive.open_entry(name) as source, open(target, "wb") as out:
                shutil.copyfileobj(source, out)
            archive.delete_entry(name)
            written.append(target.relative_to(self.base_path).as_posix())
        logger.info("Unpacked %s file(s) into %s/%s", len(written), container, folder)
        return written


def get_storage(service: Optional[Mapping[str, Any]]) -> Optional[FileStorage]:
    """Return the storage backend for a service record.

    Records that are missing or not of a file storage type give
    ``None``.  A ``local_file`` service stores its containers below
    ``config["root"]`` or, by default, ``settings.storage_root/<name>``.
    """
    if not service or service.get("type") not in STORAGE_SERVICE_TYPES:
        return None
    config = service.get("config") or {}
    root = config.get("root") or str(Path(settings.storage_root) / service["name"])
    return LocalFileStorage(root)
