"""
Random-access wrapper around an application package file.

A package is a zip archive holding a few JSON documents
(``description.json``, ``services.json`` ...) followed by the
application's files.  ``PackageArchive`` gives the packager a small
named-entry API over ``zipfile``:

* :meth:`PackageArchive.open` for an existing package (import) and
  :meth:`PackageArchive.create` for a new one (export);
* :meth:`peek_entry` / :meth:`read_entry` read an entry and leave it in
  place, :meth:`take_entry` reads it and marks it consumed so later
  phases (e.g. unpacking the file tree) no longer see it;
* :meth:`write_entry` / :meth:`write_file` add entries to a new package;
* :meth:`close` releases the zip handle and removes the backing file
  when the archive owns it.

``zipfile`` cannot delete members in place.  Deleted entries of a
readable archive are only hidden; deleted entries of a package being
written are dropped when :meth:`seal` rewrites the file.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import zipfile
from typing import IO, List, Optional, Set, Union

from rest_platform_api.app.core.exceptions import BadRequestError, InternalServerError


logger = logging.getLogger(__name__)


class PackageArchive:
    """A package file opened for reading or being written."""

    def __init__(self, path: str, zip_file: zipfile.ZipFile, writable: bool, owns_file: bool) -> None:
        self.path = path
        self.owns_file = owns_file
        self._zip: Optional[zipfile.ZipFile] = zip_file
        self._writable = writable
        self._written: List[str] = []
        self._deleted: Set[str] = set()

    @classmethod
    def open(cls, path: str, owns_file: bool = False) -> "PackageArchive":
        """Open an existing package for reading.

        Fails fast with ``BadRequestError`` when the file is not a zip
        archive and ``InternalServerError`` when it cannot be read.  If
        the archive owns ``path`` the file is removed on failure too.
        """
        if not os.path.isfile(path):
            raise InternalServerError(f"Error opening zip file. '{path}' does not exist.")
        if not zipfile.is_zipfile(path):
            if owns_file:
                _remove_quietly(path)
            raise BadRequestError("Error opening zip file. The package is not a valid archive.")
        try:
            zip_file = zipfile.ZipFile(path, "r")
        except (OSError, zipfile.BadZipFile) as exc:
            if owns_file:
                _remove_quietly(path)
            raise InternalServerError(f"Error opening zip file.\n{exc}") from exc
        return cls(path, zip_file, writable=False, owns_file=owns_file)

    @classmethod
    def create(cls, path: str, owns_file: bool = True) -> "PackageArchive":
        """Create a new, empty package at ``path`` for writing."""
        try:
            zip_file = zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED)
        except OSError as exc:
            raise InternalServerError(f"Can not create package file.\n{exc}") from exc
        logger.debug("Created package file %s", path)
        return cls(path, zip_file, writable=True, owns_file=owns_file)

    @property
    def closed(self) -> bool:
        return self._zip is None

    @property
    def writable(self) -> bool:
        return self._writable

    def _require_open(self) -> zipfile.ZipFile:
        if self._zip is None:
            raise InternalServerError("Package file is already closed.")
        return self._zip

    def names(self) -> List[str]:
        """Return the names of all entries not yet taken or deleted, in archive order."""
        zip_file = self._require_open()
        if self._writable:
            names = self._written
        else:
            names = zip_file.namelist()
        return [name for name in names if name not in self._deleted]

    def has_entry(self, name: str) -> bool:
        return name in self.names()

    def peek_entry(self, name: str) -> Optional[bytes]:
        """Return the bytes of ``name``, or ``None`` when the entry is absent."""
        zip_file = self._require_open()
        if self._writable:
            raise InternalServerError("Can not read from a package that is being written.")
        if name in self._deleted:
            return None
        try:
            return zip_file.read(name)
        except KeyError:
            return None
        except (OSError, zipfile.BadZipFile, RuntimeError) as exc:
            raise InternalServerError(f"Can not read '{name}' from package file.\n{exc}") from exc

    read_entry = peek_entry

    def take_entry(self, name: str) -> Optional[bytes]:
        """Read ``name`` and mark it consumed.  Absent entries return ``None``."""
        data = self.peek_entry(name)
        self.delete_entry(name)
        return data

    def open_entry(self, name: str) -> IO[bytes]:
        """Open ``name`` as a binary stream, for entries too large to read at once."""
        zip_file = self._require_open()
        if self._writable or name in self._deleted:
            raise InternalServerError(f"Can not read '{name}' from package file.")
        try:
            return zip_file.open(name, "r")
        except KeyError as exc:
            raise InternalServerError(f"Package file has no entry '{name}'.") from exc

    def write_entry(self, name: str, data: Union[bytes, str]) -> None:
        """Add an entry holding ``data``."""
        zip_file = self._begin_write(name)
        try:
            zip_file.writestr(name, data)
        except (OSError, ValueError) as exc:
            raise InternalServerError(f"Can not include '{name}' in package file.\n{exc}") from exc
        self._written.append(name)

    def write_file(self, name: str, source_path: Union[str, os.PathLike]) -> None:
        """Add the file at ``source_path`` as entry ``name``."""
        zip_file = self._begin_write(name)
        try:
            zip_file.write(source_path, arcname=name)
        except (OSError, ValueError) as exc:
            raise InternalServerError(f"Can not include '{name}' in package file.\n{exc}") from exc
        self._written.append(name)

    def _begin_write(self, name: str) -> zipfile.ZipFile:
        zip_file = self._require_open()
        if not self._writable:
            raise InternalServerError("Package file was opened read-only.")
        if name in self._written:
            raise InternalServerError(f"Package file already contains '{name}'.")
        return zip_file

    def delete_entry(self, name: str) -> None:
        """Hide ``name`` from every later read.  Deleting an absent entry is a no-op."""
        self._require_open()
        self._deleted.add(name)

    def seal(self) -> str:
        """Finish writing and reopen the package for reading.

        Entries deleted while writing are dropped from the file.
        Returns the path of the finished package.
        """
        zip_file = self._require_open()
        if not self._writable:
            return self.path
        try:
            zip_file.close()
            if self._deleted & set(self._written):
                self._rewrite_without_deleted()
            self._zip = zipfile.ZipFile(self.path, "r")
        except (OSError, zipfile.BadZipFile) as exc:
            self._zip = None
            raise InternalServerError(f"Can not finish package file.\n{exc}") from exc
        self._writable = False
        self._written = []
        self._deleted = set()
        return self.path

    def _rewrite_without_deleted(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(suffix=".tmp", dir=directory)
        os.close(fd)
        try:
            with zipfile.ZipFile(self.path, "r") as source, \
                    zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_DEFLATED) as target:
                for info in source.infolist():
                    if info.filename in self._deleted:
                        continue
                    with source.open(info) as src, target.open(info, "w") as dst:
                        shutil.copyfileobj(src, dst)
            os.replace(tmp_path, self.path)
        except BaseException:
            _remove_quietly(tmp_path)
            raise

    def close(self) -> None:
        """Release the zip handle; remove the backing file if the archive owns it.

        Safe to call more than once.
        """
        if self._zip is not None:
            try:
                self._zip.close()
            finally:
                self._zip = None
        if self.owns_file:
            _remove_quietly(self.path)
            self.owns_file = False

    def __enter__(self) -> "PackageArchive":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _remove_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
