"""Tests for the package archive wrapper."""

import os
import zipfile

import pytest

from rest_platform_api.app.core.exceptions import BadRequestError, InternalServerError
from rest_platform_api.app.services.archive import PackageArchive


class TestCreate:
    """Tests for writing new packages."""

    def test_write_and_seal(self, tmp_path):
        """Entries written before sealing can be read afterwards."""
        path = str(tmp_path / "app.dfpkg")
        archive = PackageArchive.create(path, owns_file=False)
        archive.write_entry("description.json", b'{"name": "app"}')
        archive.write_entry("notes.txt", "hello")
        archive.seal()

        assert archive.names() == ["description.json", "notes.txt"]
        assert archive.peek_entry("notes.txt") == b"hello"
        archive.close()
        assert os.path.exists(path)

    def test_write_file(self, tmp_path):
        """Files on disk are stored under the given entry name."""
        source = tmp_path / "index.html"
        source.write_text("<html></html>")
        archive = PackageArchive.create(str(tmp_path / "app.dfpkg"), owns_file=False)
        archive.write_file("app/index.html", source)
        archive.seal()

        assert archive.read_entry("app/index.html") == b"<html></html>"
        archive.close()

    def test_deleted_entries_dropped_on_seal(self, tmp_path):
        """An entry deleted while writing is not in the finished file."""
        path = str(tmp_path / "app.dfpkg")
        archive = PackageArchive.create(path, owns_file=False)
        archive.write_entry("keep.json", b"{}")
        archive.write_entry("drop.json", b"{}")
        archive.delete_entry("drop.json")
        archive.seal()
        archive.close()

        with zipfile.ZipFile(path) as zf:
            assert zf.namelist() == ["keep.json"]

    def test_duplicate_entry_rejected(self, tmp_path):
        archive = PackageArchive.create(str(tmp_path / "app.dfpkg"))
        archive.write_entry("a.json", b"{}")

        with pytest.raises(InternalServerError):
            archive.write_entry("a.json", b"{}")
        archive.close()

    def test_close_removes_owned_file(self, tmp_path):
        path = str(tmp_path / "app.dfpkg")
        archive = PackageArchive.create(path)
        archive.write_entry("a.json", b"{}")
        archive.close()

        assert not os.path.exists(path)
        # A second close is harmless.
        archive.close()


class TestOpen:
    """Tests for reading existing packages."""

    def test_take_entry_consumes(self, make_package):
        """A taken entry is no longer listed or readable."""
        archive = PackageArchive.open(make_package({"services.json": [], "app/index.html": "x"}))

        assert archive.take_entry("services.json") == b"[]"
        assert archive.names() == ["app/index.html"]
        assert archive.take_entry("services.json") is None
        assert archive.peek_entry("services.json") is None
        archive.close()

    def test_peek_leaves_entry(self, make_package):
        archive = PackageArchive.open(make_package({"data.json": {"service": []}}))

        assert archive.peek_entry("data.json") is not None
        assert archive.has_entry("data.json")
        archive.close()

    def test_absent_entry_is_none(self, make_package):
        archive = PackageArchive.open(make_package({"description.json": {}}))

        assert archive.peek_entry("schema.json") is None
        archive.close()

    def test_not_a_zip_file(self, tmp_path):
        """Garbage fails fast and an owned file is removed."""
        path = tmp_path / "broken.dfpkg"
        path.write_bytes(b"definitely not a zip")

        with pytest.raises(BadRequestError):
            PackageArchive.open(str(path), owns_file=True)
        assert not path.exists()

    def test_missing_file(self, tmp_path):
        with pytest.raises(InternalServerError):
            PackageArchive.open(str(tmp_path / "missing.dfpkg"))

    def test_read_only(self, make_package):
        archive = PackageArchive.open(make_package({"a.json": {}}))

        with pytest.raises(InternalServerError):
            archive.write_entry("b.json", b"{}")
        archive.close()

    def test_caller_file_kept_on_close(self, make_package):
        """Packages not owned by the archive survive ``close``."""
        path = make_package({"a.json": {}})
        with PackageArchive.open(path) as archive:
            archive.take_entry("a.json")

        assert os.path.exists(path)
        assert archive.closed
