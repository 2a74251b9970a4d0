"""Tests for file_handler module: path validation and encoding-aware read/write."""

import codecs
from pathlib import Path

import pytest

from trello_sync.file_handler import (
    read_file_async,
    read_file_with_encoding,
    validate_file_path,
    write_file,
    write_file_async,
)

# =============================================================================
# validate_file_path
# =============================================================================


class TestValidateFilePath:
    def test_existing_file(self, tmp_path):
        f = tmp_path / "board.org"
        f.write_text("* Board\n")
        assert validate_file_path(str(f)) == f.resolve()

    def test_relative_path_is_resolved(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "board.org").write_text("* Board\n")
        result = validate_file_path("board.org")
        assert isinstance(result, Path)
        assert result.is_absolute()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError, match="File not found"):
            validate_file_path(str(tmp_path / "missing.org"))

    def test_directory(self, tmp_path):
        with pytest.raises(ValueError, match="not a file"):
            validate_file_path(str(tmp_path))


# =============================================================================
# read_file_with_encoding
# =============================================================================


class TestReadFileWithEncoding:
    def test_ascii_reported_as_utf8(self, tmp_path):
        f = tmp_path / "board.org"
        f.write_bytes(b"* Board\n** Todo\n")
        content, encoding = read_file_with_encoding(f)
        assert content == "* Board\n** Todo\n"
        assert encoding == "utf-8"

    def test_utf8(self, tmp_path):
        f = tmp_path / "board.org"
        f.write_text("* Tâches à faire\n** Späte Karten\n", encoding="utf-8")
        content, encoding = read_file_with_encoding(f)
        assert "Tâches" in content
        assert codecs.lookup(encoding).name == "utf-8"

    def test_empty_file(self, tmp_path):
        f = tmp_path / "empty.org"
        f.write_bytes(b"")
        assert read_file_with_encoding(f) == ("", "utf-8")


# =============================================================================
# write_file
# =============================================================================


class TestWriteFile:
    def test_write_creates_parents(self, tmp_path):
        f = tmp_path / "a" / "b" / "board.org"
        count = write_file(f, "* Board\n")
        assert count == len(b"* Board\n")
        assert f.read_text() == "* Board\n"

    def test_overwrite_leaves_no_temp_files(self, tmp_path):
        f = tmp_path / "board.org"
        f.write_text("old")
        write_file(f, "new")
        assert f.read_text() == "new"
        assert [p.name for p in tmp_path.iterdir()] == ["board.org"]

    def test_encoding(self, tmp_path):
        f = tmp_path / "board.org"
        write_file(f, "* Café\n", encoding="latin-1")
        assert f.read_bytes() == "* Café\n".encode("latin-1")

    def test_unencodable_content_keeps_old_file(self, tmp_path):
        f = tmp_path / "board.org"
        f.write_text("old")
        with pytest.raises(UnicodeEncodeError):
            write_file(f, "* 日本\n", encoding="ascii")
        assert f.read_text() == "old"


# =============================================================================
# Async wrappers
# =============================================================================


class TestAsync:
    async def test_read(self, tmp_path):
        f = tmp_path / "board.org"
        f.write_text("* Board\n", encoding="utf-8")
        content, encoding, resolved = await read_file_async(str(f))
        assert content == "* Board\n"
        assert encoding == "utf-8"
        assert resolved == f.resolve()

    async def test_read_missing(self, tmp_path):
        with pytest.raises(ValueError, match="File not found"):
            await read_file_async(str(tmp_path / "missing.org"))

    async def test_write(self, tmp_path):
        f = tmp_path / "board.org"
        assert await write_file_async(f, "* Board\n") == 8
        assert f.read_text() == "* Board\n"
