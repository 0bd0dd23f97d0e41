"""Tests for file_handler.py: log parsing, encoding detection, atomic writes.

Covers:
- parse_log()/render_log() line ending and BOM handling
- read_file_with_encoding() for UTF-8, UTF-8 BOM and legacy encodings
- read_log() on missing files
- write_file_atomic()/write_log(): content, parent creation, crash safety
- snapshot_bytes()/restore_bytes()
"""

import os
from unittest.mock import patch

import pytest

from histsync.file_handler import (
    parse_log,
    read_file_with_encoding,
    read_log,
    render_log,
    restore_bytes,
    snapshot_bytes,
    write_file_atomic,
    write_log,
)

# ---------------------------------------------------------------------------
# Log format
# ---------------------------------------------------------------------------


class TestParseLog:
    """Tests for parse_log()."""

    def test_empty(self):
        assert parse_log("") == []

    def test_trailing_newline_not_an_entry(self):
        assert parse_log("a\nb\n") == ["a", "b"]

    def test_no_trailing_newline(self):
        assert parse_log("a\nb") == ["a", "b"]

    def test_crlf(self):
        assert parse_log("a\r\nb\r\n") == ["a", "b"]

    def test_lone_cr(self):
        assert parse_log("a\rb") == ["a", "b"]

    def test_bom_dropped(self):
        assert parse_log("\ufeffGet-ChildItem\r\n") == ["Get-ChildItem"]

    def test_blank_lines_kept(self):
        assert parse_log("a\n\nb\n") == ["a", "", "b"]


class TestRenderLog:
    """Tests for render_log()."""

    def test_empty(self):
        assert render_log([]) == ""

    def test_trailing_newline(self):
        assert render_log(["a", "b"]) == "a\nb\n"

    def test_parse_inverts_render(self):
        lines = ["git status", "", "echo 'x'"]
        assert parse_log(render_log(lines)) == lines


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


class TestReadFileWithEncoding:
    """Tests for read_file_with_encoding()."""

    def test_utf8(self, tmp_path):
        path = tmp_path / "h.txt"
        path.write_bytes("echo héllo\n".encode("utf-8"))
        content, encoding = read_file_with_encoding(path)
        assert content == "echo héllo\n"
        assert encoding == "utf-8"

    def test_utf8_bom_stripped(self, tmp_path):
        path = tmp_path / "h.txt"
        path.write_bytes(b"\xef\xbb\xbfls\n")
        content, encoding = read_file_with_encoding(path)
        assert content == "ls\n"
        assert encoding == "utf-8"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "h.txt"
        path.write_bytes(b"")
        assert read_file_with_encoding(path) == ("", "utf-8")

    def test_legacy_encoding_detected(self, tmp_path):
        path = tmp_path / "h.txt"
        text = "echo 'Größe ändern für Übersicht'\ncd /tmp/Ärger\n" * 5
        path.write_bytes(text.encode("cp1252"))
        content, encoding = read_file_with_encoding(path)
        assert encoding != "utf-8"
        assert "cd /tmp/" in content


class TestReadLog:
    """Tests for read_log()."""

    def test_missing_file_is_empty_log(self, tmp_path):
        assert read_log(tmp_path / "nope") == []

    def test_reads_lines(self, tmp_path):
        path = tmp_path / "h.txt"
        path.write_bytes(b"a\r\nb\r\n")
        assert read_log(path) == ["a", "b"]


# ---------------------------------------------------------------------------
# Atomic writes
# ---------------------------------------------------------------------------


class TestWriteFileAtomic:
    """Tests for write_file_atomic() and write_log()."""

    def test_writes_content(self, tmp_path):
        path = tmp_path / "out.txt"
        written = write_file_atomic(path, "héllo\n")
        assert path.read_text(encoding="utf-8") == "héllo\n"
        assert written == len("héllo\n".encode("utf-8"))

    def test_creates_parent_dirs(self, tmp_path):
        path = tmp_path / "a" / "b" / "out.txt"
        write_file_atomic(path, "x")
        assert path.read_text() == "x"

    def test_replaces_existing(self, tmp_path):
        path = tmp_path / "out.txt"
        path.write_text("old\n")
        write_log(path, ["new"])
        assert path.read_text() == "new\n"

    def test_no_temp_files_left_behind(self, tmp_path):
        path = tmp_path / "work" / "out.txt"
        write_log(path, ["a"])
        assert [p.name for p in path.parent.iterdir()] == ["out.txt"]

    def test_crash_before_rename_keeps_original(self, tmp_path):
        """A failure between temp write and rename leaves the old file intact."""
        path = tmp_path / "work" / "history.txt"
        path.parent.mkdir()
        path.write_bytes(b"a\nb\n")

        with patch(
            "histsync.file_handler.os.replace",
            side_effect=OSError("simulated crash"),
        ):
            with pytest.raises(OSError, match="simulated crash"):
                write_log(path, ["a", "b", "c"])

        assert path.read_bytes() == b"a\nb\n"
        assert [p.name for p in path.parent.iterdir()] == ["history.txt"]

    def test_crash_during_write_keeps_original(self, tmp_path):
        path = tmp_path / "history.txt"
        path.write_bytes(b"keep\n")

        with patch(
            "histsync.file_handler.os.fsync",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(OSError):
                write_log(path, ["lost"])

        assert path.read_bytes() == b"keep\n"

    def test_write_log_empty(self, tmp_path):
        path = tmp_path / "out.txt"
        write_log(path, [])
        assert path.read_bytes() == b""


class TestSnapshotRestore:
    """Tests for snapshot_bytes() and restore_bytes()."""

    def test_snapshot_missing(self, tmp_path):
        assert snapshot_bytes(tmp_path / "nope") is None

    def test_restore_content(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"before")
        snap = snapshot_bytes(path)
        path.write_bytes(b"after")
        restore_bytes(path, snap)
        assert path.read_bytes() == b"before"

    def test_restore_absent_removes_file(self, tmp_path):
        path = tmp_path / "f"
        snap = snapshot_bytes(path)
        path.write_bytes(b"created")
        restore_bytes(path, snap)
        assert not os.path.exists(path)

    def test_restore_absent_when_still_absent(self, tmp_path):
        restore_bytes(tmp_path / "f", None)
