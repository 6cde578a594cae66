"""Tests for services/document_store.py."""

from __future__ import annotations

from pathlib import Path

import pytest

from inkwell.services.document_store import (
    DocumentNotFoundError,
    DocumentStoreError,
    FileSystemDocumentStore,
    InMemoryDocumentStore,
    normalize_document_path,
)


class TestNormalizeDocumentPath:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("notes/a.md", "notes/a.md"),
            ("./notes//a.md", "notes/a.md"),
            ("/notes/a.md", "notes/a.md"),
            ("notes\\drafts\\a.md", "notes/drafts/a.md"),
            ("notes/drafts/../a.md", "notes/a.md"),
            ("", ""),
        ],
    )
    def test_normalizes(self, raw: str, expected: str) -> None:
        assert normalize_document_path(raw) == expected

    def test_rejects_escape(self) -> None:
        with pytest.raises(DocumentStoreError):
            normalize_document_path("../secrets.txt")


class TestFileSystemDocumentStore:
    def test_write_then_read(self, tmp_path: Path) -> None:
        store = FileSystemDocumentStore(tmp_path)
        store.write("notes/today.md", "Hello\nWorld")

        assert (tmp_path / "notes" / "today.md").read_text(encoding="utf-8") == "Hello\nWorld"
        assert store.read("notes/today.md") == "Hello\nWorld"
        assert store.exists("notes")
        assert store.exists("notes/today.md")

    def test_read_normalizes_newlines_and_bom(self, tmp_path: Path) -> None:
        (tmp_path / "win.md").write_bytes("\ufeffline one\r\nline two".encode("utf-8"))
        assert FileSystemDocumentStore(tmp_path).read("win.md") == "line one\nline two"

    def test_list_skips_hidden_entries(self, tmp_path: Path) -> None:
        (tmp_path / "b.md").write_text("b", encoding="utf-8")
        (tmp_path / "A.md").write_text("a", encoding="utf-8")
        (tmp_path / ".hidden").write_text("x", encoding="utf-8")
        (tmp_path / "folder").mkdir()

        entries = FileSystemDocumentStore(tmp_path).list()

        assert [(entry.path, entry.is_folder) for entry in entries] == [
            ("A.md", False),
            ("b.md", False),
            ("folder", True),
        ]
        assert entries[0].size == 1

    def test_missing_documents(self, tmp_path: Path) -> None:
        store = FileSystemDocumentStore(tmp_path)
        with pytest.raises(DocumentNotFoundError):
            store.read("missing.md")
        with pytest.raises(DocumentNotFoundError):
            store.delete("missing.md")
        with pytest.raises(DocumentNotFoundError):
            store.list("missing")

    def test_delete(self, tmp_path: Path) -> None:
        store = FileSystemDocumentStore(tmp_path)
        store.write("a.md", "x")
        store.delete("a.md")
        assert not store.exists("a.md")

    def test_escape_is_rejected(self, tmp_path: Path) -> None:
        store = FileSystemDocumentStore(tmp_path / "workspace")
        with pytest.raises(DocumentStoreError):
            store.write("../outside.md", "nope")
        assert not store.exists("../outside.md")


class TestInMemoryDocumentStore:
    def test_listing_synthesises_folders(self) -> None:
        store = InMemoryDocumentStore({"a/b/c.md": "c", "a/d.md": "dd"})

        assert [entry.path for entry in store.list()] == ["a"]
        entries = store.list("a")
        assert [(entry.path, entry.is_folder) for entry in entries] == [("a/b", True), ("a/d.md", False)]
        assert entries[1].size == 2

    def test_list_on_document_is_an_error(self) -> None:
        store = InMemoryDocumentStore({"a.md": "x"})
        with pytest.raises(DocumentStoreError):
            store.list("a.md")

    def test_exists(self) -> None:
        store = InMemoryDocumentStore({"a/b.md": "x"})
        assert store.exists("")
        assert store.exists("a")
        assert store.exists("a/b.md")
        assert not store.exists("a/c.md")

    def test_write_read_delete(self) -> None:
        store = InMemoryDocumentStore()
        store.write("x.md", "content")
        assert store.read("x.md") == "content"
        store.delete("x.md")
        with pytest.raises(DocumentNotFoundError):
            store.read("x.md")

    def test_cannot_write_root(self) -> None:
        with pytest.raises(DocumentStoreError):
            InMemoryDocumentStore().write("", "x")
