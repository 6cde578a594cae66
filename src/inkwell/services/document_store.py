"""Document storage backends used by the assistant's tools.

The assistant never touches the filesystem directly: every read or write goes
through a :class:`DocumentStore`. Paths are workspace-relative POSIX strings
(``notes/today.md``); the store decides how they map onto storage.
"""

from __future__ import annotations

import codecs
import locale
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

__all__ = [
    "DocumentEntry",
    "DocumentStore",
    "DocumentStoreError",
    "DocumentNotFoundError",
    "FileSystemDocumentStore",
    "InMemoryDocumentStore",
    "normalize_document_path",
]

LOGGER = logging.getLogger(__name__)

_BOM_MAP: dict[bytes, str] = {
    codecs.BOM_UTF8: "utf-8-sig",
    codecs.BOM_UTF16_LE: "utf-16-le",
    codecs.BOM_UTF16_BE: "utf-16-be",
}


class DocumentStoreError(Exception):
    """Raised when a document operation cannot be completed."""


class DocumentNotFoundError(DocumentStoreError):
    """Raised when a document or folder does not exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Document '{path}' not found")


@dataclass(slots=True, frozen=True)
class DocumentEntry:
    """A single item returned by :meth:`DocumentStore.list`."""

    path: str
    is_folder: bool = False
    size: int = 0

    def to_dict(self) -> dict[str, object]:
        return {"path": self.path, "type": "folder" if self.is_folder else "file", "size": self.size}


@runtime_checkable
class DocumentStore(Protocol):
    """Minimal storage interface the document tools depend on."""

    def read(self, path: str) -> str:
        ...

    def write(self, path: str, content: str) -> None:
        ...

    def list(self, path: str = "") -> list[DocumentEntry]:
        ...

    def exists(self, path: str) -> bool:
        ...

    def delete(self, path: str) -> None:
        ...


def normalize_document_path(path: str) -> str:
    """Return a clean workspace-relative path, rejecting traversal outside the root."""

    raw = (path or "").replace("\\", "/").strip()
    parts: list[str] = []
    for part in PurePosixPath(raw).parts:
        if part in ("", ".", "/"):
            continue
        if part == "..":
            if not parts:
                raise DocumentStoreError(f"Path '{path}' escapes the workspace")
            parts.pop()
            continue
        parts.append(part)
    return "/".join(parts)


class FileSystemDocumentStore:
    """Document store backed by a directory on disk."""

    def __init__(self, root: Path | str, *, encoding: str = "utf-8") -> None:
        self._root = Path(root).expanduser().resolve()
        self._encoding = encoding

    @property
    def root(self) -> Path:
        return self._root

    def read(self, path: str) -> str:
        target = self._resolve(path)
        if not target.is_file():
            raise DocumentNotFoundError(path)
        raw = target.read_bytes()
        text = raw.decode(_detect_encoding(raw))
        if text.startswith("\ufeff"):
            text = text[1:]
        return text.replace("\r\n", "\n").replace("\r", "\n")

    def write(self, path: str, content: str) -> None:
        target = self._resolve(path)
        if target == self._root:
            raise DocumentStoreError("Cannot write to the workspace root")
        target.parent.mkdir(parents=True, exist_ok=True)
        descriptor, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(descriptor, "w", encoding=self._encoding, newline="") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, target)
        finally:
            if os.path.exists(tmp_name):  # pragma: no cover - cleanup path
                os.unlink(tmp_name)
        LOGGER.debug("Wrote %d chars to %s", len(content), target)

    def list(self, path: str = "") -> list[DocumentEntry]:
        target = self._resolve(path)
        if not target.is_dir():
            raise DocumentNotFoundError(path or "/")
        entries: list[DocumentEntry] = []
        for child in sorted(target.iterdir(), key=lambda item: item.name.lower()):
            if child.name.startswith("."):
                continue
            relative = child.relative_to(self._root).as_posix()
            if child.is_dir():
                entries.append(DocumentEntry(path=relative, is_folder=True))
            else:
                entries.append(DocumentEntry(path=relative, size=child.stat().st_size))
        return entries

    def exists(self, path: str) -> bool:
        try:
            return self._resolve(path).exists()
        except DocumentStoreError:
            return False

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        if not target.is_file():
            raise DocumentNotFoundError(path)
        target.unlink()
        LOGGER.debug("Deleted %s", target)

    def _resolve(self, path: str) -> Path:
        relative = normalize_document_path(path)
        return self._root / relative if relative else self._root


class InMemoryDocumentStore:
    """Dictionary-backed store, handy for tests and scratch sessions."""

    def __init__(self, documents: dict[str, str] | None = None) -> None:
        self._documents: dict[str, str] = {}
        for path, content in (documents or {}).items():
            self._documents[normalize_document_path(path)] = content

    def read(self, path: str) -> str:
        key = normalize_document_path(path)
        if key not in self._documents:
            raise DocumentNotFoundError(path)
        return self._documents[key]

    def write(self, path: str, content: str) -> None:
        key = normalize_document_path(path)
        if not key:
            raise DocumentStoreError("Cannot write to the workspace root")
        self._documents[key] = content

    def list(self, path: str = "") -> list[DocumentEntry]:
        prefix = normalize_document_path(path)
        if prefix and prefix in self._documents:
            raise DocumentStoreError(f"'{path}' is a document, not a folder")
        base = f"{prefix}/" if prefix else ""
        files: dict[str, DocumentEntry] = {}
        folders: set[str] = set()
        for key, content in self._documents.items():
            if not key.startswith(base):
                continue
            remainder = key[len(base):]
            head, sep, _ = remainder.partition("/")
            if sep:
                folders.add(base + head)
            else:
                files[key] = DocumentEntry(path=key, size=len(content.encode("utf-8")))
        if prefix and not files and not folders:
            raise DocumentNotFoundError(path)
        entries = [DocumentEntry(path=folder, is_folder=True) for folder in folders]
        entries.extend(files.values())
        return sorted(entries, key=lambda entry: entry.path.lower())

    def exists(self, path: str) -> bool:
        key = normalize_document_path(path)
        if not key:
            return True
        if key in self._documents:
            return True
        return any(existing.startswith(f"{key}/") for existing in self._documents)

    def delete(self, path: str) -> None:
        key = normalize_document_path(path)
        if key not in self._documents:
            raise DocumentNotFoundError(path)
        del self._documents[key]


def _detect_encoding(raw: bytes) -> str:
    for bom, encoding in _BOM_MAP.items():
        if raw.startswith(bom):
            return encoding
    preferred = locale.getpreferredencoding(False) or "utf-8"
    for candidate in ("utf-8", preferred, "latin-1"):
        try:
            raw.decode(candidate)
            return candidate
        except UnicodeDecodeError:
            continue
    return "utf-8"
