"""Reference document tools built on a :class:`DocumentStore`.

Each tool covers one category so a session's enabled categories can be seen
at work: listing, reading and searching are read-only, writing is a document
operation and deleting is destructive.
"""

from __future__ import annotations

import fnmatch
import logging
from typing import TYPE_CHECKING, Any, Mapping

from ...services.document_store import DocumentNotFoundError, DocumentStore, DocumentStoreError
from .types import ToolCategory, ToolSpec

if TYPE_CHECKING:  # pragma: no cover
    from ..session import Session

__all__ = [
    "ListFilesTool",
    "ReadFileTool",
    "SearchFilesTool",
    "WriteFileTool",
    "DeleteFileTool",
    "create_document_tools",
]

LOGGER = logging.getLogger(__name__)

_PREVIEW_CHARS = 200
_DEFAULT_SEARCH_LIMIT = 50


class _DocumentTool:
    """Shared plumbing: the backing store and the ``name`` shortcut."""

    spec: ToolSpec

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    @property
    def name(self) -> str:
        return self.spec.name


class ListFilesTool(_DocumentTool):
    spec = ToolSpec(
        name="list_files",
        description="List files and folders in a directory of the workspace",
        parameters={
            "properties": {
                "path": {"type": "string", "description": "Directory to list (empty string for the root)"},
                "recursive": {"type": "boolean", "description": "Whether to list files recursively"},
            },
            "required": [],
        },
        category=ToolCategory.READ_ONLY,
        display_name="List files",
    )

    async def execute(self, arguments: Mapping[str, Any], session: Session) -> dict[str, Any]:
        folder = str(arguments.get("path") or "")
        if arguments.get("recursive"):
            entries = [entry for entry in _walk(self._store, folder) if not entry.is_folder]
        else:
            entries = self._store.list(folder)
        files = [entry.to_dict() for entry in entries]
        return {"path": folder, "files": files, "count": len(files)}


class ReadFileTool(_DocumentTool):
    spec = ToolSpec(
        name="read_file",
        description="Read the contents of a document in the workspace",
        parameters={
            "properties": {"path": {"type": "string", "description": "Path to the document to read"}},
            "required": ["path"],
        },
        category=ToolCategory.READ_ONLY,
        display_name="Read file",
    )

    async def execute(self, arguments: Mapping[str, Any], session: Session) -> dict[str, Any]:
        path = str(arguments["path"])
        content = self._store.read(path)
        return {"path": path, "content": content, "size": len(content.encode("utf-8"))}


class SearchFilesTool(_DocumentTool):
    spec = ToolSpec(
        name="search_files",
        description=(
            "Search for documents by name. Supports wildcards (* any characters, ? one character); "
            "plain text matches anywhere in the path."
        ),
        parameters={
            "properties": {
                "pattern": {"type": "string", "description": "Search pattern"},
                "limit": {"type": "integer", "description": "Maximum number of results to return"},
            },
            "required": ["pattern"],
        },
        category=ToolCategory.READ_ONLY,
        display_name="Search files",
    )

    async def execute(self, arguments: Mapping[str, Any], session: Session) -> dict[str, Any]:
        pattern = str(arguments["pattern"])
        limit = max(1, int(arguments.get("limit") or _DEFAULT_SEARCH_LIMIT))
        needle = pattern.lower()
        wildcard = "*" in pattern or "?" in pattern
        matches = []
        for entry in _walk(self._store, ""):
            if entry.is_folder:
                continue
            path = entry.path.lower()
            leaf = path.rsplit("/", 1)[-1]
            if wildcard:
                hit = fnmatch.fnmatchcase(leaf, needle) or fnmatch.fnmatchcase(path, needle)
            else:
                hit = needle in path
            if hit:
                matches.append(entry.to_dict())
        return {
            "pattern": pattern,
            "matches": matches[:limit],
            "count": min(len(matches), limit),
            "truncated": len(matches) > limit,
        }


class WriteFileTool(_DocumentTool):
    spec = ToolSpec(
        name="write_file",
        description="Write content to a document (creates it or overwrites an existing one)",
        parameters={
            "properties": {
                "path": {"type": "string", "description": "Path of the document to write"},
                "content": {"type": "string", "description": "Full content to write"},
            },
            "required": ["path", "content"],
        },
        category=ToolCategory.DOCUMENT_OPERATIONS,
        display_name="Write file",
    )

    def confirmation_message(self, arguments: Mapping[str, Any]) -> str:
        content = str(arguments.get("content", ""))
        preview = content[:_PREVIEW_CHARS] + ("..." if len(content) > _PREVIEW_CHARS else "")
        return f"Write content to file: {arguments.get('path')}\n\nContent preview:\n{preview}"

    async def execute(self, arguments: Mapping[str, Any], session: Session) -> dict[str, Any]:
        path = str(arguments["path"])
        content = str(arguments["content"])
        existed = self._store.exists(path)
        self._store.write(path, content)
        LOGGER.info("write_file %s (%d chars)", path, len(content))
        return {"path": path, "action": "modified" if existed else "created", "size": len(content.encode("utf-8"))}


class DeleteFileTool(_DocumentTool):
    spec = ToolSpec(
        name="delete_file",
        description="Delete a document from the workspace",
        parameters={
            "properties": {"path": {"type": "string", "description": "Path of the document to delete"}},
            "required": ["path"],
        },
        category=ToolCategory.DESTRUCTIVE,
        display_name="Delete file",
    )

    def confirmation_message(self, arguments: Mapping[str, Any]) -> str:
        return f"Delete file: {arguments.get('path')}\n\nThis cannot be undone."

    async def execute(self, arguments: Mapping[str, Any], session: Session) -> dict[str, Any]:
        path = str(arguments["path"])
        self._store.delete(path)
        LOGGER.info("delete_file %s", path)
        return {"path": path, "action": "deleted"}


def _walk(store: DocumentStore, folder: str):
    try:
        entries = store.list(folder)
    except DocumentNotFoundError:
        if folder:
            raise
        return
    for entry in entries:
        yield entry
        if entry.is_folder:
            try:
                yield from _walk(store, entry.path)
            except DocumentStoreError as exc:
                LOGGER.debug("Skipping folder %s: %s", entry.path, exc)


def create_document_tools(store: DocumentStore) -> list[_DocumentTool]:
    """Instantiate every reference document tool against ``store``."""
    return [
        ListFilesTool(store),
        ReadFileTool(store),
        SearchFilesTool(store),
        WriteFileTool(store),
        DeleteFileTool(store),
    ]
