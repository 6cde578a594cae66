"""Attached-document context for the system instruction.

Reads the documents attached to a session and, up to the session's
``context_depth``, the documents they link to through ``[[wikilinks]]`` or
relative Markdown links.
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Iterator

from ...services.document_store import DocumentStore, DocumentStoreError, normalize_document_path
from ..session import SessionContext

__all__ = ["ContextDocument", "DocumentContextBuilder", "extract_links"]

LOGGER = logging.getLogger(__name__)

_WIKILINK = re.compile(r"\[\[([^\]\|#]+)(?:#[^\]\|]*)?(?:\|[^\]]*)?\]\]")
_MARKDOWN_LINK = re.compile(r"(?<!!)\[[^\]]*\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)")
_URL_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")
_HEADER = "This is the content of the attached documents and the documents they link to:\n"


@dataclass(slots=True)
class ContextDocument:
    path: str
    content: str
    depth: int
    links: list[str] = field(default_factory=list)


def extract_links(content: str) -> list[str]:
    """Return raw link targets in document order, without duplicates."""
    found: list[str] = []
    for match in _WIKILINK.finditer(content):
        target = match.group(1).strip()
        if target and target not in found:
            found.append(target)
    for match in _MARKDOWN_LINK.finditer(content):
        target = match.group(1).split("#", 1)[0].strip()
        if target and not _URL_SCHEME.match(target) and target not in found:
            found.append(target)
    return found


class DocumentContextBuilder:
    """Builds the document context block placed into the system instruction."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        max_chars_per_document: int = 50_000,
        max_total_chars: int = 500_000,
    ) -> None:
        self._store = store
        self._max_chars_per_document = max_chars_per_document
        self._max_total_chars = max_total_chars

    def collect(self, context: SessionContext) -> list[ContextDocument]:
        """Visit attached documents and their links, each document at most once."""
        visited: set[str] = set()
        documents: list[ContextDocument] = []
        depth_limit = max(0, context.context_depth)
        for attached in context.attached_documents:
            documents.extend(self._visit(attached, 0, depth_limit, visited, base=""))
        return documents

    def build(self, context: SessionContext) -> str:
        documents = self.collect(context)
        if not documents:
            return ""
        parts = [_HEADER]
        total = len(_HEADER)
        for document in documents:
            if total >= self._max_total_chars:
                parts.append("[Additional linked documents truncated...]\n")
                break
            content = document.content
            if len(content) > self._max_chars_per_document:
                content = content[: self._max_chars_per_document] + "\n[Remaining content truncated...]"
            label = "Attached Document" if document.depth == 0 else "Linked Document"
            block = f"\n===== {label}: {document.path} =====\n{content}\n"
            parts.append(block)
            total += len(block)
        return "".join(parts)

    def _visit(self, reference: str, depth: int, limit: int, visited: set[str], *, base: str) -> Iterator[ContextDocument]:
        path = self._resolve(reference, base)
        if path is None:
            LOGGER.debug("Context link %r from %r did not resolve", reference, base or "<attached>")
            return
        if path in visited:
            return
        visited.add(path)
        try:
            content = self._store.read(path)
        except (DocumentStoreError, OSError) as exc:
            LOGGER.warning("Skipping context document %s: %s", path, exc)
            return
        links = extract_links(content) if depth < limit else []
        yield ContextDocument(path=path, content=content, depth=depth, links=links)
        for link in links:
            yield from self._visit(link, depth + 1, limit, visited, base=path)

    def _resolve(self, reference: str, base: str) -> str | None:
        folder = posixpath.dirname(base)
        candidates: list[str] = []
        for raw in (posixpath.join(folder, reference) if folder else reference, reference):
            try:
                normalized = normalize_document_path(raw)
            except DocumentStoreError:
                continue
            if not normalized:
                continue
            candidates.append(normalized)
            if not posixpath.splitext(normalized)[1]:
                candidates.append(f"{normalized}.md")
        for candidate in candidates:
            if self._is_document(candidate):
                return candidate
        # Wikilinks often name a note without its folder.
        name = posixpath.basename(reference)
        if not name:
            return None
        wanted = {name, f"{name}.md"} if not posixpath.splitext(name)[1] else {name}
        for entry in self._iter_documents(""):
            if posixpath.basename(entry) in wanted:
                return entry
        return None

    def _is_document(self, path: str) -> bool:
        if not self._store.exists(path):
            return False
        try:
            self._store.list(path)
        except DocumentStoreError:
            return True
        except OSError:
            return False
        return False

    def _iter_documents(self, folder: str) -> Iterator[str]:
        try:
            entries = self._store.list(folder)
        except (DocumentStoreError, OSError) as exc:
            LOGGER.debug("Cannot list %r while resolving context links: %s", folder or "<root>", exc)
            return
        for entry in entries:
            if entry.is_folder:
                yield from self._iter_documents(entry.path)
            else:
                yield entry.path
