"""Tests for ai/tools/documents.py."""

from __future__ import annotations

import pytest

from inkwell.ai.session import Session, SessionContext
from inkwell.ai.tools import ToolCall, ToolCategory, ToolErrorCode, ToolExecutionEngine, ToolRegistry
from inkwell.ai.tools.documents import (
    DeleteFileTool,
    ListFilesTool,
    ReadFileTool,
    SearchFilesTool,
    WriteFileTool,
    create_document_tools,
)
from inkwell.services.document_store import DocumentNotFoundError, InMemoryDocumentStore


def make_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore(
        {
            "README.md": "Top level",
            "notes/ideas.md": "Idea list",
            "notes/drafts/chapter-1.md": "It was a dark night",
            "notes/drafts/chapter-2.txt": "Morning came",
        }
    )


class TestCreateDocumentTools:
    def test_one_tool_per_operation(self) -> None:
        tools = create_document_tools(make_store())
        assert [tool.name for tool in tools] == ["list_files", "read_file", "search_files", "write_file", "delete_file"]

    def test_categories(self) -> None:
        categories = {tool.name: tool.spec.category for tool in create_document_tools(make_store())}
        assert categories["read_file"] is ToolCategory.READ_ONLY
        assert categories["write_file"] is ToolCategory.DOCUMENT_OPERATIONS
        assert categories["delete_file"] is ToolCategory.DESTRUCTIVE


class TestListFiles:
    @pytest.mark.asyncio
    async def test_root_listing(self) -> None:
        result = await ListFilesTool(make_store()).execute({}, Session())

        assert result["path"] == ""
        assert [entry["path"] for entry in result["files"]] == ["notes", "README.md"]
        assert result["files"][0]["type"] == "folder"
        assert result["count"] == 2

    @pytest.mark.asyncio
    async def test_recursive_lists_files_only(self) -> None:
        result = await ListFilesTool(make_store()).execute({"path": "notes", "recursive": True}, Session())

        assert sorted(entry["path"] for entry in result["files"]) == [
            "notes/drafts/chapter-1.md",
            "notes/drafts/chapter-2.txt",
            "notes/ideas.md",
        ]

    @pytest.mark.asyncio
    async def test_missing_folder_raises(self) -> None:
        with pytest.raises(DocumentNotFoundError):
            await ListFilesTool(make_store()).execute({"path": "nowhere"}, Session())


class TestReadFile:
    @pytest.mark.asyncio
    async def test_reads_content(self) -> None:
        result = await ReadFileTool(make_store()).execute({"path": "notes/ideas.md"}, Session())
        assert result == {"path": "notes/ideas.md", "content": "Idea list", "size": 9}

    @pytest.mark.asyncio
    async def test_missing_file_fails_through_engine(self) -> None:
        registry = ToolRegistry()
        registry.register(ReadFileTool(make_store()))
        engine = ToolExecutionEngine(registry)

        result = await engine.execute_tool(ToolCall("read_file", {"path": "gone.md"}), Session())

        assert result.error_code is ToolErrorCode.EXECUTION_ERROR
        assert result.error == "Document 'gone.md' not found"


class TestSearchFiles:
    @pytest.mark.asyncio
    async def test_substring(self) -> None:
        result = await SearchFilesTool(make_store()).execute({"pattern": "CHAPTER"}, Session())
        assert result["count"] == 2
        assert result["truncated"] is False

    @pytest.mark.asyncio
    async def test_wildcard_matches_leaf_names(self) -> None:
        result = await SearchFilesTool(make_store()).execute({"pattern": "*.md"}, Session())
        assert sorted(entry["path"] for entry in result["matches"]) == [
            "README.md",
            "notes/drafts/chapter-1.md",
            "notes/ideas.md",
        ]

    @pytest.mark.asyncio
    async def test_limit_truncates(self) -> None:
        result = await SearchFilesTool(make_store()).execute({"pattern": "*", "limit": 1}, Session())
        assert result["count"] == 1
        assert len(result["matches"]) == 1
        assert result["truncated"] is True

    @pytest.mark.asyncio
    async def test_negative_limit_returns_one_match(self) -> None:
        result = await SearchFilesTool(make_store()).execute({"pattern": "*.md", "limit": -2}, Session())
        assert result["count"] == 1
        assert len(result["matches"]) == 1
        assert result["truncated"] is True


class TestWriteAndDelete:
    @pytest.mark.asyncio
    async def test_write_reports_created_then_modified(self) -> None:
        store = make_store()
        tool = WriteFileTool(store)

        created = await tool.execute({"path": "new.md", "content": "Fresh"}, Session())
        modified = await tool.execute({"path": "new.md", "content": "Fresher"}, Session())

        assert created["action"] == "created"
        assert modified["action"] == "modified"
        assert store.read("new.md") == "Fresher"

    def test_write_confirmation_previews_content(self) -> None:
        message = WriteFileTool(make_store()).confirmation_message({"path": "a.md", "content": "y" * 250})
        assert message.startswith("Write content to file: a.md")
        assert message.endswith("y" * 200 + "...")

    @pytest.mark.asyncio
    async def test_delete(self) -> None:
        store = make_store()
        result = await DeleteFileTool(store).execute({"path": "README.md"}, Session())
        assert result == {"path": "README.md", "action": "deleted"}
        assert not store.exists("README.md")

    @pytest.mark.asyncio
    async def test_delete_needs_destructive_category(self) -> None:
        store = make_store()
        registry = ToolRegistry()
        for tool in create_document_tools(store):
            registry.register(tool)
        engine = ToolExecutionEngine(registry, confirmation_handler=lambda request: True)

        blocked = await engine.execute_tool(ToolCall("delete_file", {"path": "README.md"}), Session())
        allowed_session = Session(context=SessionContext(enabled_categories=frozenset(ToolCategory)))
        allowed = await engine.execute_tool(ToolCall("delete_file", {"path": "README.md"}), allowed_session)

        assert blocked.error_code is ToolErrorCode.TOOL_DISABLED
        assert allowed.success
        assert not store.exists("README.md")
