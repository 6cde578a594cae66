"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from inkwell.ai.session import Session, SessionContext
from inkwell.ai.tools import ToolCategory


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def session() -> Session:
    context = SessionContext(enabled_categories=frozenset(ToolCategory))
    return Session("session-test", context=context)
