"""Shared fixtures for the chat relay test suite."""

from __future__ import annotations

import os
from typing import AsyncIterator, List, Optional, Sequence

import pytest

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from chat.core.memory import ConversationStore
from chat.errors import BackendUnavailableError
from chat.models import PartialReply, Turn


class FakeCompletionClient:
    """Replays canned fragments and records every transcript it was sent."""

    def __init__(self, fragments: Sequence[str] = ("Hel", "lo", ""), error: Optional[Exception] = None):
        self.fragments = list(fragments)
        self.error = error
        self.calls: List[tuple] = []
        self.closed = False

    async def stream(self, transcript: Sequence[Turn]) -> AsyncIterator[PartialReply]:
        self.calls.append(tuple(transcript))
        if self.error is not None:
            raise self.error
        last = len(self.fragments) - 1
        for idx, fragment in enumerate(self.fragments):
            yield PartialReply(content=fragment, done=idx == last)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def store() -> ConversationStore:
    return ConversationStore()


@pytest.fixture
def fake_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def failing_client() -> FakeCompletionClient:
    return FakeCompletionClient(error=BackendUnavailableError("connection refused"))
