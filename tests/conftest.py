from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import pytest

from miniagi.agent.events import AgentEvent


class FakeTransport:
    """Test double recording every create/edit call."""

    def __init__(self, max_length: int = 4000, activity_error: Exception | None = None):
        self.max_length = max_length
        self.activity_error = activity_error
        self.calls: list[tuple[str, str, tuple]] = []
        self.activity = 0
        self.create_errors: list[Exception] = []
        self.edit_errors: list[Exception] = []
        self._next_handle = 100

    def measure(self, text: str) -> int:
        return len(text)

    async def create(self, text: str, spans=()) -> int:
        if self.create_errors:
            raise self.create_errors.pop(0)
        self._next_handle += 1
        self.calls.append(("create", text, tuple(spans)))
        return self._next_handle

    async def edit(self, handle: int, text: str, spans=()) -> None:
        if self.edit_errors:
            raise self.edit_errors.pop(0)
        self.calls.append(("edit", text, tuple(spans)))

    async def signal_activity(self) -> None:
        self.activity += 1
        if self.activity_error is not None:
            raise self.activity_error

    @property
    def texts(self) -> list[str]:
        return [text for _, text, _ in self.calls]


class FakeAgent:
    """Agent source that replays a scripted list of events."""

    def __init__(
        self,
        script: list[AgentEvent] | None = None,
        error: Exception | None = None,
        block: bool = False,
        history: list[dict[str, Any]] | None = None,
        on_prompt: Callable[[str], Awaitable[None]] | None = None,
    ):
        self.script = list(script or [])
        self.error = error
        self.block = block
        self.history = list(history or [])
        self.on_prompt = on_prompt
        self.listeners: list[Callable] = []
        self.prompts: list[str] = []
        self.aborted = False
        self.reset_count = 0
        self.restored: list[dict[str, Any]] | None = None
        self._released: asyncio.Event | None = None

    def subscribe(self, callback):
        self.listeners.append(callback)
        return lambda: self.listeners.remove(callback)

    def emit(self, event: AgentEvent) -> None:
        for callback in list(self.listeners):
            callback(event)

    async def prompt(self, text: str) -> None:
        self.prompts.append(text)
        self._released = asyncio.Event()
        if self.on_prompt is not None:
            await self.on_prompt(text)
        for event in self.script:
            if self.aborted:
                break
            self.emit(event)
            await asyncio.sleep(0)
        if self.block and not self.aborted:
            await self._released.wait()
        if self.error is not None:
            raise self.error

    def abort(self) -> None:
        self.aborted = True
        if self._released is not None:
            self._released.set()

    def reset(self) -> None:
        self.reset_count += 1
        self.history = []

    @property
    def messages(self) -> list[dict[str, Any]]:
        return self.history

    def restore_messages(self, entries: list[dict[str, Any]]) -> None:
        self.restored = entries


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def fake_agent():
    return FakeAgent


@pytest.fixture
def fake_transport():
    return FakeTransport


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


async def collect(stream) -> list:
    return [event async for event in stream]


@pytest.fixture
def drain():
    return collect
