"""Agent event types and the agent source interface."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, Union


@dataclass(frozen=True)
class TextDelta:
    """Incremental assistant text."""

    delta: str


@dataclass(frozen=True)
class ToolStart:
    """The agent started executing a tool."""

    tool_name: str


@dataclass(frozen=True)
class MessageEnd:
    """An assistant message finished streaming."""

    final_message: dict[str, Any] | None = None


@dataclass(frozen=True)
class TurnEnd:
    """Terminal event: the agent finished the turn, possibly with an error."""

    messages: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None


AgentEvent = Union[TextDelta, ToolStart, MessageEnd, TurnEnd]

EventCallback = Callable[[AgentEvent], None]


class AgentSource(Protocol):
    """The agent runtime a turn is executed against."""

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register ``callback`` for events; returns an unsubscribe function."""
        ...

    def prompt(self, text: str) -> Awaitable[None]:
        """Run one turn for ``text``; events are delivered to subscribers."""
        ...

    def abort(self) -> None: ...

    def reset(self) -> None: ...

    @property
    def messages(self) -> list[dict[str, Any]]:
        """The conversation history held by the agent."""
        ...

    def restore_messages(self, entries: list[dict[str, Any]]) -> None:
        """Replace the history with ``{"role", "content"}`` entries."""
        ...


def message_text(message: dict[str, Any] | None) -> str:
    """Concatenate the text blocks of an agent message."""
    if not message:
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts = []
    for block in content:
        if isinstance(block, dict) and block.get("type") == "text":
            text = block.get("text")
            if isinstance(text, str):
                parts.append(text)
    return "".join(parts)


def last_assistant_text(messages: list[dict[str, Any]] | None) -> str:
    """Text of the most recent assistant message, or "" if there is none."""
    for message in reversed(messages or []):
        if isinstance(message, dict) and message.get("role") == "assistant":
            return message_text(message)
    return ""
