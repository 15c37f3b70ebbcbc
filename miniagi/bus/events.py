"""Event types for the message bus."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class InboundMessage:
    """Message received from a chat channel."""

    channel: str  # telegram, cli, ...
    sender_id: str  # User identifier
    chat_id: str  # Chat/channel identifier
    content: str  # Message text
    username: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def session_key(self) -> str:
        """Unique key for session identification."""
        return f"{self.channel}:{self.chat_id}"

    @property
    def command(self) -> str | None:
        """The slash command this message carries, if any (``/reset@bot`` -> ``/reset``)."""
        text = self.content.strip()
        if not text.startswith("/"):
            return None
        return text.split()[0].split("@", 1)[0].lower()
