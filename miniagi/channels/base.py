"""Chat transport interface used by the streaming renderer."""

from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable

from miniagi.channels.formatting import FormatSpan


@runtime_checkable
class ChatTransport(Protocol):
    """
    Outbound side of one chat conversation.

    Implementations raise ``MessageNotModified`` when an edit would leave the
    message unchanged, ``TransientTransportError`` for rate limits and
    timeouts, and ``TransportError`` for everything else.
    """

    @property
    def max_length(self) -> int:
        """Longest text the transport accepts in a single message, in ``measure`` units."""
        ...

    def measure(self, text: str) -> int:
        """Length of ``text`` as the transport counts it."""
        ...

    async def create(self, text: str, spans: Sequence[FormatSpan] = ()) -> Any:
        """Send a new message and return a handle usable with ``edit``."""
        ...

    async def edit(self, handle: Any, text: str, spans: Sequence[FormatSpan] = ()) -> None:
        """Replace the content of a message previously returned by ``create``."""
        ...

    async def signal_activity(self) -> None:
        """Show a "typing" style indicator. Best effort."""
        ...
