"""Incremental rendering of an agent turn onto a single chat message."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, Callable, assert_never

from loguru import logger

from miniagi.agent.events import (
    AgentEvent,
    MessageEnd,
    TextDelta,
    ToolStart,
    TurnEnd,
    last_assistant_text,
    message_text,
)
from miniagi.channels.base import ChatTransport
from miniagi.channels.formatting import FormattedText, render_for_transport
from miniagi.errors import AgentTurnError, MessageNotModified, TransientTransportError, TransportError
from miniagi.session.recorder import TurnRecorder

EMPTY_REPLY_NOTICE = "Done, but I have nothing to show for this one."


class RenderPhase(Enum):
    NO_MESSAGE = "no_message"
    SENT = "sent"
    FINALIZED = "finalized"


@dataclass
class RenderState:
    """Per-turn rendering state. Never persisted."""

    text: str = ""
    handle: Any = None
    last_edit: float = 0.0
    last_activity: float = 0.0
    phase: RenderPhase = RenderPhase.NO_MESSAGE
    last_message: dict[str, Any] | None = None


class StreamRenderer:
    """
    Streams an agent turn into one outbound chat message.

    The message is created as soon as there is text, then edited with the
    full accumulated text at most once per ``edit_interval`` seconds. A typing
    indicator is refreshed every ``activity_interval`` seconds while the turn
    runs.
    """

    def __init__(
        self,
        transport: ChatTransport,
        edit_interval: float = 1.0,
        activity_interval: float = 4.0,
        clock: Callable[[], float] = time.monotonic,
        empty_notice: str = EMPTY_REPLY_NOTICE,
    ):
        self.transport = transport
        self.edit_interval = edit_interval
        self.activity_interval = activity_interval
        self.clock = clock
        self.empty_notice = empty_notice

    async def render_turn(
        self,
        events: AsyncIterable[AgentEvent],
        recorder: TurnRecorder | None = None,
    ) -> str:
        """
        Render ``events`` and return the final reply text.

        Failures are shown to the user as an error message and re-raised once
        the turn has been recorded.
        """
        state = RenderState()
        activity = asyncio.create_task(self._keep_active(state))
        failure: Exception | None = None
        try:
            final_text = await self._consume(events, state)
        except Exception as e:
            failure = e
            final_text = state.text.strip()
            logger.error("Turn failed: {}", e)
            await self._show_error(state, e)
        finally:
            activity.cancel()
            await asyncio.wait([activity])
            # Closing the stream unsubscribes it and aborts an agent still running.
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()

        if recorder is not None:
            await recorder.record(final_text)
        if failure is not None:
            raise failure
        return final_text

    async def _consume(self, events: AsyncIterable[AgentEvent], state: RenderState) -> str:
        final_text = ""
        async for event in events:
            if state.phase is RenderPhase.FINALIZED:
                logger.debug("Ignoring {} after turn end", type(event).__name__)
                continue
            if isinstance(event, TextDelta):
                await self._on_text(state, event.delta)
            elif isinstance(event, ToolStart):
                await self._on_tool(state, event.tool_name)
            elif isinstance(event, MessageEnd):
                if event.final_message:
                    state.last_message = event.final_message
            elif isinstance(event, TurnEnd):
                final_text = await self._finalize(state, event)
            else:
                assert_never(event)

        if state.phase is not RenderPhase.FINALIZED:
            logger.warning("Event stream ended without a terminal event")
            final_text = await self._finalize(state, TurnEnd())
        return final_text

    def _format(self, text: str) -> FormattedText:
        return render_for_transport(text, self.transport.max_length, self.transport.measure)

    async def _on_text(self, state: RenderState, delta: str) -> None:
        state.text += delta
        now = self.clock()
        if state.handle is None:
            formatted = self._format(state.text)
            # Markers alone ("``", "****") render to nothing; wait for real text.
            if not formatted.text:
                return
            await self._create(state, formatted)
            state.last_edit = now
        elif now - state.last_edit > self.edit_interval:
            state.last_edit = now
            await self._edit(state, self._format(state.text))

    async def _on_tool(self, state: RenderState, tool_name: str) -> None:
        logger.info("Tool: {}", tool_name)
        if state.handle is None:
            return
        status = f"🔧 Running: {tool_name}"
        text = f"{state.text}\n\n{status}" if state.text.strip() else status
        try:
            await self._edit(state, self._format(text))
        except TransportError as e:
            logger.debug("Tool status edit failed: {}", e)

    async def _finalize(self, state: RenderState, event: TurnEnd) -> str:
        formatted = self._format(state.text)
        if not formatted.text:
            recovered = last_assistant_text(event.messages) or message_text(state.last_message)
            if self._format(recovered).text:
                logger.info("No streamed text, using the final assistant message ({} chars)", len(recovered))
                state.text = recovered
                formatted = self._format(recovered)

        if event.error:
            if not formatted.text:
                raise AgentTurnError(event.error)
            logger.warning("Turn ended with error after producing text: {}", event.error)

        final_text = state.text.strip() if formatted.text else ""
        if not formatted.text:
            formatted = self._format(self.empty_notice)
        if state.handle is None:
            await self._create(state, formatted)
        else:
            await self._edit(state, formatted)
        state.phase = RenderPhase.FINALIZED
        return final_text

    async def _create(self, state: RenderState, formatted: FormattedText) -> None:
        state.handle = await self.transport.create(formatted.text, formatted.spans)
        state.phase = RenderPhase.SENT

    async def _edit(self, state: RenderState, formatted: FormattedText) -> None:
        if not formatted.text:
            logger.debug("Skipping edit to empty text")
            return
        try:
            await self.transport.edit(state.handle, formatted.text, formatted.spans)
        except MessageNotModified:
            logger.debug("Edit skipped, message unchanged")

    async def _show_error(self, state: RenderState, error: Exception) -> None:
        formatted = self._format(f"❌ Error: {error}")
        try:
            if state.handle is None:
                await self._create(state, formatted)
            else:
                await self._edit(state, formatted)
        except TransportError as e:
            logger.error("Could not deliver error message: {}", e)

    async def _keep_active(self, state: RenderState) -> None:
        while True:
            try:
                await self.transport.signal_activity()
                state.last_activity = self.clock()
            except TransientTransportError as e:
                logger.debug("Activity signal skipped: {}", e)
            except Exception as e:
                logger.warning("Activity signal failed, stopping it for this turn: {}", e)
                return
            await asyncio.sleep(self.activity_interval)
