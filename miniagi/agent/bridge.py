"""Bridge a push-based agent subscription into an async event stream."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

from loguru import logger

from miniagi.agent.events import AgentEvent, AgentSource, TurnEnd

_END = object()


class EventBridge:
    """
    Turns one agent turn into an ordered ``async for`` stream.

    The prompt is started as soon as ``stream`` is entered so events emitted
    before the first pull are queued rather than lost. The stream always ends
    with exactly one ``TurnEnd``: if the agent raises or returns without
    emitting one, a terminal event is synthesized.

    An agent that is still running ``abort_grace`` seconds after ``abort`` has
    its turn cancelled, so a stuck tool call cannot hold the stream open.

    A bridge serves a single turn; create a new one per message.
    """

    def __init__(self, source: AgentSource, abort_grace: float = 5.0):
        self.source = source
        self.abort_grace = abort_grace
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._finished = False
        self._aborted = False
        self._producer: asyncio.Task | None = None
        self._cancel_timer: asyncio.TimerHandle | None = None

    @property
    def finished(self) -> bool:
        return self._finished

    def _on_event(self, event: AgentEvent) -> None:
        if self._finished:
            logger.debug("Dropping {} received after turn end", type(event).__name__)
            return
        self._queue.put_nowait(event)
        if isinstance(event, TurnEnd):
            self._finished = True
            self._queue.put_nowait(_END)

    def _on_producer_done(self, task: asyncio.Task) -> None:
        if self._cancel_timer is not None:
            self._cancel_timer.cancel()
        if task.cancelled():
            self._on_event(TurnEnd(error="aborted"))
            return
        exc = task.exception()
        if self._finished:
            if exc is not None:
                logger.warning("Agent raised after its turn ended: {}", exc)
            return
        if exc is not None:
            logger.error("Agent turn failed: {}", exc)
            self._on_event(TurnEnd(error=str(exc) or type(exc).__name__))
        elif self._aborted:
            self._on_event(TurnEnd(messages=list(self.source.messages), error="aborted"))
        else:
            self._on_event(TurnEnd(messages=list(self.source.messages)))

    async def _produce(self, text: str) -> None:
        await self.source.prompt(text)

    def abort(self) -> None:
        """Stop the underlying agent; the stream still ends with a ``TurnEnd``."""
        self._aborted = True
        self.source.abort()
        if self._producer is None or self._producer.done() or self._cancel_timer is not None:
            return
        self._cancel_timer = asyncio.get_running_loop().call_later(self.abort_grace, self._cancel_producer)

    def _cancel_producer(self) -> None:
        if self._producer is not None and not self._producer.done():
            logger.warning("Agent still running {}s after abort, cancelling its turn", self.abort_grace)
            self._producer.cancel()

    async def stream(self, text: str) -> AsyncIterator[AgentEvent]:
        if self._producer is not None:
            raise RuntimeError("EventBridge instances serve a single turn")

        unsubscribe = self.source.subscribe(self._on_event)
        self._producer = asyncio.create_task(self._produce(text))
        self._producer.add_done_callback(self._on_producer_done)
        if self._aborted:
            # Aborted before the turn started; start the grace period now.
            self._aborted = False
            self.abort()
        try:
            while True:
                item = await self._queue.get()
                if item is _END:
                    return
                yield item
        finally:
            unsubscribe()
            if not self._producer.done():
                logger.debug("Event stream closed early, aborting agent")
                self.abort()
