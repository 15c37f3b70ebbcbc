"""Turn-end persistence: transcript lines and task conversation notes."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from loguru import logger

from miniagi.memory.tasks import TaskStore
from miniagi.memory.touches import TaskTouchLog
from miniagi.session.transcript import TranscriptEntry, TranscriptStore


@dataclass
class TurnRecorder:
    """
    What to persist once a user's turn is over.

    Persistence is best effort: storage errors are logged and never reach the
    user, who has already seen the reply.
    """

    user_id: str
    user_message: str
    transcripts: TranscriptStore | None = None
    touches: TaskTouchLog | None = None
    tasks: TaskStore | None = None
    excerpt_chars: int = 600

    async def record(self, final_text: str) -> None:
        await self._save_transcript(final_text)
        await self._append_task_notes(final_text)

    async def _save_transcript(self, final_text: str) -> None:
        if self.transcripts is None:
            return
        entries = [TranscriptEntry.now("user", self.user_message)]
        if final_text.strip():
            entries.append(TranscriptEntry.now("assistant", final_text.strip()))
        try:
            await asyncio.to_thread(self.transcripts.append, self.user_id, entries)
        except OSError as e:
            logger.error("Failed to save transcript for {}: {}", self.user_id, e)

    async def _append_task_notes(self, final_text: str) -> None:
        if self.touches is None:
            return
        if self.tasks is None:
            dropped = self.touches.consume(self.user_id)
            if dropped:
                logger.debug("No task store configured, dropping {} touch(es)", len(dropped))
            return
        await asyncio.to_thread(
            self.touches.append_turn_notes,
            self.tasks,
            self.user_id,
            self.user_message,
            final_text,
            self.excerpt_chars,
        )
