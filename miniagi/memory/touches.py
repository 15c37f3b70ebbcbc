"""Track which tasks a turn touched, for correlated progress notes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from loguru import logger

from miniagi.errors import MiniAgiError
from miniagi.memory.tasks import TaskStore
from miniagi.utils.helpers import now_iso, truncate_string

TouchAction = Literal["create_task", "update_task", "append_note", "complete_task"]


@dataclass(frozen=True)
class TaskTouch:
    task_id: str
    action: TouchAction
    touched_at: str


class TaskTouchLog:
    """
    In-memory record of the tasks referenced during the current turn.

    Touches are volatile: a restart drops anything not yet consumed. They only
    drive the conversation notes appended at turn end, never task state.
    """

    def __init__(self):
        self._touches: dict[str, dict[str, TaskTouch]] = {}

    def touch(self, user_id: str, task_id: str, action: TouchAction) -> None:
        by_user = self._touches.setdefault(user_id, {})
        # Re-inserting keeps dict order equal to recency.
        by_user.pop(task_id, None)
        by_user[task_id] = TaskTouch(task_id=task_id, action=action, touched_at=now_iso())

    def consume(self, user_id: str) -> list[TaskTouch]:
        """Return and clear the user's touches, most recent first."""
        by_user = self._touches.pop(user_id, None)
        if not by_user:
            return []
        return list(reversed(by_user.values()))

    def pending(self, user_id: str) -> int:
        return len(self._touches.get(user_id, {}))

    def append_turn_notes(
        self,
        store: TaskStore,
        user_id: str,
        user_message: str,
        reply: str,
        excerpt_chars: int = 600,
    ) -> int:
        """
        Consume the user's touches and append a conversation note to each task.

        Returns the number of notes written. Missing tasks and storage errors
        are logged and skipped.
        """
        touches = self.consume(user_id)
        if not touches:
            return 0

        user_excerpt = truncate_string(user_message.strip(), excerpt_chars)
        reply_excerpt = truncate_string(reply.strip(), excerpt_chars) or "(no reply)"
        written = 0
        for touch in touches:
            note = (
                f"Action: {touch.action}\n\n"
                f"User: {user_excerpt}\n\n"
                f"Assistant: {reply_excerpt}"
            )
            try:
                store.append_note(user_id, touch.task_id, note, section="Conversation Note")
            except (MiniAgiError, OSError) as e:
                logger.warning("Could not append conversation note to task {}: {}", touch.task_id, e)
                continue
            written += 1
        logger.debug("Appended {} conversation note(s) for {}", written, user_id)
        return written
