"""Task memory tool: lets the agent track long-running user tasks."""

import asyncio
from typing import Any

from miniagi.agent.tools.base import Tool
from miniagi.errors import MiniAgiError, TaskNotFoundError, ValidationError
from miniagi.memory.tasks import TASK_PRIORITIES, TASK_STATUSES, TaskStore
from miniagi.memory.touches import TaskTouchLog

ACTIONS = ("create_task", "update_task", "append_note", "complete_task", "list_active_tasks")


class TaskMemoryTool(Tool):
    """Create, update, annotate and complete tasks, recording a touch for each."""

    def __init__(self, store: TaskStore, touches: TaskTouchLog):
        self.store = store
        self.touches = touches

    @property
    def name(self) -> str:
        return "task_memory"

    @property
    def description(self) -> str:
        return (
            "Track long-running user tasks in persistent markdown memory. "
            "Create tasks, update status/summary, append progress notes, "
            "complete tasks, and list active tasks."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "action": {"type": "string", "enum": list(ACTIONS)},
                "user_id": {"type": "string", "description": "Current user id from conversation context"},
                "task_id": {"type": "string", "description": "Task id for update/note/complete actions"},
                "title": {"type": "string", "description": "Task title"},
                "status": {"type": "string", "enum": list(TASK_STATUSES)},
                "priority": {"type": "string", "enum": list(TASK_PRIORITIES)},
                "summary": {"type": "string", "description": "Concise task summary"},
                "note": {"type": "string", "description": "Progress note to append to task markdown"},
            },
            "required": ["action", "user_id"],
        }

    async def execute(
        self,
        action: str,
        user_id: str,
        task_id: str | None = None,
        title: str | None = None,
        status: str | None = None,
        priority: str | None = None,
        summary: str | None = None,
        note: str | None = None,
        **kwargs: Any,
    ) -> str:
        try:
            return await self._run(action, user_id, task_id, title, status, priority, summary, note)
        except MiniAgiError as e:
            return f"Error: {e}"

    async def _require_task_id(self, action: str, user_id: str, task_id: str | None) -> str:
        if not task_id or not task_id.strip():
            raise ValidationError(f"{action} requires task_id")
        task_id = task_id.strip()
        if await asyncio.to_thread(self.store.get, user_id, task_id) is None:
            raise TaskNotFoundError(task_id)
        return task_id

    async def _append(self, user_id: str, task_id: str, note: str | None) -> None:
        if note and note.strip():
            await asyncio.to_thread(self.store.append_note, user_id, task_id, note)

    async def _run(self, action, user_id, task_id, title, status, priority, summary, note) -> str:
        if not user_id or not user_id.strip():
            raise ValidationError("task_memory requires user_id")
        user_id = user_id.strip()

        if action == "create_task":
            if not title or not title.strip():
                raise ValidationError("create_task requires title")
            task = await asyncio.to_thread(
                self.store.upsert, user_id,
                title=title, status=status, priority=priority, summary=summary or "",
            )
            self.touches.touch(user_id, task.task_id, "create_task")
            await self._append(user_id, task.task_id, note)
            return f"Created task {task.task_id}: {task.title}"

        if action == "update_task":
            task_id = await self._require_task_id(action, user_id, task_id)
            task = await asyncio.to_thread(
                self.store.upsert, user_id,
                task_id=task_id, title=title, status=status, priority=priority, summary=summary,
            )
            self.touches.touch(user_id, task.task_id, "update_task")
            await self._append(user_id, task.task_id, note)
            return f"Updated task {task.task_id}: {task.title} [{task.status}]"

        if action == "append_note":
            task_id = await self._require_task_id(action, user_id, task_id)
            if not note or not note.strip():
                raise ValidationError("append_note requires note")
            await asyncio.to_thread(self.store.append_note, user_id, task_id, note)
            self.touches.touch(user_id, task_id, "append_note")
            return f"Appended note to task {task_id}"

        if action == "complete_task":
            task_id = await self._require_task_id(action, user_id, task_id)
            task = await asyncio.to_thread(self.store.complete, user_id, task_id, summary)
            self.touches.touch(user_id, task.task_id, "complete_task")
            await self._append(user_id, task.task_id, note)
            return f"Completed task {task.task_id}"

        if action == "list_active_tasks":
            tasks = [t for t in await asyncio.to_thread(self.store.list, user_id) if t.status != "completed"]
            if not tasks:
                return "No active tasks."
            return "\n".join(
                f"{idx}. {t.title} ({t.task_id}) [{t.status}]" for idx, t in enumerate(tasks, start=1)
            )

        raise ValidationError(f"Unsupported action: {action}")
