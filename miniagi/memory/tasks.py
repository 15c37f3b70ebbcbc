"""Task memory: a per-user JSON index plus one markdown log per task."""

from __future__ import annotations

import json
import secrets
import string
import time
from pathlib import Path
from typing import Literal, get_args

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError

from miniagi.errors import TaskNotFoundError, ValidationError
from miniagi.utils.helpers import ensure_dir, now_iso, safe_filename

TaskStatus = Literal["active", "blocked", "completed"]
TaskPriority = Literal["low", "medium", "high"]

TASK_STATUSES: tuple[str, ...] = get_args(TaskStatus)
TASK_PRIORITIES: tuple[str, ...] = get_args(TaskPriority)

_BASE36 = string.digits + string.ascii_lowercase


class TaskRecord(BaseModel):
    """One long-running task. Stored with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(alias="taskId")
    user_id: str = Field(alias="userId")
    title: str
    status: TaskStatus = "active"
    priority: TaskPriority = "medium"
    summary: str = ""
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")
    last_worked_at: str = Field(alias="lastWorkedAt")


def _base36(value: int) -> str:
    digits = []
    while True:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
        if value == 0:
            return "".join(reversed(digits))


def generate_task_id() -> str:
    stamp = _base36(int(time.time() * 1000))
    rand = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"task_{stamp}_{rand}"


def format_log_block(section: str, body: str, timestamp: str) -> str:
    return f"## {timestamp}\n### {section}\n{body}\n\n---\n"


class TaskStore:
    """
    CRUD over a user's tasks.

    Layout under ``memory_dir``::

        tasks-<user>.json          index, rewritten on every mutation
        tasks/<user>/<task>.md     append-only log per task

    There is no cross-process locking; callers process one user's turns at a
    time.
    """

    def __init__(self, memory_dir: Path):
        self.memory_dir = Path(memory_dir)

    def _index_path(self, user_id: str) -> Path:
        return self.memory_dir / f"tasks-{safe_filename(user_id)}.json"

    def _log_dir(self, user_id: str) -> Path:
        return self.memory_dir / "tasks" / safe_filename(user_id)

    def log_path(self, user_id: str, task_id: str) -> Path:
        return self._log_dir(user_id) / f"{safe_filename(task_id)}.md"

    def _load(self, user_id: str) -> list[TaskRecord]:
        path = self._index_path(user_id)
        if not path.exists():
            return []
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Task index {} is unreadable, treating as empty: {}", path, e)
            return []
        if not isinstance(raw, list):
            logger.warning("Task index {} is not a list, treating as empty", path)
            return []

        records = []
        for item in raw:
            try:
                records.append(TaskRecord.model_validate(item))
            except SchemaError:
                logger.warning("Skipping malformed task record in {}", path)
        return records

    def _save(self, user_id: str, records: list[TaskRecord]) -> None:
        ensure_dir(self.memory_dir)
        payload = [r.model_dump(by_alias=True) for r in records]
        self._index_path(user_id).write_text(
            json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8"
        )

    def _ensure_log(self, task: TaskRecord) -> Path:
        path = self.log_path(task.user_id, task.task_id)
        if path.exists():
            return path
        ensure_dir(path.parent)
        header = "\n".join([
            f"# {task.title}",
            "",
            f"- Task ID: {task.task_id}",
            f"- Status: {task.status}",
            f"- Priority: {task.priority}",
            f"- Created: {task.created_at}",
            "",
            "## Task Summary",
            task.summary or "(no summary yet)",
            "",
            "---",
            "",
        ])
        path.write_text(header, encoding="utf-8")
        return path

    def list(self, user_id: str) -> list[TaskRecord]:
        """All of the user's tasks, most recently updated first."""
        return sorted(self._load(user_id), key=lambda t: t.updated_at, reverse=True)

    def get(self, user_id: str, task_id: str) -> TaskRecord | None:
        return next((t for t in self._load(user_id) if t.task_id == task_id), None)

    def upsert(
        self,
        user_id: str,
        task_id: str | None = None,
        title: str | None = None,
        status: str | None = None,
        priority: str | None = None,
        summary: str | None = None,
    ) -> TaskRecord:
        """
        Create a task, or merge the provided fields into an existing one.

        Fields left as ``None`` are not touched on update. When ``task_id``
        does not name an existing task a new record with a fresh id is
        created.
        """
        if not user_id or not user_id.strip():
            raise ValidationError("user_id is required")
        if status is not None and status not in TASK_STATUSES:
            raise ValidationError(f"Invalid status '{status}', expected one of {', '.join(TASK_STATUSES)}")
        if priority is not None and priority not in TASK_PRIORITIES:
            raise ValidationError(
                f"Invalid priority '{priority}', expected one of {', '.join(TASK_PRIORITIES)}"
            )

        records = self._load(user_id)
        timestamp = now_iso()
        task = None
        if task_id:
            task = next((t for t in records if t.task_id == task_id), None)

        if task is None:
            existing = {t.task_id for t in records}
            new_id = generate_task_id()
            while new_id in existing:
                new_id = generate_task_id()
            task = TaskRecord(
                task_id=new_id,
                user_id=user_id,
                title=(title or "").strip() or "Untitled task",
                status=status or "active",
                priority=priority or "medium",
                summary=(summary or "").strip(),
                created_at=timestamp,
                updated_at=timestamp,
                last_worked_at=timestamp,
            )
            records.append(task)
            logger.info("Created task {} for {}: {}", task.task_id, user_id, task.title)
        else:
            if title and title.strip():
                task.title = title.strip()
            if status:
                task.status = status
            if priority:
                task.priority = priority
            if summary is not None:
                task.summary = summary.strip()
            task.updated_at = timestamp
            task.last_worked_at = timestamp
            logger.debug("Updated task {} for {}", task.task_id, user_id)

        self._save(user_id, records)
        self._ensure_log(task)
        return task

    def append_note(self, user_id: str, task_id: str, note: str, section: str = "Progress Note") -> None:
        """Append a timestamped block to the task's log. The record is left as is."""
        if not note or not note.strip():
            raise ValidationError("note is required")
        task = self.get(user_id, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        path = self._ensure_log(task)
        with open(path, "a", encoding="utf-8") as f:
            f.write(format_log_block(section, note.strip(), now_iso()))

    def complete(self, user_id: str, task_id: str, summary: str | None = None) -> TaskRecord:
        """Mark a task completed and record the completion in its log."""
        if self.get(user_id, task_id) is None:
            raise TaskNotFoundError(task_id)
        task = self.upsert(user_id, task_id=task_id, status="completed", summary=summary)
        note = "Marked completed."
        if summary and summary.strip():
            note += f"\n\n{summary.strip()}"
        self.append_note(user_id, task_id, note)
        return task

    def summarize_active(self, user_id: str, limit_chars: int = 3000, max_tasks: int = 8) -> str:
        """Numbered overview of unfinished tasks, for the system prompt."""
        tasks = [t for t in self._load(user_id) if t.status != "completed"]
        tasks.sort(key=lambda t: t.last_worked_at, reverse=True)
        tasks = tasks[: max(1, max_tasks)]
        if not tasks:
            return "No active tasks yet."

        lines = []
        for idx, task in enumerate(tasks, start=1):
            summary = task.summary.strip() or "No summary yet."
            lines.append(
                f"{idx}. [{task.status}] {task.title} (id: {task.task_id}, priority: {task.priority})\n"
                f"   Summary: {summary}"
            )
        text = "\n".join(lines)
        if len(text) > limit_chars:
            text = text[:limit_chars] + "\n... (active tasks truncated)"
        return text
