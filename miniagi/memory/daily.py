"""Daily conversation notes and the memory bootstrap built from them."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

from miniagi.utils.helpers import ensure_dir


class DailyNotes:
    """
    Markdown memory under ``memory_dir``.

    ``MEMORY.md`` holds curated long-term memory; ``YYYY-MM-DD.md`` files
    collect every exchange of that (UTC) day.
    """

    def __init__(self, memory_dir: Path):
        self.memory_dir = Path(memory_dir)

    def _day_path(self, day: str) -> Path:
        return self.memory_dir / f"{day}.md"

    def _read(self, path: Path) -> str:
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8")

    def append_entry(
        self,
        user_id: str,
        user_message: str,
        assistant_message: str,
        when: datetime | None = None,
    ) -> Path:
        when = when or datetime.now(timezone.utc)
        stamp = when.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        block = "\n".join([
            f"## {stamp}",
            f"**User ({user_id})**:",
            user_message,
            "",
            "**Assistant**:",
            assistant_message,
            "",
            "---",
            "",
        ])
        ensure_dir(self.memory_dir)
        path = self._day_path(when.date().isoformat())
        with open(path, "a", encoding="utf-8") as f:
            f.write(block)
        return path

    def load_bootstrap(self, max_length: int = 8000, today: datetime | None = None) -> str:
        """Long-term memory plus yesterday's and today's notes, for the system prompt."""
        today = today or datetime.now(timezone.utc)
        today_day = today.date().isoformat()
        yesterday_day = (today - timedelta(days=1)).date().isoformat()

        memory = self._read(self.memory_dir / "MEMORY.md").strip()
        yesterday = self._read(self._day_path(yesterday_day)).strip()
        current = self._read(self._day_path(today_day)).strip()

        sections = []
        if memory:
            sections.append(f"### Long-term Memory\n{memory}")
        if yesterday:
            sections.append(f"### Yesterday's Notes ({yesterday_day})\n{yesterday}")
        if current:
            sections.append(f"### Today's Notes ({today_day})\n{current}")
        if not sections:
            return ""

        result = "## Memory Context\n\n" + "\n\n".join(sections)
        if len(result) > max_length:
            result = result[:max_length] + "\n\n... (memory truncated)"
        return result
