"""Append-only JSONL transcripts, one file per user."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Literal

from loguru import logger
from pydantic import BaseModel, StrictInt, StrictStr
from pydantic import ValidationError as SchemaError

from miniagi.utils.helpers import ensure_dir, now_ms, safe_filename


class TranscriptEntry(BaseModel):
    role: Literal["user", "assistant"]
    content: StrictStr
    timestamp: StrictInt

    @classmethod
    def now(cls, role: str, content: str) -> "TranscriptEntry":
        return cls(role=role, content=content, timestamp=now_ms())


class TranscriptStore:
    """
    Per-user conversation log used to rehydrate agents across restarts.

    Each line of ``<session_dir>/<user>.jsonl`` is one ``TranscriptEntry``.
    Lines that fail to parse are skipped on load.
    """

    def __init__(self, session_dir: Path):
        self.session_dir = Path(session_dir)

    def _path(self, user_id: str) -> Path:
        return self.session_dir / f"{safe_filename(user_id)}.jsonl"

    def append(self, user_id: str, entries: list[TranscriptEntry]) -> None:
        if not entries:
            return
        ensure_dir(self.session_dir)
        lines = "".join(
            json.dumps(entry.model_dump(), ensure_ascii=False) + "\n" for entry in entries
        )
        with open(self._path(user_id), "a", encoding="utf-8") as f:
            f.write(lines)

    def load(self, user_id: str) -> list[TranscriptEntry]:
        path = self._path(user_id)
        if not path.exists():
            return []

        entries = []
        skipped = 0
        with open(path, "rb") as f:
            for raw in f:
                try:
                    line = raw.decode("utf-8").strip()
                    if not line:
                        continue
                    entries.append(TranscriptEntry.model_validate(json.loads(line)))
                except (UnicodeDecodeError, json.JSONDecodeError, SchemaError):
                    skipped += 1
        if skipped:
            logger.warning("Skipped {} malformed transcript line(s) for {}", skipped, user_id)
        return entries

    def clear(self, user_id: str) -> None:
        self._path(user_id).unlink(missing_ok=True)
