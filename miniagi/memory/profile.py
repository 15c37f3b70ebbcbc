"""User profiles collected during onboarding."""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError

from miniagi.utils.helpers import ensure_dir, now_iso, safe_filename


class UserProfile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    name: str
    task_preferences: str = Field(default="", alias="taskPreferences")
    updated_at: str = Field(default_factory=now_iso, alias="updatedAt")


class ProfileStore:
    """One ``profile-<user>.json`` per user under the memory directory."""

    def __init__(self, memory_dir: Path):
        self.memory_dir = Path(memory_dir)

    def _path(self, user_id: str) -> Path:
        return self.memory_dir / f"profile-{safe_filename(user_id)}.json"

    def load(self, user_id: str) -> UserProfile | None:
        path = self._path(user_id)
        if not path.exists():
            return None
        try:
            return UserProfile.model_validate_json(path.read_text(encoding="utf-8"))
        except SchemaError as e:
            logger.warning("Ignoring unreadable profile {}: {}", path, e)
            return None

    def save(self, profile: UserProfile) -> None:
        ensure_dir(self.memory_dir)
        self._path(profile.user_id).write_text(
            json.dumps(profile.model_dump(by_alias=True), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
