"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, Field


class TelegramConfig(BaseModel):
    """Telegram channel configuration."""

    bot_token: str
    allowed_users: list[str] = Field(default_factory=list)  # user ids or usernames; empty allows all


class LLMConfig(BaseModel):
    """Model selection, handed to the agent factory untouched."""

    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"


class MemoryConfig(BaseModel):
    enabled: bool = True
    dir: Path


class SessionConfig(BaseModel):
    dir: Path


class StreamingConfig(BaseModel):
    """Streaming reply behaviour."""

    edit_interval_ms: int = Field(default=1000, ge=0)
    activity_interval_ms: int = Field(default=4000, gt=0)
    note_excerpt_chars: int = Field(default=600, gt=0)
    abort_grace_ms: int = Field(default=5000, ge=0)


class Config(BaseModel):
    """Root configuration for miniagi."""

    telegram: TelegramConfig
    llm: LLMConfig = Field(default_factory=LLMConfig)
    workspace_root: Path
    memory: MemoryConfig
    session: SessionConfig
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
