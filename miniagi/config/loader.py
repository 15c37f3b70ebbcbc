"""Configuration loading from the environment."""

import os
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv
from loguru import logger

from miniagi.config.schema import (
    Config,
    LLMConfig,
    MemoryConfig,
    SessionConfig,
    StreamingConfig,
    TelegramConfig,
)


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config(env: Mapping[str, str] | None = None) -> Config:
    """
    Build the configuration from environment variables.

    When ``env`` is omitted, a ``.env`` file in the working directory is
    loaded first and ``os.environ`` is used.

    Raises:
        ValueError: if TELEGRAM_BOT_TOKEN is missing.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    token = env.get("TELEGRAM_BOT_TOKEN", "").strip()
    if not token:
        raise ValueError("Missing required environment variable: TELEGRAM_BOT_TOKEN")

    workspace = Path(env.get("WORKSPACE_ROOT") or os.getcwd()).expanduser()
    config = Config(
        telegram=TelegramConfig(
            bot_token=token,
            allowed_users=_split_list(env.get("TELEGRAM_ALLOWED_USERS", "")),
        ),
        llm=LLMConfig(
            provider=env.get("LLM_PROVIDER", "anthropic"),
            model=env.get("LLM_MODEL", "claude-sonnet-4-20250514"),
        ),
        workspace_root=workspace,
        memory=MemoryConfig(
            enabled=env.get("MEMORY_ENABLED", "true").strip().lower() == "true",
            dir=Path(env.get("MEMORY_DIR") or workspace / "memory").expanduser(),
        ),
        session=SessionConfig(
            dir=Path(env.get("SESSION_DIR") or workspace / "session").expanduser(),
        ),
        streaming=StreamingConfig(
            edit_interval_ms=int(env.get("STREAM_EDIT_INTERVAL_MS", "1000")),
            activity_interval_ms=int(env.get("STREAM_ACTIVITY_INTERVAL_MS", "4000")),
            abort_grace_ms=int(env.get("STREAM_ABORT_GRACE_MS", "5000")),
        ),
    )
    logger.debug("Loaded config: workspace={}, memory={}", config.workspace_root, config.memory.enabled)
    return config
