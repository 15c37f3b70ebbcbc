"""Context builder for assembling agent prompts."""

from __future__ import annotations

from pathlib import Path

from miniagi.memory.daily import DailyNotes
from miniagi.memory.profile import UserProfile
from miniagi.memory.tasks import TaskStore

BASE_SYSTEM_PROMPT = """You are mini-agi, a personal assistant running locally.

## Rules
- Be BRIEF. This is a chat, not documentation.
- 1-3 sentences max for simple responses
- Skip explanations unless asked
- Just do the task and report results concisely
- Only show relevant output snippets, not full logs
- Ask clarifying questions only when truly needed
- Be safe with destructive commands (confirm first)
- Use the `task_memory` tool to track long-running tasks from natural language. Keep active tasks updated with concise summaries and notes.

## Formatting
- Use **bold** for emphasis, `inline code` for commands, paths and identifiers
- Use fenced code blocks only when sharing actual code
- Short paragraphs, blank lines between ideas, no other markdown

## Workspace
Your working directory is {workspace_root}."""


class ContextBuilder:
    """
    Builds the system prompt for a user's agent.

    Combines the base instructions with the user's profile, the memory
    bootstrap (MEMORY.md plus recent daily notes) and the active tasks.
    """

    def __init__(
        self,
        workspace: Path,
        tasks: TaskStore | None = None,
        notes: DailyNotes | None = None,
    ):
        self.workspace = workspace
        self.tasks = tasks
        self.notes = notes

    def build_system_prompt(
        self,
        user_id: str,
        profile: UserProfile | None = None,
        additional_context: str | None = None,
    ) -> str:
        parts = [BASE_SYSTEM_PROMPT.format(workspace_root=self.workspace)]
        parts.append(f"## Current User\n- User id (pass as user_id to task_memory): {user_id}")

        if profile:
            parts.append(
                f"## User Profile\n- Name: {profile.name}\n- Task preferences: {profile.task_preferences}"
            )

        if self.notes:
            bootstrap = self.notes.load_bootstrap()
            if bootstrap:
                parts.append(bootstrap)

        if self.tasks:
            parts.append(
                f"## Active Tasks\n{self.tasks.summarize_active(user_id)}\n\n"
                "When the user references a task or progress, use task_memory to "
                "create/update/append notes automatically and keep statuses accurate."
            )

        if additional_context:
            parts.append(f"## Additional Context\n{additional_context}")

        return "\n\n".join(parts)
