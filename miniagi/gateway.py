"""Gateway: routes inbound chat messages to per-user agents and streams replies."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable

from loguru import logger

from miniagi.agent.bridge import EventBridge
from miniagi.agent.context import ContextBuilder
from miniagi.agent.events import AgentSource
from miniagi.agent.tools.registry import ToolRegistry
from miniagi.agent.tools.task_memory import TaskMemoryTool
from miniagi.bus.events import InboundMessage
from miniagi.channels.base import ChatTransport
from miniagi.channels.renderer import StreamRenderer
from miniagi.config.schema import Config, LLMConfig
from miniagi.memory.daily import DailyNotes
from miniagi.memory.profile import ProfileStore, UserProfile
from miniagi.memory.tasks import TaskStore
from miniagi.memory.touches import TaskTouchLog
from miniagi.session.recorder import TurnRecorder
from miniagi.session.transcript import TranscriptStore

START_TEXT = (
    "Hello! I'm mini-agi, your personal assistant.\n\n"
    "I can help you with:\n"
    "- Executing shell commands\n"
    "- Reading and writing files\n"
    "- Keeping track of long-running tasks\n\n"
    "Just send me a message with what you'd like to do!"
)


@dataclass
class AgentSpec:
    """Everything an agent factory needs to build a user's agent."""

    user_id: str
    system_prompt: str
    tools: ToolRegistry
    llm: LLMConfig


AgentFactory = Callable[[AgentSpec], AgentSource]


class Gateway:
    """
    Entry point for inbound messages from any channel.

    One agent is kept per user and rehydrated from the transcript on first
    use. Turns of the same user are serialized; ``/stop`` bypasses the queue
    to abort the running turn.
    """

    def __init__(
        self,
        config: Config,
        agent_factory: AgentFactory,
        tools: ToolRegistry | None = None,
    ):
        self.config = config
        self.agent_factory = agent_factory
        self.memory_enabled = config.memory.enabled

        self.transcripts = TranscriptStore(config.session.dir)
        self.tasks = TaskStore(config.memory.dir)
        self.touches = TaskTouchLog()
        self.profiles = ProfileStore(config.memory.dir)
        self.notes = DailyNotes(config.memory.dir)
        self.context = ContextBuilder(
            config.workspace_root,
            tasks=self.tasks if self.memory_enabled else None,
            notes=self.notes if self.memory_enabled else None,
        )

        self.tools = tools if tools is not None else ToolRegistry()
        if self.memory_enabled and not self.tools.has("task_memory"):
            self.tools.register(TaskMemoryTool(self.tasks, self.touches))

        self._agents: dict[str, AgentSource] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._running: dict[str, EventBridge] = {}
        self._onboarding: dict[str, str] = {}

    def is_allowed(self, msg: InboundMessage) -> bool:
        allowed = self.config.telegram.allowed_users
        if not allowed:
            return True
        return msg.sender_id in allowed or (msg.username is not None and msg.username in allowed)

    def _lock(self, user_id: str) -> asyncio.Lock:
        if user_id not in self._locks:
            self._locks[user_id] = asyncio.Lock()
        return self._locks[user_id]

    async def handle(self, msg: InboundMessage, transport: ChatTransport) -> str | None:
        """
        Process one inbound message.

        Returns:
            The assistant's reply text, or None when the message was a command,
            an onboarding step, rejected, or the turn failed.
        """
        user_id = msg.sender_id
        if not self.is_allowed(msg):
            logger.warning("Rejected message from unauthorized user {}", user_id)
            await transport.create("Sorry, you're not authorized to use this bot.")
            return None

        command = msg.command
        if command == "/start":
            await transport.create(START_TEXT)
            return None
        if command == "/stop":
            await transport.create("Operation aborted." if self.stop(user_id) else "Nothing is running.")
            return None
        if command == "/reset":
            async with self._lock(user_id):
                await self.reset(user_id)
            await transport.create("Conversation reset. Starting fresh!")
            return None

        async with self._lock(user_id):
            if self.memory_enabled:
                reply = await self._onboard(user_id, msg.content)
                if reply is not None:
                    await transport.create(reply)
                    return None
            return await self._run_turn(msg, transport)

    def stop(self, user_id: str) -> bool:
        bridge = self._running.get(user_id)
        if bridge is None:
            return False
        logger.info("Aborting running turn for {}", user_id)
        bridge.abort()
        return True

    async def reset(self, user_id: str) -> None:
        agent = self._agents.pop(user_id, None)
        if agent is not None:
            agent.reset()
        self._onboarding.pop(user_id, None)
        self.touches.consume(user_id)
        await asyncio.to_thread(self.transcripts.clear, user_id)
        logger.info("Reset conversation for {}", user_id)

    async def _onboard(self, user_id: str, text: str) -> str | None:
        stage = self._onboarding.get(user_id)
        if stage is None:
            if await asyncio.to_thread(self.profiles.load, user_id) is not None:
                return None
            self._onboarding[user_id] = "ask_name"
            return "Hi! I'm mini-agi. What name should I call you?"

        answer = text.strip()
        if stage == "ask_name":
            await asyncio.to_thread(self.profiles.save, UserProfile(user_id=user_id, name=answer))
            self._onboarding[user_id] = "ask_tasks"
            return f"Nice to meet you, {answer}! What kinds of tasks do you want me to help with?"

        profile = await asyncio.to_thread(self.profiles.load, user_id)
        name = profile.name if profile else ""
        await asyncio.to_thread(
            self.profiles.save, UserProfile(user_id=user_id, name=name, task_preferences=answer)
        )
        self._onboarding.pop(user_id, None)
        return "Got it. Thanks! You can now ask me anything, and I'll remember this."

    async def _get_or_create_agent(self, user_id: str) -> AgentSource:
        agent = self._agents.get(user_id)
        if agent is not None:
            return agent

        profile = await asyncio.to_thread(self.profiles.load, user_id) if self.memory_enabled else None
        system_prompt = await asyncio.to_thread(self.context.build_system_prompt, user_id, profile)
        logger.info("Creating agent for user: {}", user_id)
        agent = self.agent_factory(
            AgentSpec(user_id=user_id, system_prompt=system_prompt, tools=self.tools, llm=self.config.llm)
        )

        transcript = await asyncio.to_thread(self.transcripts.load, user_id)
        if transcript:
            logger.info("Restoring {} messages for user: {}", len(transcript), user_id)
            agent.restore_messages([entry.model_dump() for entry in transcript])

        self._agents[user_id] = agent
        return agent

    async def _run_turn(self, msg: InboundMessage, transport: ChatTransport) -> str | None:
        user_id = msg.sender_id
        preview = msg.content[:80] + "..." if len(msg.content) > 80 else msg.content
        logger.info("Processing message from {}:{}: {}", msg.channel, user_id, preview)

        agent = await self._get_or_create_agent(user_id)
        streaming = self.config.streaming
        renderer = StreamRenderer(
            transport,
            edit_interval=streaming.edit_interval_ms / 1000,
            activity_interval=streaming.activity_interval_ms / 1000,
        )
        recorder = TurnRecorder(
            user_id=user_id,
            user_message=msg.content,
            transcripts=self.transcripts,
            touches=self.touches,
            tasks=self.tasks if self.memory_enabled else None,
            excerpt_chars=streaming.note_excerpt_chars,
        )

        bridge = EventBridge(agent, abort_grace=streaming.abort_grace_ms / 1000)
        self._running[user_id] = bridge
        try:
            final_text = await renderer.render_turn(bridge.stream(msg.content), recorder)
        except Exception as e:
            logger.error("Error processing message from {}: {}", user_id, e)
            return None
        finally:
            self._running.pop(user_id, None)

        preview = final_text[:120] + "..." if len(final_text) > 120 else final_text
        logger.info("Response to {}:{}: {}", msg.channel, user_id, preview)

        if self.memory_enabled and final_text:
            try:
                await asyncio.to_thread(self.notes.append_entry, user_id, msg.content, final_text)
            except OSError as e:
                logger.error("Failed to persist memory: {}", e)
        return final_text
