import asyncio

import pytest

from miniagi.agent.events import TextDelta
from miniagi.bus.events import InboundMessage
from miniagi.config.schema import Config, MemoryConfig, SessionConfig, StreamingConfig, TelegramConfig
from miniagi.gateway import START_TEXT, Gateway
from miniagi.memory.profile import UserProfile
from miniagi.session.transcript import TranscriptEntry


def make_config(tmp_path, allowed=(), memory=True) -> Config:
    return Config(
        telegram=TelegramConfig(bot_token="token", allowed_users=list(allowed)),
        workspace_root=tmp_path,
        memory=MemoryConfig(enabled=memory, dir=tmp_path / "memory"),
        session=SessionConfig(dir=tmp_path / "session"),
        streaming=StreamingConfig(edit_interval_ms=1000, activity_interval_ms=60000),
    )


def message(text, user_id="42", username="alice") -> InboundMessage:
    return InboundMessage(channel="telegram", sender_id=user_id, chat_id=user_id, content=text, username=username)


class RecordingFactory:
    def __init__(self, make):
        self.make = make
        self.specs = []
        self.agents = []

    def __call__(self, spec):
        agent = self.make()
        self.specs.append(spec)
        self.agents.append(agent)
        return agent


@pytest.fixture
def onboarded():
    def _onboard(gateway, user_id="42", name="Ada"):
        gateway.profiles.save(UserProfile(user_id=user_id, name=name, task_preferences="coding"))
    return _onboard


def test_unauthorized_users_are_rejected(tmp_path, fake_agent, transport):
    factory = RecordingFactory(fake_agent)
    gateway = Gateway(make_config(tmp_path, allowed=["7"]), factory)

    assert asyncio.run(gateway.handle(message("hi"), transport)) is None
    assert transport.texts == ["Sorry, you're not authorized to use this bot."]
    assert factory.agents == []


def test_allowlist_matches_id_or_username(tmp_path, fake_agent):
    gateway = Gateway(make_config(tmp_path, allowed=["alice", "99"]), RecordingFactory(fake_agent))

    assert gateway.is_allowed(message("hi", user_id="1", username="alice"))
    assert gateway.is_allowed(message("hi", user_id="99", username=None))
    assert not gateway.is_allowed(message("hi", user_id="2", username="bob"))


def test_start_command(tmp_path, fake_agent, transport):
    gateway = Gateway(make_config(tmp_path), RecordingFactory(fake_agent))
    asyncio.run(gateway.handle(message("/start"), transport))
    assert transport.texts == [START_TEXT]


def test_turn_streams_reply_and_persists(tmp_path, fake_agent, transport, onboarded):
    factory = RecordingFactory(lambda: fake_agent(script=[TextDelta("Hello "), TextDelta("**Ada**")]))
    gateway = Gateway(make_config(tmp_path), factory)
    onboarded(gateway)

    reply = asyncio.run(gateway.handle(message("hi there"), transport))

    assert reply == "Hello **Ada**"
    assert transport.texts[-1] == "Hello Ada"
    assert factory.agents[0].prompts == ["hi there"]
    assert [(e.role, e.content) for e in gateway.transcripts.load("42")] == [
        ("user", "hi there"),
        ("assistant", "Hello **Ada**"),
    ]
    daily = list((tmp_path / "memory").glob("????-??-??.md"))
    assert len(daily) == 1
    assert "**User (42)**:\nhi there" in daily[0].read_text(encoding="utf-8")


def test_system_prompt_includes_profile_and_tasks(tmp_path, fake_agent, transport, onboarded):
    factory = RecordingFactory(lambda: fake_agent(script=[TextDelta("ok")]))
    gateway = Gateway(make_config(tmp_path), factory)
    onboarded(gateway)
    gateway.tasks.upsert("42", title="Ship release")

    asyncio.run(gateway.handle(message("hi"), transport))

    spec = factory.specs[0]
    assert spec.user_id == "42"
    assert "task_memory" in spec.tools
    assert "- Name: Ada" in spec.system_prompt
    assert "[active] Ship release" in spec.system_prompt
    assert str(tmp_path) in spec.system_prompt


def test_onboarding_collects_profile_before_first_turn(tmp_path, fake_agent, transport):
    factory = RecordingFactory(lambda: fake_agent(script=[TextDelta("sure")]))
    gateway = Gateway(make_config(tmp_path), factory)

    async def run():
        for text in ["hello", "Ada", "code reviews", "what's next?"]:
            await gateway.handle(message(text), transport)

    asyncio.run(run())

    assert transport.texts[:3] == [
        "Hi! I'm mini-agi. What name should I call you?",
        "Nice to meet you, Ada! What kinds of tasks do you want me to help with?",
        "Got it. Thanks! You can now ask me anything, and I'll remember this.",
    ]
    profile = gateway.profiles.load("42")
    assert (profile.name, profile.task_preferences) == ("Ada", "code reviews")
    assert factory.agents[0].prompts == ["what's next?"]
    assert "Task preferences: code reviews" in factory.specs[0].system_prompt


def test_memory_disabled_skips_onboarding_and_task_tool(tmp_path, fake_agent, transport):
    factory = RecordingFactory(lambda: fake_agent(script=[TextDelta("hi")]))
    gateway = Gateway(make_config(tmp_path, memory=False), factory)

    assert asyncio.run(gateway.handle(message("hello"), transport)) == "hi"
    assert "task_memory" not in gateway.tools
    assert not (tmp_path / "memory").exists()


def test_agent_is_rehydrated_from_transcript(tmp_path, fake_agent, transport, onboarded):
    factory = RecordingFactory(lambda: fake_agent(script=[TextDelta("welcome back")]))
    gateway = Gateway(make_config(tmp_path), factory)
    onboarded(gateway)
    gateway.transcripts.append("42", [
        TranscriptEntry(role="user", content="remember 7", timestamp=1),
        TranscriptEntry(role="assistant", content="noted", timestamp=2),
    ])

    asyncio.run(gateway.handle(message("what number?"), transport))

    assert factory.agents[0].restored == [
        {"role": "user", "content": "remember 7", "timestamp": 1},
        {"role": "assistant", "content": "noted", "timestamp": 2},
    ]


def test_agent_is_reused_across_turns(tmp_path, fake_agent, transport, onboarded):
    factory = RecordingFactory(lambda: fake_agent(script=[TextDelta("ok")]))
    gateway = Gateway(make_config(tmp_path), factory)
    onboarded(gateway)

    async def run():
        await gateway.handle(message("one"), transport)
        await gateway.handle(message("two"), transport)

    asyncio.run(run())

    assert len(factory.agents) == 1
    assert factory.agents[0].prompts == ["one", "two"]


def test_reset_clears_agent_and_transcript(tmp_path, fake_agent, transport, onboarded):
    factory = RecordingFactory(lambda: fake_agent(script=[TextDelta("ok")]))
    gateway = Gateway(make_config(tmp_path), factory)
    onboarded(gateway)

    async def run():
        await gateway.handle(message("one"), transport)
        await gateway.handle(message("/reset"), transport)
        await gateway.handle(message("two"), transport)

    asyncio.run(run())

    assert "Conversation reset. Starting fresh!" in transport.texts
    first, second = factory.agents
    assert first.reset_count == 1
    assert second.restored is None
    assert [e.content for e in gateway.transcripts.load("42")] == ["two", "ok"]


def test_stop_aborts_running_turn(tmp_path, fake_agent, fake_transport, onboarded):
    factory = RecordingFactory(lambda: fake_agent(script=[TextDelta("working on it")], block=True))
    gateway = Gateway(make_config(tmp_path), factory)
    onboarded(gateway)
    turn_transport = fake_transport()
    stop_transport = fake_transport()

    async def run():
        turn = asyncio.create_task(gateway.handle(message("long job"), turn_transport))
        while not turn_transport.calls:
            await asyncio.sleep(0)
        await gateway.handle(message("/stop"), stop_transport)
        return await turn

    assert asyncio.run(run()) == "working on it"
    assert stop_transport.texts == ["Operation aborted."]
    assert factory.agents[0].aborted
    assert gateway.stop("42") is False


def test_stop_when_idle(tmp_path, fake_agent, transport):
    gateway = Gateway(make_config(tmp_path), RecordingFactory(fake_agent))
    asyncio.run(gateway.handle(message("/stop"), transport))
    assert transport.texts == ["Nothing is running."]


def test_failed_turn_is_reported(tmp_path, fake_agent, transport, onboarded):
    factory = RecordingFactory(lambda: fake_agent(error=RuntimeError("model unavailable")))
    gateway = Gateway(make_config(tmp_path), factory)
    onboarded(gateway)

    assert asyncio.run(gateway.handle(message("hi"), transport)) is None
    assert transport.texts == ["❌ Error: model unavailable"]
    assert [e.role for e in gateway.transcripts.load("42")] == ["user"]


def test_task_tool_calls_produce_conversation_notes(tmp_path, fake_agent, transport, onboarded):
    results = []
    gateway = None

    async def use_tool(text):
        results.append(await gateway.tools.execute(
            "task_memory", {"action": "create_task", "user_id": "42", "title": "Fix login"}
        ))

    factory = RecordingFactory(lambda: fake_agent(script=[TextDelta("Tracking it.")], on_prompt=use_tool))
    gateway = Gateway(make_config(tmp_path), factory)
    onboarded(gateway)

    asyncio.run(gateway.handle(message("please track the login bug"), transport))

    assert results[0].startswith("Created task ")
    (task,) = gateway.tasks.list("42")
    log = gateway.tasks.log_path("42", task.task_id).read_text(encoding="utf-8")
    assert "### Conversation Note\nAction: create_task\n\nUser: please track the login bug\n\nAssistant: Tracking it." in log
    assert gateway.touches.pending("42") == 0
