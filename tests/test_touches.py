import asyncio

import pytest

from miniagi.memory.tasks import TaskStore
from miniagi.memory.touches import TaskTouchLog
from miniagi.session.recorder import TurnRecorder
from miniagi.session.transcript import TranscriptStore


@pytest.fixture
def store(tmp_path):
    return TaskStore(tmp_path / "memory")


def _conversation_notes(store, user_id, task_id):
    log = store.log_path(user_id, task_id).read_text(encoding="utf-8")
    return log.count("### Conversation Note")


def test_consume_returns_most_recent_first_and_clears():
    touches = TaskTouchLog()
    touches.touch("u1", "task_a", "create_task")
    touches.touch("u1", "task_b", "append_note")
    touches.touch("u1", "task_a", "update_task")

    consumed = touches.consume("u1")

    assert [(t.task_id, t.action) for t in consumed] == [
        ("task_a", "update_task"),
        ("task_b", "append_note"),
    ]
    assert touches.consume("u1") == []
    assert touches.pending("u1") == 0


def test_touches_are_per_user():
    touches = TaskTouchLog()
    touches.touch("u1", "task_a", "create_task")
    touches.touch("u2", "task_b", "create_task")

    assert [t.task_id for t in touches.consume("u2")] == ["task_b"]
    assert touches.pending("u1") == 1


def test_append_turn_notes_writes_one_note_per_task(store):
    task = store.upsert("u1", title="Fix bug")
    touches = TaskTouchLog()
    touches.touch("u1", task.task_id, "create_task")
    touches.touch("u1", task.task_id, "update_task")

    written = touches.append_turn_notes(store, "u1", "please fix it", "On it.")

    assert written == 1
    log = store.log_path("u1", task.task_id).read_text(encoding="utf-8")
    assert "### Conversation Note\nAction: update_task\n\nUser: please fix it\n\nAssistant: On it." in log
    assert touches.pending("u1") == 0


def test_append_turn_notes_skips_missing_tasks(store):
    task = store.upsert("u1", title="real")
    touches = TaskTouchLog()
    touches.touch("u1", task.task_id, "create_task")
    touches.touch("u1", "task_gone", "append_note")

    assert touches.append_turn_notes(store, "u1", "hi", "") == 1
    log = store.log_path("u1", task.task_id).read_text(encoding="utf-8")
    assert "Assistant: (no reply)" in log


def test_excerpts_are_bounded(store):
    task = store.upsert("u1", title="long")
    touches = TaskTouchLog()
    touches.touch("u1", task.task_id, "append_note")

    touches.append_turn_notes(store, "u1", "x" * 5000, "y" * 5000, excerpt_chars=50)

    log = store.log_path("u1", task.task_id).read_text(encoding="utf-8")
    assert "x" * 51 not in log
    assert "y" * 51 not in log


def test_recorder_appends_transcript_and_notes(tmp_path, store):
    task = store.upsert("u1", title="Fix bug")
    touches = TaskTouchLog()
    touches.touch("u1", task.task_id, "update_task")
    transcripts = TranscriptStore(tmp_path / "sessions")
    recorder = TurnRecorder(
        user_id="u1",
        user_message="status?",
        transcripts=transcripts,
        touches=touches,
        tasks=store,
    )

    asyncio.run(recorder.record("  All good.  "))

    entries = transcripts.load("u1")
    assert [(e.role, e.content) for e in entries] == [("user", "status?"), ("assistant", "All good.")]
    assert _conversation_notes(store, "u1", task.task_id) == 1


def test_recorder_skips_empty_reply_and_drops_touches_without_store(tmp_path):
    touches = TaskTouchLog()
    touches.touch("u1", "task_a", "create_task")
    transcripts = TranscriptStore(tmp_path / "sessions")
    recorder = TurnRecorder(user_id="u1", user_message="hello", transcripts=transcripts, touches=touches)

    asyncio.run(recorder.record("   "))

    assert [e.role for e in transcripts.load("u1")] == ["user"]
    assert touches.pending("u1") == 0
