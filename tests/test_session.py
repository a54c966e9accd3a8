"""
Tests for the JSONL session store.
"""

import json
from datetime import timezone
from unittest.mock import AsyncMock, patch

import pytest

from majordomo.agent.session import SUMMARY_ACK, SessionStore
from majordomo.errors import PersistenceError
from majordomo.llm.base import Message, TextBlock, ToolResultBlock, ToolUseBlock


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "sessions")


def _fill(store: SessionStore, session_id: str, count: int) -> None:
    session = store.get(session_id)
    for i in range(count):
        role = "user" if i % 2 == 0 else "assistant"
        session.messages.append(Message(role=role, content=f"Message {i}"))


def test_create_returns_distinct_ids(store):
    """Test creating sessions gives distinct ids."""
    first = store.create()
    second = store.create()

    assert first != second
    assert store.get(first).messages == []


def test_create_keeps_metadata(store):
    """Test session metadata is kept."""
    session_id = store.create({"channel": "cli"})
    assert store.get(session_id).metadata == {"channel": "cli"}


def test_create_is_memory_only_until_saved(store):
    """Test new sessions are not written until saved."""
    session_id = store.create()

    assert not (store.sessions_dir / f"{session_id}.jsonl").exists()
    assert store.list() == []


def test_get_unknown_id_synthesizes_empty_session(store):
    """Test unknown id gives an empty session."""
    session = store.get("does-not-exist")

    assert session.id == "does-not-exist"
    assert session.messages == []


def test_save_then_get_round_trip(store, tmp_path):
    """Test saving and reloading a session."""
    session_id = store.create({"source": "test"})
    session = store.get(session_id)
    session.messages.extend([
        Message(role="user", content="list my slack channels"),
        Message(role="assistant", content=[
            TextBlock(text="Checking."),
            ToolUseBlock(id="toolu_1", name="slack_list_channels", input={}),
        ]),
        Message(role="user", content=[
            ToolResultBlock(tool_use_id="toolu_1", content="#general, #random"),
        ]),
        Message(role="assistant", content="You are in #general and #random."),
    ])
    store.save(session_id)

    reloaded = SessionStore(tmp_path / "sessions").get(session_id)

    assert reloaded.messages == session.messages
    assert reloaded.metadata == {"source": "test"}
    assert reloaded.created_at == session.created_at
    assert reloaded.updated_at == session.updated_at


def test_saved_file_format(store):
    """Test the JSONL file format."""
    session_id = store.create()
    store.get(session_id).messages.append(Message(role="user", content="hello"))
    store.save(session_id)

    lines = (store.sessions_dir / f"{session_id}.jsonl").read_text().splitlines()
    header = json.loads(lines[0])
    message = json.loads(lines[1])

    assert header["type"] == "session"
    assert header["id"] == session_id
    assert "createdAt" in header and "updatedAt" in header
    assert message == {"type": "message", "role": "user", "content": "hello"}


def test_save_advances_updated_at(store):
    """Test each save advances updated_at."""
    session_id = store.create()
    store.save(session_id)
    first = store.get(session_id).updated_at

    store.save(session_id)
    second = store.get(session_id).updated_at

    assert second > first


def test_save_unknown_id_is_noop(store):
    """Test saving an unknown id does nothing."""
    store.save("never-created")
    assert not (store.sessions_dir / "never-created.jsonl").exists()


def test_save_failure_raises_persistence_error(store):
    """Test failed writes raise PersistenceError."""
    session_id = store.create()

    with patch("majordomo.agent.session.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(PersistenceError):
            store.save(session_id)

    assert not (store.sessions_dir / f"{session_id}.jsonl").exists()
    assert list(store.sessions_dir.glob("*.tmp")) == []


def test_list_sorted_most_recent_first(store):
    """Test listing sorts by most recent."""
    first = store.create()
    second = store.create()
    store.get(first).messages.append(Message(role="user", content="first"))
    store.get(second).messages.append(Message(role="user", content="second"))

    store.save(first)
    store.save(second)

    summaries = store.list()
    assert [s.id for s in summaries] == [second, first]
    assert summaries[0].preview == "second"
    assert summaries[0].message_count == 1


def test_list_preview_placeholders(store):
    """Test preview placeholders."""
    empty = store.create()
    tools_only = store.create()
    store.get(tools_only).messages.append(Message(role="user", content=[
        ToolResultBlock(tool_use_id="t1", content="ok"),
    ]))
    store.save(empty)
    store.save(tools_only)

    previews = {s.id: s.preview for s in store.list()}
    assert previews[empty] == "(empty session)"
    assert previews[tools_only] == "(no text preview)"


def test_list_preview_truncated(store):
    """Test long previews are truncated."""
    session_id = store.create()
    store.get(session_id).messages.append(Message(role="user", content="x" * 150))
    store.save(session_id)

    preview = store.list()[0].preview
    assert preview == "x" * 100 + "..."


def test_list_skips_corrupted_sessions(store):
    """Test corrupted sessions are skipped by list."""
    good = store.create()
    store.save(good)
    (store.sessions_dir / "broken.jsonl").write_text("{not json\n")

    summaries = store.list()
    assert [s.id for s in summaries] == [good]


@pytest.mark.parametrize("payload", [
    b"\xff\xfe garbage\n",
    b"null\n",
    b'["x"]\n',
    b'"str"\n',
    b'{"type": "message", "role": "user", "content": ["loose string"]}\n',
])
def test_list_skips_undecodable_and_non_object_records(store, payload):
    """Test that invalid UTF-8 and non-object records are skipped by list."""
    good = store.create()
    store.save(good)
    (store.sessions_dir / "broken.jsonl").write_bytes(payload)

    assert [s.id for s in store.list()] == [good]
    assert store.get_most_recent() == good


def test_non_object_record_raises_persistence_error(store):
    """Test that loading a record that is not an object raises PersistenceError."""
    (store.sessions_dir / "broken.jsonl").write_text("null\n")

    with pytest.raises(PersistenceError):
        store.get("broken")


def test_naive_timestamps_read_as_utc(store):
    """Test that timestamps without an offset are treated as UTC."""
    good = store.create()
    store.save(good)
    header = {
        "type": "session",
        "id": "legacy",
        "createdAt": "2024-01-01T00:00:00",
        "updatedAt": "2024-01-01T00:00:00",
        "metadata": None,
    }
    (store.sessions_dir / "legacy.jsonl").write_text(json.dumps(header) + "\n")

    assert store.get_most_recent() == good
    assert [s.id for s in store.list()] == [good, "legacy"]
    assert store.get("legacy").updated_at.tzinfo is timezone.utc


def test_delete_removes_cache_and_file(store):
    """Test deleting a session."""
    session_id = store.create()
    store.get(session_id).messages.append(Message(role="user", content="bye"))
    store.save(session_id)

    store.delete(session_id)

    assert not (store.sessions_dir / f"{session_id}.jsonl").exists()
    assert store.get(session_id).messages == []


def test_get_most_recent(store):
    """Test most recent session lookup."""
    assert store.get_most_recent() is None

    older = store.create()
    newer = store.create()
    store.save(older)
    store.save(newer)

    assert store.get_most_recent() == newer


@pytest.mark.asyncio
async def test_compact_below_threshold_is_noop(store):
    """Test compaction below the threshold."""
    session_id = store.create()
    _fill(store, session_id, 19)
    summarize = AsyncMock(return_value="summary")

    compacted = await store.compact(session_id, summarize)

    assert compacted is False
    assert len(store.get(session_id).messages) == 19
    summarize.assert_not_called()


@pytest.mark.asyncio
async def test_compact_keeps_tail(store):
    """Test compaction keeps the recent tail."""
    session_id = store.create()
    _fill(store, session_id, 25)
    original = list(store.get(session_id).messages)
    summarize = AsyncMock(return_value="we talked a lot")

    compacted = await store.compact(session_id, summarize, keep_recent=10)

    messages = store.get(session_id).messages
    assert compacted is True
    assert len(messages) == 13
    assert messages[0].role == "user"
    assert "we talked a lot" in messages[0].content
    assert messages[1] == Message(role="assistant", content=SUMMARY_ACK)
    assert messages[2:] == original[15:]
    assert summarize.await_args.args[0] == original[:15]

    reloaded = SessionStore(store.sessions_dir).get(session_id)
    assert len(reloaded.messages) == 13


@pytest.mark.asyncio
async def test_compact_summarizer_failure_leaves_history(store):
    """Test summarizer failure leaves history intact."""
    session_id = store.create()
    _fill(store, session_id, 25)
    original = list(store.get(session_id).messages)

    with pytest.raises(RuntimeError):
        await store.compact(session_id, AsyncMock(side_effect=RuntimeError("boom")))

    assert store.get(session_id).messages == original


@pytest.mark.asyncio
async def test_compact_save_failure_restores_history(store):
    """Test save failure restores history."""
    session_id = store.create()
    _fill(store, session_id, 25)
    store.save(session_id)
    original = list(store.get(session_id).messages)

    with patch("majordomo.agent.session.os.replace", side_effect=OSError("read-only")):
        with pytest.raises(PersistenceError):
            await store.compact(session_id, AsyncMock(return_value="summary"))

    assert store.get(session_id).messages == original
    reloaded = SessionStore(store.sessions_dir).get(session_id)
    assert len(reloaded.messages) == 25
