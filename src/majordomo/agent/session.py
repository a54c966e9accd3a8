"""
Session store: persistent conversation history in JSON Lines.

Each session lives in `<sessions_dir>/<id>.jsonl`. The first line is a
`session` record with id, timestamps and metadata; every following line is
one `message` record. Line order is conversation order.
"""

import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable
from uuid import uuid4

import structlog

from ..errors import PersistenceError
from ..llm.base import Message, TextBlock

logger = structlog.get_logger()

COMPACTION_MIN_MESSAGES = 20
DEFAULT_KEEP_RECENT = 10
PREVIEW_CHARS = 100

SUMMARY_ACK = "I understand. I have the context from our previous conversation."

Summarizer = Callable[[list[Message]], Awaitable[str]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Session:
    """A conversation and its history."""

    id: str
    created_at: datetime
    updated_at: datetime
    messages: list[Message] = field(default_factory=list)
    metadata: dict[str, Any] | None = None

    @classmethod
    def empty(cls, session_id: str, metadata: dict[str, Any] | None = None) -> "Session":
        now = _now()
        return cls(id=session_id, created_at=now, updated_at=now, metadata=metadata)


@dataclass
class SessionSummary:
    """Listing entry for a stored session."""

    id: str
    created_at: datetime
    updated_at: datetime
    message_count: int
    preview: str


def _preview(session: Session) -> str:
    """First user message's text, truncated."""
    first_user = next((m for m in session.messages if m.role == "user"), None)
    if first_user is None:
        return "(empty session)"

    if isinstance(first_user.content, str):
        text = first_user.content
    else:
        text_block = next((b for b in first_user.content if isinstance(b, TextBlock)), None)
        if text_block is None:
            return "(no text preview)"
        text = text_block.text

    return text[:PREVIEW_CHARS] + ("..." if len(text) > PREVIEW_CHARS else "")


class SessionStore:
    """Manages conversation sessions on disk with an in-memory cache.

    The cache is authoritative for loaded sessions. It is not synchronized:
    two concurrent runs against the same session id race on it.
    """

    def __init__(self, sessions_dir: str | Path):
        self.sessions_dir = Path(sessions_dir).expanduser()
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self._sessions: dict[str, Session] = {}

    def _path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}.jsonl"

    def create(self, metadata: dict[str, Any] | None = None) -> str:
        """Create a new session in memory and return its id."""
        session_id = str(uuid4())
        self._sessions[session_id] = Session.empty(session_id, metadata)
        logger.debug("Created session", session_id=session_id)
        return session_id

    def get(self, session_id: str) -> Session:
        """Get a session from cache or disk, or synthesize an empty one."""
        session = self._sessions.get(session_id)
        if session is not None:
            return session

        path = self._path(session_id)
        if path.exists():
            session = self._load(session_id, path)
        else:
            session = Session.empty(session_id)

        self._sessions[session_id] = session
        return session

    def save(self, session_id: str) -> None:
        """Persist a cached session, advancing its updated_at."""
        session = self._sessions.get(session_id)
        if session is None:
            return

        now = _now()
        if now <= session.updated_at:
            now = session.updated_at + timedelta(microseconds=1)
        session.updated_at = now

        self._write(session, session.messages)

    def _write(self, session: Session, messages: list[Message]) -> None:
        lines = [json.dumps({
            "type": "session",
            "id": session.id,
            "createdAt": session.created_at.isoformat(),
            "updatedAt": session.updated_at.isoformat(),
            "metadata": session.metadata,
        })]
        for message in messages:
            lines.append(json.dumps({"type": "message", **message.to_dict()}))

        path = self._path(session.id)
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.sessions_dir,
                prefix=f".{session.id}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write("\n".join(lines) + "\n")
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            logger.error("Failed to save session", session_id=session.id, error=str(e))
            raise PersistenceError(session.id, f"Failed to save session {session.id}: {e}") from e

    def _load(self, session_id: str, path: Path) -> Session:
        session = Session.empty(session_id)
        try:
            raw_lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise PersistenceError(session_id, f"Failed to read session {session_id}: {e}") from e
        except ValueError as e:
            raise PersistenceError(session_id, f"Corrupted session {session_id}: {e}") from e

        try:
            for line in raw_lines:
                if not line.strip():
                    continue
                data = json.loads(line)
                if not isinstance(data, dict):
                    raise PersistenceError(session_id, f"Corrupted session {session_id}: record is not an object")
                if data.get("type") == "session":
                    session.id = data.get("id", session_id)
                    session.created_at = _parse_timestamp(data["createdAt"])
                    session.updated_at = _parse_timestamp(data["updatedAt"])
                    session.metadata = data.get("metadata")
                elif data.get("type") == "message":
                    session.messages.append(Message.from_dict(data))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise PersistenceError(session_id, f"Corrupted session {session_id}: {e}") from e

        return session

    def list(self) -> list[SessionSummary]:
        """Summaries of all stored sessions, most recently updated first."""
        summaries = []

        for path in self.sessions_dir.glob("*.jsonl"):
            try:
                session = self.get(path.stem)
            except PersistenceError as e:
                logger.warning("Skipping unreadable session", path=str(path), error=str(e))
                continue

            summaries.append(SessionSummary(
                id=session.id,
                created_at=session.created_at,
                updated_at=session.updated_at,
                message_count=len(session.messages),
                preview=_preview(session),
            ))

        summaries.sort(key=lambda s: s.updated_at, reverse=True)
        return summaries

    def delete(self, session_id: str) -> None:
        """Remove a session from cache and disk."""
        self._sessions.pop(session_id, None)
        try:
            self._path(session_id).unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(session_id, f"Failed to delete session {session_id}: {e}") from e
        logger.info("Session deleted", session_id=session_id)

    def get_most_recent(self) -> str | None:
        """Id of the session with the greatest updated_at, if any."""
        summaries = self.list()
        return summaries[0].id if summaries else None

    async def compact(
        self,
        session_id: str,
        summarize: Summarizer,
        keep_recent: int = DEFAULT_KEEP_RECENT,
        min_messages: int = COMPACTION_MIN_MESSAGES,
    ) -> bool:
        """Replace older messages with a summary, keeping the recent tail.

        Returns True when the session was compacted. On any failure the
        original history is left in place, both in memory and on disk.
        """
        session = self.get(session_id)
        if len(session.messages) < min_messages:
            return False

        original_messages = session.messages
        original_updated_at = session.updated_at

        older = original_messages[:-keep_recent] if keep_recent else list(original_messages)
        recent = original_messages[-keep_recent:] if keep_recent else []

        summary = await summarize(list(older))

        session.messages = [
            Message(role="user", content=f"[Previous conversation summary: {summary}]"),
            Message(role="assistant", content=SUMMARY_ACK),
            *recent,
        ]

        try:
            self.save(session_id)
        except PersistenceError:
            session.messages = original_messages
            session.updated_at = original_updated_at
            raise

        logger.info(
            "Session compacted",
            session_id=session_id,
            original=len(original_messages),
            compacted=len(session.messages),
        )
        return True
