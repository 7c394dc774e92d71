"""
Append-only step log, keyed by session id.

The agent loop keeps its own in-memory message history; the store is the
audit trail, so a failed write is an error, never a warning.
"""
import asyncio
import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from .errors import TranscriptWriteError
from .models import Step, StepRole, ToolCallRecord, ToolResultRecord

logger = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "Computer Control Session"


class TranscriptStore(Protocol):
    async def create_session(self, name: str = DEFAULT_SESSION_NAME, session_id: Optional[str] = None) -> str: ...
    async def has_session(self, session_id: str) -> bool: ...
    async def append(self, session_id: str, step: Step) -> None: ...
    async def steps(self, session_id: str) -> List[Step]: ...


class InMemoryTranscriptStore:
    """Process-local store for tests and throwaway runs"""

    def __init__(self):
        self.sessions: Dict[str, str] = {}
        self.records: Dict[str, List[Step]] = {}

    async def create_session(self, name: str = DEFAULT_SESSION_NAME, session_id: Optional[str] = None) -> str:
        session_id = session_id or str(uuid.uuid4())
        self.sessions[session_id] = name
        self.records.setdefault(session_id, [])
        return session_id

    async def has_session(self, session_id: str) -> bool:
        return session_id in self.sessions

    async def append(self, session_id: str, step: Step) -> None:
        if session_id not in self.sessions:
            raise TranscriptWriteError(f"Unknown session {session_id}")
        self.records[session_id].append(step.model_copy(deep=True))

    async def steps(self, session_id: str) -> List[Step]:
        return list(self.records.get(session_id, []))


SCHEMA = """
CREATE TABLE IF NOT EXISTS chats (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    chat_id TEXT NOT NULL REFERENCES chats(id),
    role TEXT NOT NULL,
    content TEXT,
    tool_invocations TEXT,
    metadata TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages(chat_id, seq);
"""


class SQLiteTranscriptStore:
    """Transcript in a local SQLite file (chats + messages tables)"""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._initialized = False

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        if not self._initialized:
            conn.executescript(SCHEMA)
            self._initialized = True
        return conn

    def _insert_chat(self, session_id: str, name: str) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO chats (id, name, created_at) VALUES (?, ?, ?)",
                (session_id, name, _now()),
            )
            conn.commit()
        finally:
            conn.close()

    def _insert_step(self, session_id: str, step: Step) -> None:
        if step.role == StepRole.ASSISTANT:
            invocations = [c.model_dump() for c in step.tool_calls]
        else:
            invocations = [r.model_dump() for r in step.tool_results]
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO messages (id, chat_id, role, content, tool_invocations, metadata, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    str(uuid.uuid4()),
                    session_id,
                    step.role.value,
                    step.text,
                    json.dumps(invocations) if invocations else None,
                    json.dumps(step.metadata) if step.metadata else None,
                    _now(),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def _select(self, query: str, params: tuple) -> List[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(query, params).fetchall()
        finally:
            conn.close()

    async def create_session(self, name: str = DEFAULT_SESSION_NAME, session_id: Optional[str] = None) -> str:
        session_id = session_id or str(uuid.uuid4())
        try:
            await asyncio.to_thread(self._insert_chat, session_id, name)
        except sqlite3.Error as e:
            logger.error(f"Failed to create session: {e}")
            raise TranscriptWriteError(f"Failed to create session: {e}") from e
        return session_id

    async def has_session(self, session_id: str) -> bool:
        rows = await asyncio.to_thread(self._select, "SELECT 1 FROM chats WHERE id = ?", (session_id,))
        return bool(rows)

    async def append(self, session_id: str, step: Step) -> None:
        try:
            await asyncio.to_thread(self._insert_step, session_id, step)
        except sqlite3.Error as e:
            logger.error(f"❌ Failed to save {step.role.value} step: {e}")
            raise TranscriptWriteError(f"Failed to save {step.role.value} step: {e}") from e

    async def steps(self, session_id: str) -> List[Step]:
        rows = await asyncio.to_thread(
            self._select,
            "SELECT role, content, tool_invocations, metadata FROM messages WHERE chat_id = ? ORDER BY seq",
            (session_id,),
        )
        return [_row_to_step(row) for row in rows]


def _row_to_step(row: sqlite3.Row) -> Step:
    role = StepRole(row["role"])
    invocations = json.loads(row["tool_invocations"]) if row["tool_invocations"] else []
    return Step(
        role=role,
        text=row["content"],
        tool_calls=[ToolCallRecord.model_validate(i) for i in invocations] if role == StepRole.ASSISTANT else [],
        tool_results=[ToolResultRecord.model_validate(i) for i in invocations] if role == StepRole.TOOL else [],
        metadata=json.loads(row["metadata"]) if row["metadata"] else None,
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
