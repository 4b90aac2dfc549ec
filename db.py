import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional
from uuid import uuid4

from db_pool import SQLiteConnectionPool

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _exec(sql: str, params: Iterable = ()):
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        con.commit()
        return cur


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _decode_json_field(value: Optional[str]) -> Any:
    if value is None or value == "":
        return None
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return None


# -------------- schema helpers --------------
def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS conversations (
              id                 TEXT PRIMARY KEY,
              user_id            TEXT NOT NULL,
              subject            TEXT NOT NULL DEFAULT 'general',
              proficiency_level  TEXT NOT NULL DEFAULT 'intermediate',
              title              TEXT,
              last_mode          TEXT,
              last_model         TEXT,
              archived           INTEGER NOT NULL DEFAULT 0,
              created_at         TEXT NOT NULL,
              updated_at         TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_conversations_user
              ON conversations(user_id, archived, updated_at DESC);

            CREATE TABLE IF NOT EXISTS messages (
              id               INTEGER PRIMARY KEY AUTOINCREMENT,
              conversation_id  TEXT NOT NULL,
              role             TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
              content          TEXT NOT NULL,
              metadata         TEXT,
              created_at       TEXT NOT NULL,
              FOREIGN KEY(conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, id);

            CREATE TABLE IF NOT EXISTS llm_metrics (
              id               INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id          TEXT,
              conversation_id  TEXT,
              mode             TEXT,
              model_requested  TEXT,
              model_used       TEXT,
              model_id         TEXT,
              latency_ms       INTEGER,
              error            TEXT,
              created_at       TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_llm_metrics_user ON llm_metrics(user_id, created_at DESC);
            """
        )
        con.commit()


# -------------- conversations --------------
def _conversation_row(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    data["archived"] = bool(data.get("archived"))
    return data


def create_conversation(
    user_id: str,
    subject: str,
    proficiency_level: str,
    title: Optional[str] = None,
) -> Dict[str, Any]:
    conversation_id = uuid4().hex
    now = _now()
    if not title:
        title = f"{subject} - {datetime.now(timezone.utc).date().isoformat()}"
    _exec(
        """
        INSERT INTO conversations(id, user_id, subject, proficiency_level, title, created_at, updated_at)
        VALUES (?,?,?,?,?,?,?)
        """,
        (conversation_id, user_id, subject, proficiency_level, title, now, now),
    )
    return {
        "id": conversation_id,
        "user_id": user_id,
        "subject": subject,
        "proficiency_level": proficiency_level,
        "title": title,
        "last_mode": None,
        "last_model": None,
        "archived": False,
        "created_at": now,
        "updated_at": now,
        "messages": [],
    }


def list_messages(conversation_id: str) -> List[Dict[str, Any]]:
    rows = _query(
        "SELECT role, content, metadata, created_at FROM messages WHERE conversation_id = ? ORDER BY id",
        (conversation_id,),
    )
    messages: List[Dict[str, Any]] = []
    for row in rows:
        message: Dict[str, Any] = {
            "role": row["role"],
            "content": row["content"],
            "timestamp": row["created_at"],
        }
        metadata = _decode_json_field(row["metadata"])
        if isinstance(metadata, dict):
            message["metadata"] = metadata
        messages.append(message)
    return messages


def get_conversation(conversation_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Return the conversation with its messages, or ``None`` if unknown or not owned by ``user_id``."""
    sql = "SELECT * FROM conversations WHERE id = ?"
    params: List[Any] = [conversation_id]
    if user_id is not None:
        sql += " AND user_id = ?"
        params.append(user_id)
    rows = _query(sql, params)
    if not rows:
        return None
    conversation = _conversation_row(rows[0])
    conversation["messages"] = list_messages(conversation_id)
    return conversation


def list_conversations(
    user_id: str,
    subject: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    include_archived: bool = False,
) -> List[Dict[str, Any]]:
    sql = """
        SELECT c.*, (SELECT COUNT(*) FROM messages m WHERE m.conversation_id = c.id) AS message_count
        FROM conversations c
        WHERE c.user_id = ?
    """
    params: List[Any] = [user_id]
    if subject:
        sql += " AND c.subject = ?"
        params.append(subject)
    if not include_archived:
        sql += " AND c.archived = 0"
    sql += " ORDER BY c.updated_at DESC, c.created_at DESC LIMIT ? OFFSET ?"
    params.extend([max(1, int(limit)), max(0, int(offset))])
    return [_conversation_row(row) for row in _query(sql, params)]


def _message_fields(message: Any) -> tuple[str, str, Optional[str], str]:
    if hasattr(message, "model_dump"):
        message = message.model_dump(mode="json")
    if not isinstance(message, Mapping):
        raise TypeError(f"Unsupported message type: {type(message).__name__}")
    metadata = message.get("metadata")
    return (
        str(message["role"]),
        str(message.get("content") or ""),
        json_dumps(metadata) if metadata is not None else None,
        str(message.get("timestamp") or _now()),
    )


def append_messages(
    conversation_id: str,
    messages: Iterable[Any],
    *,
    last_mode: Optional[str] = None,
    last_model: Optional[str] = None,
) -> int:
    """Append ``messages`` in order and update the conversation's routing summary."""
    rows = [(conversation_id, *_message_fields(message)) for message in messages]
    with _conn() as con:
        exists = con.execute("SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)).fetchone()
        if not exists:
            raise KeyError(f"Unknown conversation: {conversation_id}")
        con.executemany(
            "INSERT INTO messages(conversation_id, role, content, metadata, created_at) VALUES (?,?,?,?,?)",
            rows,
        )
        con.execute(
            """
            UPDATE conversations
            SET updated_at = ?,
                last_mode = COALESCE(?, last_mode),
                last_model = COALESCE(?, last_model)
            WHERE id = ?
            """,
            (_now(), last_mode, last_model, conversation_id),
        )
        con.commit()
    return len(rows)


def archive_conversation(conversation_id: str, user_id: str) -> bool:
    """Soft-archive a conversation; returns ``False`` if it is unknown or foreign."""
    cur = _exec(
        "UPDATE conversations SET archived = 1, updated_at = ? WHERE id = ? AND user_id = ?",
        (_now(), conversation_id, user_id),
    )
    return cur.rowcount > 0


# -------------- metrics --------------
def record_llm_metric(
    user_id: Optional[str],
    conversation_id: Optional[str],
    mode: str,
    model_requested: str,
    model_used: str,
    *,
    model_id: Optional[str] = None,
    latency_ms: Optional[int] = None,
    error: Optional[str] = None,
) -> None:
    _exec(
        """
        INSERT INTO llm_metrics(user_id, conversation_id, mode, model_requested, model_used, model_id, latency_ms, error, created_at)
        VALUES (?,?,?,?,?,?,?,?,?)
        """,
        (
            user_id,
            conversation_id,
            mode,
            model_requested,
            model_used,
            model_id,
            None if latency_ms is None else int(latency_ms),
            error,
            _now(),
        ),
    )


def list_llm_metrics(user_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM llm_metrics"
    params: List[Any] = []
    if user_id is not None:
        sql += " WHERE user_id = ?"
        params.append(user_id)
    sql += " ORDER BY id DESC LIMIT ?"
    params.append(max(1, int(limit)))
    return [dict(row) for row in _query(sql, params)]


class SQLiteConversationStore:
    """Conversation store backed by the module-level SQLite pool."""

    def create_conversation(self, user_id: str, subject: str, proficiency_level: str) -> Dict[str, Any]:
        return create_conversation(user_id, subject, proficiency_level)

    def get_conversation(self, conversation_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return get_conversation(conversation_id, user_id)

    def append_messages(
        self,
        conversation_id: str,
        messages: Iterable[Any],
        *,
        last_mode: Optional[str] = None,
        last_model: Optional[str] = None,
    ) -> int:
        return append_messages(conversation_id, messages, last_mode=last_mode, last_model=last_model)
