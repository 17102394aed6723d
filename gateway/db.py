"""SQLite persistence for chat sessions and scheduled tasks."""

from __future__ import annotations

import json
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from gateway.errors import DatabaseError, NotFoundError
from gateway.models import (
    ChatSession,
    ImageContent,
    ImageSource,
    Message,
    MessageContent,
    MessageMetadata,
    MessageRole,
    MultiModalContent,
    ProviderType,
    ScheduledChatTask,
    StructuredContent,
    TaskBinding,
    TextBlock,
    TextContent,
    ToolResultBlock,
    ToolUseBlock,
    now_ms,
)

SCHEMA_VERSION = 1


class Database:
    """Small SQLite wrapper with explicit schema management."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._path)
        except sqlite3.Error as exc:
            raise DatabaseError(f"Cannot open database {self._path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Database operation failed: {exc}") from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                provider_type TEXT NOT NULL,
                title TEXT,
                scheduled_task_id TEXT,
                created_at INTEGER NOT NULL,
                last_accessed_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content_json TEXT NOT NULL,
                metadata_json TEXT,
                archived INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL,
                FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS scheduled_tasks (
                id TEXT PRIMARY KEY,
                title TEXT,
                task_request TEXT NOT NULL,
                interval_seconds INTEGER NOT NULL,
                execute_immediately INTEGER NOT NULL,
                provider_type TEXT,
                model TEXT,
                created_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS task_bindings (
                task_id TEXT PRIMARY KEY,
                session_id TEXT,
                FOREIGN KEY(task_id) REFERENCES scheduled_tasks(id) ON DELETE CASCADE
            );
            """
        )

    # Sessions

    def create_session(
        self,
        provider_type: ProviderType = ProviderType.CLAUDE,
        title: str | None = None,
        scheduled_task_id: str | None = None,
    ) -> str:
        session_id = str(uuid.uuid4())
        now = now_ms()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sessions(id, provider_type, title, scheduled_task_id, created_at, last_accessed_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (session_id, provider_type.value, title, scheduled_task_id, now, now),
            )
        return session_id

    def get_session(self, session_id: str) -> ChatSession:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Session not found: {session_id}")
        return ChatSession(
            id=row["id"],
            provider_type=ProviderType(row["provider_type"]),
            title=row["title"],
            scheduled_task_id=row["scheduled_task_id"],
            created_at=row["created_at"],
            last_accessed_at=row["last_accessed_at"],
            messages=self.get_messages(session_id),
        )

    def list_session_ids(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT id FROM sessions ORDER BY created_at ASC").fetchall()
        return [row["id"] for row in rows]

    def update_session_title(self, session_id: str, title: str) -> None:
        with self._connect() as conn:
            cur = conn.execute("UPDATE sessions SET title = ? WHERE id = ?", (title, session_id))
        if cur.rowcount == 0:
            raise NotFoundError(f"Session not found: {session_id}")

    def delete_session(self, session_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
            conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))

    # Messages

    def add_message(self, session_id: str, message: Message) -> None:
        with self._connect() as conn:
            self._require_session(conn, session_id)
            _insert_message(conn, session_id, message)

    def append_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        metadata: MessageMetadata | None = None,
    ) -> None:
        self.add_message(session_id, Message(role=role, content=TextContent(content), metadata=metadata))

    def get_messages(self, session_id: str, include_archived: bool = False) -> list[Message]:
        query = "SELECT role, content_json, metadata_json, created_at FROM messages WHERE session_id = ?"
        if not include_archived:
            query += " AND archived = 0"
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY id ASC", (session_id,)).fetchall()
        return [
            Message(
                role=MessageRole(row["role"]),
                content=_content_from_json(json.loads(row["content_json"])),
                timestamp=row["created_at"],
                metadata=_metadata_from_json(row["metadata_json"]),
            )
            for row in rows
        ]

    def replace_messages(self, session_id: str, messages: list[Message]) -> None:
        """Archive the active history and make ``messages`` the new one."""

        with self._connect() as conn:
            self._require_session(conn, session_id)
            conn.execute("UPDATE messages SET archived = 1 WHERE session_id = ? AND archived = 0", (session_id,))
            for message in messages:
                _insert_message(conn, session_id, message)

    def clear_messages(self, session_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))

    # Scheduled tasks

    def save_task(self, task: ScheduledChatTask) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO scheduled_tasks(
                    id, title, task_request, interval_seconds, execute_immediately, provider_type, model, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title=excluded.title,
                    task_request=excluded.task_request,
                    interval_seconds=excluded.interval_seconds,
                    execute_immediately=excluded.execute_immediately,
                    provider_type=excluded.provider_type,
                    model=excluded.model
                """,
                (
                    task.id,
                    task.title,
                    task.task_request,
                    task.interval_seconds,
                    int(task.execute_immediately),
                    task.provider_type.value if task.provider_type else None,
                    task.model,
                    task.created_at,
                ),
            )

    def load_all_tasks(self) -> list[ScheduledChatTask]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM scheduled_tasks ORDER BY created_at ASC").fetchall()
        return [
            ScheduledChatTask(
                id=row["id"],
                title=row["title"],
                task_request=row["task_request"],
                interval_seconds=row["interval_seconds"],
                execute_immediately=bool(row["execute_immediately"]),
                provider_type=ProviderType(row["provider_type"]) if row["provider_type"] else None,
                model=row["model"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def delete_task(self, task_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM task_bindings WHERE task_id = ?", (task_id,))
            conn.execute("DELETE FROM scheduled_tasks WHERE id = ?", (task_id,))

    def save_binding(self, binding: TaskBinding) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO task_bindings(task_id, session_id) VALUES (?, ?)
                ON CONFLICT(task_id) DO UPDATE SET session_id=excluded.session_id
                """,
                (binding.task_id, binding.session_id),
            )

    def get_binding(self, task_id: str) -> TaskBinding:
        with self._connect() as conn:
            row = conn.execute("SELECT session_id FROM task_bindings WHERE task_id = ?", (task_id,)).fetchone()
        return TaskBinding(task_id=task_id, session_id=row["session_id"] if row else None)

    @staticmethod
    def _require_session(conn: sqlite3.Connection, session_id: str) -> None:
        if conn.execute("SELECT 1 FROM sessions WHERE id = ?", (session_id,)).fetchone() is None:
            raise NotFoundError(f"Session not found: {session_id}")


def _insert_message(conn: sqlite3.Connection, session_id: str, message: Message) -> None:
    conn.execute(
        """
        INSERT INTO messages(session_id, role, content_json, metadata_json, created_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            session_id,
            message.role.value,
            json.dumps(_content_to_json(message.content)),
            json.dumps(_metadata_to_json(message.metadata)) if message.metadata else None,
            message.timestamp,
        ),
    )
    conn.execute("UPDATE sessions SET last_accessed_at = ? WHERE id = ?", (now_ms(), session_id))


def _content_to_json(content: MessageContent) -> dict[str, Any]:
    if isinstance(content, TextContent):
        return {"type": "text", "text": content.text}
    if isinstance(content, MultiModalContent):
        return {
            "type": "multimodal",
            "text": content.text,
            "images": [
                {"data": image.data, "mime_type": image.mime_type, "source": image.source.value}
                for image in content.images
            ],
        }
    blocks: list[dict[str, Any]] = []
    for block in content.blocks:
        if isinstance(block, TextBlock):
            blocks.append({"type": "text", "text": block.text})
        elif isinstance(block, ToolUseBlock):
            blocks.append({"type": "tool_use", "id": block.id, "name": block.name, "input": block.input})
        else:
            blocks.append({"type": "tool_result", "tool_use_id": block.tool_use_id, "content": block.content})
    return {"type": "structured", "blocks": blocks}


def _content_from_json(data: dict[str, Any]) -> MessageContent:
    kind = data.get("type")
    if kind == "multimodal":
        return MultiModalContent(
            text=data.get("text"),
            images=[
                ImageContent(data=image["data"], mime_type=image["mime_type"], source=ImageSource(image["source"]))
                for image in data.get("images", [])
            ],
        )
    if kind == "structured":
        blocks = []
        for block in data.get("blocks", []):
            if block["type"] == "tool_use":
                blocks.append(ToolUseBlock(id=block["id"], name=block["name"], input=block["input"]))
            elif block["type"] == "tool_result":
                blocks.append(ToolResultBlock(tool_use_id=block["tool_use_id"], content=block["content"]))
            else:
                blocks.append(TextBlock(text=block["text"]))
        return StructuredContent(blocks=blocks)
    return TextContent(text=data.get("text", ""))


def _metadata_to_json(metadata: MessageMetadata) -> dict[str, Any]:
    return {
        "model": metadata.model,
        "response_time": metadata.response_time,
        "input_tokens": metadata.input_tokens,
        "output_tokens": metadata.output_tokens,
        "estimated_input_tokens": metadata.estimated_input_tokens,
        "estimated_output_tokens": metadata.estimated_output_tokens,
    }


def _metadata_from_json(raw: str | None) -> MessageMetadata | None:
    if not raw:
        return None
    return MessageMetadata(**json.loads(raw))
