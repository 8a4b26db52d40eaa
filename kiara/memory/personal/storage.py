"""Persistent storage for user memories and memory-store bookkeeping."""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from .schemas import MemoryItem


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MemoryDatabase:
    """Small SQLite wrapper that stores memories and per-user memory stores."""

    def __init__(self, db_path: str = ":memory:") -> None:
        self.connection = sqlite3.connect(db_path, check_same_thread=False)
        self.connection.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._create_schema()

    def _create_schema(self) -> None:
        with self._lock:
            cur = self.connection.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS memories (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    chat_id TEXT,
                    content TEXT NOT NULL,
                    type TEXT NOT NULL,
                    category TEXT,
                    confidence REAL NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_memories_user_active
                ON memories(user_id, is_active)
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS memory_stores (
                    user_id TEXT PRIMARY KEY,
                    memory_count INTEGER NOT NULL DEFAULT 0,
                    last_processed TEXT NOT NULL
                )
                """
            )
            self.connection.commit()
            self._ensure_column("memories", "source", "TEXT DEFAULT 'user'")
            self._ensure_column("memories", "memory_context", "TEXT")

    def _ensure_column(self, table: str, column: str, definition: str) -> None:
        cur = self.connection.execute(f"PRAGMA table_info({table})")
        columns = {row[1] for row in cur.fetchall()}
        if column not in columns:
            self.connection.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
            self.connection.commit()

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> MemoryItem:
        data = {key: row[key] for key in row.keys()}
        data["is_active"] = bool(data.get("is_active"))
        return MemoryItem.from_row(data)

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------
    def upsert_memory(self, item: MemoryItem) -> str:
        """Insert ``item`` or overwrite the stored record with the same id."""

        now = _now()
        with self._lock:
            self.connection.execute(
                """
                INSERT INTO memories(
                    id, user_id, chat_id, content, type, category, confidence,
                    is_active, source, memory_context, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    content = excluded.content,
                    type = excluded.type,
                    category = excluded.category,
                    confidence = excluded.confidence,
                    is_active = excluded.is_active,
                    memory_context = excluded.memory_context,
                    updated_at = excluded.updated_at
                """,
                (
                    item.id,
                    item.user_id,
                    item.chat_id,
                    item.content,
                    item.type,
                    item.category,
                    float(item.confidence),
                    1 if item.is_active else 0,
                    item.source,
                    json.dumps(dict(item.memory_context), ensure_ascii=False),
                    now,
                    now,
                ),
            )
            self.connection.commit()
            return item.id

    def set_active(self, user_id: str, memory_id: str, active: bool) -> None:
        with self._lock:
            self.connection.execute(
                "UPDATE memories SET is_active = ?, updated_at = ? WHERE id = ? AND user_id = ?",
                (1 if active else 0, _now(), memory_id, user_id),
            )
            self.connection.commit()

    def update_confidence(self, user_id: str, memory_id: str, confidence: float) -> None:
        with self._lock:
            self.connection.execute(
                "UPDATE memories SET confidence = ?, updated_at = ? WHERE id = ? AND user_id = ?",
                (float(confidence), _now(), memory_id, user_id),
            )
            self.connection.commit()

    def fetch_memory(self, memory_id: str) -> Optional[MemoryItem]:
        cur = self.connection.execute("SELECT * FROM memories WHERE id = ?", (memory_id,))
        row = cur.fetchone()
        return self._row_to_item(row) if row else None

    def find_active_by_content(self, user_id: str, content: str) -> Optional[MemoryItem]:
        """Return an active memory whose content equals ``content`` ignoring case."""

        cur = self.connection.execute(
            """
            SELECT * FROM memories
            WHERE user_id = ? AND is_active = 1 AND lower(content) = lower(?)
            ORDER BY confidence DESC
            LIMIT 1
            """,
            (user_id, content),
        )
        row = cur.fetchone()
        return self._row_to_item(row) if row else None

    def query_memories(
        self,
        user_id: str,
        *,
        chat_id: Optional[str] = None,
        global_only: bool = False,
        type: Optional[str] = None,
        category: Optional[str] = None,
        min_confidence: Optional[float] = None,
        active_only: bool = True,
        limit: Optional[int] = None,
    ) -> List[MemoryItem]:
        clauses = ["user_id = ?"]
        params: List[Any] = [user_id]
        if active_only:
            clauses.append("is_active = 1")
        if global_only:
            clauses.append("chat_id IS NULL")
        elif chat_id is not None:
            clauses.append("chat_id = ?")
            params.append(chat_id)
        if type is not None:
            clauses.append("type = ?")
            params.append(type)
        if category is not None:
            clauses.append("category = ?")
            params.append(category)
        if min_confidence is not None:
            clauses.append("confidence >= ?")
            params.append(float(min_confidence))

        sql = (
            "SELECT * FROM memories WHERE "
            + " AND ".join(clauses)
            + " ORDER BY confidence DESC, updated_at DESC"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        cur = self.connection.execute(sql, params)
        return [self._row_to_item(row) for row in cur.fetchall()]

    # ------------------------------------------------------------------
    # Memory stores
    # ------------------------------------------------------------------
    def ensure_memory_store(self, user_id: str) -> bool:
        """Create the bookkeeping record for ``user_id``; return True if new."""

        with self._lock:
            cur = self.connection.execute(
                "SELECT user_id FROM memory_stores WHERE user_id = ?", (user_id,)
            )
            if cur.fetchone():
                return False
            self.connection.execute(
                "INSERT INTO memory_stores(user_id, memory_count, last_processed) VALUES (?, 0, ?)",
                (user_id, _now()),
            )
            self.connection.commit()
            return True

    def increment_memory_count(self, user_id: str) -> None:
        with self._lock:
            self.connection.execute(
                """
                UPDATE memory_stores
                SET memory_count = memory_count + 1, last_processed = ?
                WHERE user_id = ?
                """,
                (_now(), user_id),
            )
            self.connection.commit()

    def get_memory_store(self, user_id: str) -> Optional[Mapping[str, Any]]:
        cur = self.connection.execute(
            "SELECT user_id, memory_count, last_processed FROM memory_stores WHERE user_id = ?",
            (user_id,),
        )
        row = cur.fetchone()
        if not row:
            return None
        return {
            "user_id": row["user_id"],
            "memory_count": row["memory_count"],
            "last_processed": row["last_processed"],
        }


__all__ = ["MemoryDatabase"]
