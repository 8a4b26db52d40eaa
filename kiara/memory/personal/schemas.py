"""Typed data structures used by the personal memory system."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

MEMORY_TYPES = ("fact", "preference", "context", "personality")
MODEL_VARIANTS = ("dominator", "vision")


def _default_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class MemoryCandidate:
    """A memory proposed by an extraction rule, not yet stored."""

    content: str
    type: str
    confidence: float
    category: Optional[str] = None
    rule: Optional[str] = None


@dataclass
class MemoryItem:
    """A structured statement about a user, owned by that user's bucket."""

    user_id: str
    content: str
    type: str
    confidence: float
    id: str = field(default_factory=_new_id)
    chat_id: Optional[str] = None
    category: Optional[str] = None
    source: str = "user"
    is_active: bool = True
    timestamp: str = field(default_factory=_default_timestamp)
    memory_context: MutableMapping[str, Any] = field(default_factory=dict)

    def touch(self) -> None:
        self.timestamp = _default_timestamp()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "MemoryItem":
        context = row.get("memory_context") or {}
        if isinstance(context, str):
            context = json.loads(context) if context else {}
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            chat_id=row.get("chat_id"),
            content=str(row["content"]),
            type=str(row["type"]),
            category=row.get("category"),
            confidence=float(row.get("confidence") or 0.0),
            source=str(row.get("source") or "user"),
            is_active=bool(row.get("is_active", True)),
            timestamp=str(row.get("updated_at") or row.get("timestamp") or _default_timestamp()),
            memory_context=dict(context),
        )


@dataclass
class ShortTermEntry:
    """Scratch context for a user that stops being returned after ``expiry``."""

    content: Any
    expiry: float

    def text(self) -> str:
        if isinstance(self.content, Mapping):
            return str(self.content.get("content", ""))
        if isinstance(self.content, MemoryItem):
            return self.content.content
        return str(self.content)


@dataclass
class ResponseStyle:
    detail_level: Any = None
    technical_terms: Any = None
    step_by_step: Any = None
    formality: Optional[float] = None


@dataclass
class AgentConfig:
    """Binding of a model variant to a ``(user_id, chat_id)`` conversation."""

    user_id: str
    chat_id: str
    model: str = "dominator"

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.chat_id)


@dataclass
class ChatMessage:
    id: str
    content: str
    role: str
    timestamp: str = field(default_factory=_default_timestamp)
    image_url: Optional[str] = None

    def to_payload(self) -> Mapping[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "role": self.role,
            "timestamp": self.timestamp,
        }
        if self.image_url:
            payload["image_url"] = self.image_url
        return payload


@dataclass
class ChatMemory:
    """Transcript plus the facts, preferences and context seen in one chat."""

    id: str
    title: str = "New Chat"
    model: str = "dominator"
    messages: List[ChatMessage] = field(default_factory=list)
    last_updated: str = field(default_factory=_default_timestamp)
    facts: List[str] = field(default_factory=list)
    preferences: List[str] = field(default_factory=list)
    context: List[str] = field(default_factory=list)

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "model": self.model,
            "messages": [message.to_payload() for message in self.messages],
            "last_updated": self.last_updated,
            "facts": list(self.facts),
            "preferences": list(self.preferences),
            "context": list(self.context),
        }

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "ChatMemory":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or "New Chat"),
            model=str(data.get("model") or "dominator"),
            messages=[ChatMessage(**dict(message)) for message in data.get("messages", [])],
            last_updated=str(data.get("last_updated") or _default_timestamp()),
            facts=list(data.get("facts", [])),
            preferences=list(data.get("preferences", [])),
            context=list(data.get("context", [])),
        )


@dataclass
class UserMemory:
    user_id: str
    chats: Dict[str, ChatMemory] = field(default_factory=dict)
    global_facts: List[str] = field(default_factory=list)
    global_preferences: List[str] = field(default_factory=list)
    last_active: str = field(default_factory=_default_timestamp)

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "user_id": self.user_id,
            "chats": {chat_id: chat.to_payload() for chat_id, chat in self.chats.items()},
            "global_facts": list(self.global_facts),
            "global_preferences": list(self.global_preferences),
            "last_active": self.last_active,
        }

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "UserMemory":
        return cls(
            user_id=str(data["user_id"]),
            chats={
                str(chat_id): ChatMemory.from_payload(chat)
                for chat_id, chat in (data.get("chats") or {}).items()
            },
            global_facts=list(data.get("global_facts", [])),
            global_preferences=list(data.get("global_preferences", [])),
            last_active=str(data.get("last_active") or _default_timestamp()),
        )


def dumps_payload(data: Mapping[str, Any]) -> str:
    """Render ``data`` as formatted JSON."""

    return json.dumps(data, ensure_ascii=False, indent=2)


__all__ = [
    "AgentConfig",
    "ChatMemory",
    "ChatMessage",
    "MEMORY_TYPES",
    "MODEL_VARIANTS",
    "MemoryCandidate",
    "MemoryItem",
    "ResponseStyle",
    "ShortTermEntry",
    "UserMemory",
    "dumps_payload",
]
