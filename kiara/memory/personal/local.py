"""File-backed chat transcripts with per-chat facts, preferences and context."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Mapping, Optional

from .extraction import MemoryExtractor
from .schemas import ChatMemory, ChatMessage, UserMemory, dumps_payload

logger = logging.getLogger(__name__)

NAME_PREFIX = "User's name is"
RECENT_MESSAGES = 5
PREVIEW_LENGTH = 100
_SAFE_ID = re.compile(r"[^A-Za-z0-9_.-]")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _replace_name(facts: List[str], fact: str) -> List[str]:
    kept = [item for item in facts if not item.startswith(NAME_PREFIX)]
    kept.append(fact)
    return kept


@dataclass
class LocalMemory:
    """One JSON document per user under ``directory``."""

    directory: Path
    extractor: MemoryExtractor = field(default_factory=MemoryExtractor)

    def __post_init__(self) -> None:
        self.directory = Path(self.directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, user_id: str) -> Path:
        return self.directory / f"kiara_memory_{_SAFE_ID.sub('_', user_id)}.json"

    def init_user_memory(self, user_id: str) -> UserMemory:
        path = self._path(user_id)
        if path.exists():
            try:
                with path.open("r", encoding="utf-8") as fh:
                    return UserMemory.from_payload(json.load(fh))
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.error("Failed to read user memory %s: %s", path, exc)

        memory = UserMemory(user_id=user_id)
        self.save_user_memory(memory)
        return memory

    def save_user_memory(self, memory: UserMemory) -> None:
        path = self._path(memory.user_id)
        try:
            with path.open("w", encoding="utf-8") as fh:
                fh.write(dumps_payload(memory.to_payload()))
        except OSError as exc:
            logger.error("Failed to save user memory %s: %s", path, exc)

    def add_message(
        self,
        user_id: str,
        chat_id: str,
        *,
        message_id: str,
        content: str,
        role: str,
        image_url: Optional[str] = None,
        model: str = "dominator",
    ) -> None:
        memory = self.init_user_memory(user_id)
        chat = memory.chats.get(chat_id)
        if chat is None:
            chat = memory.chats[chat_id] = ChatMemory(id=chat_id, model=model)

        chat.messages.append(
            ChatMessage(id=message_id, content=content, role=role, image_url=image_url)
        )
        chat.last_updated = _now()
        memory.last_active = chat.last_updated

        if role == "user":
            self._extract_items(content, memory, chat)
        self.save_user_memory(memory)

    def _extract_items(self, content: str, memory: UserMemory, chat: ChatMemory) -> None:
        for candidate in self.extractor.extract(content, "user"):
            if candidate.type == "fact" and candidate.content.startswith(NAME_PREFIX):
                memory.global_facts = _replace_name(memory.global_facts, candidate.content)
                chat.facts = _replace_name(chat.facts, candidate.content)
            elif candidate.type == "preference" and candidate.category == "interests":
                if candidate.content not in memory.global_preferences:
                    memory.global_preferences.append(candidate.content)
                if candidate.content not in chat.preferences:
                    chat.preferences.append(candidate.content)
            elif candidate.type == "context" and candidate.category == "background":
                if candidate.content not in chat.context:
                    chat.context.append(candidate.content)

    def get_chat_memory(self, user_id: str, chat_id: str) -> Optional[ChatMemory]:
        return self.init_user_memory(user_id).chats.get(chat_id)

    def get_chat_history(self, user_id: str, chat_id: str) -> List[ChatMessage]:
        chat = self.get_chat_memory(user_id, chat_id)
        return list(chat.messages) if chat else []

    def get_memory_summary(self, user_id: str, chat_id: str) -> str:
        """Facts, preferences, chat context and the last few messages as text."""

        memory = self.init_user_memory(user_id)
        chat = memory.chats.get(chat_id)
        if chat is None:
            return ""

        summary: List[str] = []
        if memory.global_facts:
            summary.append(f"User Facts: {', '.join(memory.global_facts)}")
        if memory.global_preferences:
            summary.append(f"User Preferences: {', '.join(memory.global_preferences)}")
        if chat.context:
            summary.append(f"Chat Context: {', '.join(chat.context)}")

        recent = chat.messages[-RECENT_MESSAGES:]
        if recent:
            summary.append("Recent Conversation:")
            for message in recent:
                speaker = "User" if message.role == "user" else "Assistant"
                preview = message.content[:PREVIEW_LENGTH]
                if len(message.content) > PREVIEW_LENGTH:
                    preview += "..."
                summary.append(f"{speaker}: {preview}")
        return "\n".join(summary)

    def update_chat_title(self, user_id: str, chat_id: str, title: str) -> None:
        memory = self.init_user_memory(user_id)
        chat = memory.chats.get(chat_id)
        if chat is not None:
            chat.title = title
            chat.last_updated = _now()
            self.save_user_memory(memory)

    def delete_chat(self, user_id: str, chat_id: str) -> None:
        memory = self.init_user_memory(user_id)
        if memory.chats.pop(chat_id, None) is not None:
            self.save_user_memory(memory)

    def get_user_chats(self, user_id: str) -> List[Mapping[str, str]]:
        memory = self.init_user_memory(user_id)
        return [
            {
                "id": chat.id,
                "title": chat.title,
                "model": chat.model,
                "last_updated": chat.last_updated,
            }
            for chat in memory.chats.values()
        ]

    def add_image_description(self, user_id: str, chat_id: str, description: str) -> None:
        memory = self.init_user_memory(user_id)
        chat = memory.chats.get(chat_id)
        if chat is None:
            return
        context = f"Image described as: {description}"
        if context not in chat.context:
            chat.context.append(context)
            self.save_user_memory(memory)


__all__ = ["LocalMemory"]
