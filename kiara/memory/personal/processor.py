"""Full-text memory extraction for every chat turn and chat-scoped recall."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List

from .extraction import MemoryExtractor
from .schemas import MemoryItem
from .store import SYSTEM_CATEGORY, MemoryStore

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 100
SEED_MEMORY = "User preferences and context will be stored here"


@dataclass
class MemoryProcessor:
    """Run the full rule table over a turn and store what it finds."""

    store: MemoryStore
    extractor: MemoryExtractor = field(default_factory=MemoryExtractor)
    chat_limit: int = 5
    chat_min_confidence: float = 0.6
    global_limit: int = 3
    global_min_confidence: float = 0.7
    max_results: int = 7

    def initialize_memory_store(self, user_id: str) -> None:
        try:
            created = self.store.db.ensure_memory_store(user_id)
        except Exception as exc:
            logger.warning("Failed to initialise memory store for %s: %s", user_id, exc)
            return
        if created:
            logger.info("Created memory store for %s", user_id)
            self.store.add_memory(
                user_id,
                SEED_MEMORY,
                "context",
                1.0,
                category=SYSTEM_CATEGORY,
                source="system",
                memory_context={"timestamp": _now(), "system": True},
            )

    def process_message(self, user_id: str, chat_id: str, message: str, role: str) -> List[MemoryItem]:
        """Extract and store memories from one turn; never raises."""

        self.initialize_memory_store(user_id)
        try:
            candidates = self.extractor.extract(message, role)
        except Exception:
            logger.exception("Memory extraction failed for chat %s", chat_id)
            return []
        logger.debug("Extracted %s memories from %s turn in %s", len(candidates), role, chat_id)

        excerpt = message[:EXCERPT_LENGTH] + ("..." if len(message) > EXCERPT_LENGTH else "")
        stored: List[MemoryItem] = []
        for candidate in candidates:
            try:
                stored.append(
                    self.store.add_memory(
                        user_id,
                        candidate.content,
                        candidate.type,
                        candidate.confidence,
                        chat_id=chat_id,
                        category=candidate.category,
                        source="user" if role == "user" else "system",
                        memory_context={
                            "chat_id": chat_id,
                            "timestamp": _now(),
                            "role": role,
                            "extracted_from": excerpt,
                        },
                    )
                )
            except Exception:
                logger.exception("Failed to add memory %r for %s", candidate.content, user_id)
        return stored

    def get_relevant_memories(self, user_id: str, chat_id: str, message: str) -> List[MemoryItem]:
        """Chat memories first, then global ones, ranked by confidence."""

        db = self.store.db
        memories: List[MemoryItem] = []
        try:
            memories.extend(
                db.query_memories(
                    user_id,
                    chat_id=chat_id,
                    min_confidence=self.chat_min_confidence,
                    limit=self.chat_limit,
                )
            )
        except Exception as exc:
            logger.warning("Failed to load chat memories for %s: %s", chat_id, exc)
        try:
            memories.extend(
                db.query_memories(
                    user_id,
                    global_only=True,
                    min_confidence=self.global_min_confidence,
                    limit=self.global_limit,
                )
            )
        except Exception as exc:
            logger.warning("Failed to load global memories for %s: %s", user_id, exc)

        invalidated = {
            item.id
            for item in self.store.get_memories(user_id, include_inactive=True)
            if not item.is_active
        }
        unique = _deduplicate(
            item
            for item in memories
            if item.id not in invalidated and item.category != SYSTEM_CATEGORY
        )
        unique.sort(key=lambda item: item.confidence, reverse=True)
        return unique[: self.max_results]


def _deduplicate(memories: Iterable[MemoryItem]) -> List[MemoryItem]:
    seen: set[str] = set()
    result: List[MemoryItem] = []
    for memory in memories:
        key = memory.content.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(memory)
    return result


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


__all__ = ["MemoryProcessor", "SEED_MEMORY"]
