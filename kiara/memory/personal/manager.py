"""High-level orchestration of memories and personality per chat session."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Tuple

from .extraction import AGENT_RULES, MemoryExtractor
from .personality import PersonalityManager
from .prompts import format_directive
from .schemas import AgentConfig
from .store import MemoryStore

logger = logging.getLogger(__name__)

PRELOAD_MEMORIES = 10
RECENT_CONTEXT = 3


@dataclass
class ConsolidationSchedule:
    """Trigger consolidation after every ``every`` processed turns per user."""

    every: int = 10
    turns: Dict[str, int] = field(default_factory=dict)

    def record_turn(self, user_id: str) -> bool:
        if self.every <= 0:
            return False
        count = self.turns.get(user_id, 0) + 1
        if count >= self.every:
            self.turns[user_id] = 0
            return True
        self.turns[user_id] = count
        return False


@dataclass
class AgentManager:
    """Join point between extraction, memory store and personality adapters.

    Sessions are keyed by ``(user_id, chat_id)`` and are either absent or
    active. Nothing here raises to the caller once a session exists: memory
    failures are logged and the chat flow continues.
    """

    store: MemoryStore
    personality: PersonalityManager
    extractor: MemoryExtractor = field(default_factory=lambda: MemoryExtractor(rules=AGENT_RULES))
    user_level: str = "intermediate"
    schedule: ConsolidationSchedule = field(default_factory=ConsolidationSchedule)
    sessions: Dict[Tuple[str, str], AgentConfig] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    def initialize_agent(self, config: AgentConfig) -> None:
        adapter = self.personality.get_adapter(config.model)
        self.sessions[config.key] = config

        profile = self.personality.get_user_profile(config.user_id)
        if profile:
            for key, value in profile.items():
                adapter.update_user_preference(key, value)

        memories = self.store.get_relevant_memories(config.user_id, "", PRELOAD_MEMORIES)
        memories = memories[:PRELOAD_MEMORIES]
        for memory in memories:
            self.store.add_to_short_term_memory(config.user_id, memory.content)
        logger.info(
            "Agent %s initialised for %s/%s with %s memories",
            config.model,
            config.user_id,
            config.chat_id,
            len(memories),
        )

    def remove_agent(self, user_id: str, chat_id: str) -> None:
        self.sessions.pop((user_id, chat_id), None)

    def has_session(self, user_id: str, chat_id: str) -> bool:
        return (user_id, chat_id) in self.sessions

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------
    def process_message(self, user_id: str, chat_id: str, message: str, is_user: bool) -> None:
        config = self.sessions.get((user_id, chat_id))
        if config is None:
            return

        self.store.flush_pending()

        if is_user:
            try:
                candidates = self.extractor.extract(message, "user")
            except Exception:
                logger.exception("Memory extraction failed for %s/%s", user_id, chat_id)
                candidates = []
            for candidate in candidates:
                try:
                    self.store.add_memory(
                        user_id,
                        candidate.content,
                        candidate.type,
                        candidate.confidence,
                        category=candidate.category,
                    )
                except Exception:
                    logger.exception("Failed to store memory %r", candidate.content)

        now = datetime.now(timezone.utc).isoformat()
        adapter = self.personality.get_adapter(config.model)
        adapter.add_interaction({"message": message, "is_user": is_user})
        self.store.add_to_short_term_memory(
            user_id, {"content": message, "role": "user" if is_user else "assistant"}
        )
        self.personality.update_user_profile(
            user_id, {"lastMessage": message, "lastInteraction": now}
        )

        if self.schedule.record_turn(user_id):
            try:
                self.store.consolidate_memories(user_id)
            except Exception:
                logger.exception("Memory consolidation failed for %s", user_id)

    def get_enhanced_prompt(self, user_id: str, chat_id: str, base_prompt: str) -> str:
        config = self.sessions.get((user_id, chat_id))
        if config is None:
            return base_prompt

        memories = self.store.get_relevant_memories(user_id, base_prompt)
        recent = self.store.get_short_term_memories(user_id)[-RECENT_CONTEXT:]
        style = self.personality.get_adapter(config.model).adapt_response_style(
            self.user_level, base_prompt
        )

        sections: List[str] = [base_prompt, "\n\n"]
        if memories:
            sections.append("User Context:\n")
            sections.extend(f"- {memory.content}\n" for memory in memories)
        if recent:
            sections.append("\nRecent Context:\n")
            sections.extend(f"- {entry.text()}\n" for entry in recent)

        sections.append("\nResponse Guidelines:\n")
        sections.append(f"- Detail Level: {format_directive(style.detail_level)}\n")
        sections.append(f"- Technical Terms: {format_directive(style.technical_terms)}\n")
        sections.append(f"- Step by Step: {format_directive(style.step_by_step)}\n")
        return "".join(sections)


__all__ = ["AgentManager", "ConsolidationSchedule"]
