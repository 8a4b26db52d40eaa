from __future__ import annotations

import sqlite3

import pytest

from kiara.memory.personal.manager import PRELOAD_MEMORIES, AgentManager, ConsolidationSchedule
from kiara.memory.personal.personality import PersonalityConfigError, PersonalityManager
from kiara.memory.personal.processor import SEED_MEMORY, MemoryProcessor
from kiara.memory.personal.schemas import AgentConfig
from kiara.memory.personal.storage import MemoryDatabase
from kiara.memory.personal.store import MemoryStore, PendingWrites


def _make_manager(**kwargs) -> AgentManager:
    store = MemoryStore(db=MemoryDatabase(":memory:"))
    return AgentManager(store=store, personality=PersonalityManager(), **kwargs)


def test_prompt_without_memories_only_adds_guidelines() -> None:
    manager = _make_manager()
    manager.initialize_agent(AgentConfig(user_id="u1", chat_id="c1"))

    prompt = manager.get_enhanced_prompt("u1", "c1", "BASE")

    assert prompt.startswith("BASE")
    assert "User Context" not in prompt
    assert "Recent Context" not in prompt
    assert prompt.endswith(
        "Response Guidelines:\n"
        "- Detail Level: medium\n"
        "- Technical Terms: moderate\n"
        "- Step by Step: true\n"
    )


def test_prompt_without_session_is_unchanged() -> None:
    assert _make_manager().get_enhanced_prompt("u1", "c1", "BASE") == "BASE"


def test_user_turn_feeds_memories_and_recent_context() -> None:
    manager = _make_manager()
    manager.initialize_agent(AgentConfig(user_id="u1", chat_id="c1"))

    manager.process_message("u1", "c1", "I'm Maria and I love hiking", True)
    manager.process_message("u1", "c1", "Hiking is great, Maria!", False)

    assert manager.store.get_user_name("u1") == "Maria"
    contents = [item.content for item in manager.store.get_memories("u1")]
    assert contents == ["User's name is Maria", "User likes hiking"]

    prompt = manager.get_enhanced_prompt("u1", "c1", "BASE")
    assert "User Context:\n- User's name is Maria\n- User likes hiking\n" in prompt
    assert "Recent Context:\n- I'm Maria and I love hiking\n- Hiking is great, Maria!\n" in prompt

    profile = manager.personality.get_user_profile("u1")
    assert profile is not None
    assert profile["lastMessage"] == "Hiking is great, Maria!"
    assert "lastInteraction" in profile


def test_assistant_turns_are_not_mined() -> None:
    manager = _make_manager()
    manager.initialize_agent(AgentConfig(user_id="u1", chat_id="c1"))

    manager.process_message("u1", "c1", "I like short answers", False)

    assert manager.store.get_memories("u1") == []


def test_messages_without_session_are_ignored() -> None:
    manager = _make_manager()

    manager.process_message("u1", "c1", "I'm Maria", True)

    assert manager.store.get_memories("u1") == []
    assert manager.store.get_short_term_memories("u1") == []


def test_initialize_preloads_existing_memories() -> None:
    manager = _make_manager()
    manager.store.add_memory("u1", "User likes chess", "preference", 0.8)

    manager.initialize_agent(AgentConfig(user_id="u1", chat_id="c2", model="vision"))

    assert manager.has_session("u1", "c2")
    assert [entry.text() for entry in manager.store.get_short_term_memories("u1")] == ["User likes chess"]


def test_initialize_rejects_unknown_variant() -> None:
    manager = _make_manager()

    with pytest.raises(PersonalityConfigError):
        manager.initialize_agent(AgentConfig(user_id="u1", chat_id="c1", model="oracle"))
    assert not manager.has_session("u1", "c1")


def test_remove_agent_ends_session() -> None:
    manager = _make_manager()
    manager.initialize_agent(AgentConfig(user_id="u1", chat_id="c1"))

    manager.remove_agent("u1", "c1")
    manager.remove_agent("u1", "c1")

    assert not manager.has_session("u1", "c1")
    assert manager.get_enhanced_prompt("u1", "c1", "BASE") == "BASE"


def test_expert_level_changes_guidelines() -> None:
    manager = _make_manager(user_level="expert")
    manager.initialize_agent(AgentConfig(user_id="u1", chat_id="c1"))

    prompt = manager.get_enhanced_prompt("u1", "c1", "BASE")

    assert "- Detail Level: low\n- Technical Terms: extensive\n- Step by Step: false\n" in prompt


def test_schedule_fires_every_n_turns() -> None:
    schedule = ConsolidationSchedule(every=3)

    fired = [schedule.record_turn("u1") for _ in range(7)]

    assert fired == [False, False, True, False, False, True, False]
    assert ConsolidationSchedule(every=0).record_turn("u1") is False


def test_consolidation_runs_on_schedule() -> None:
    manager = _make_manager(schedule=ConsolidationSchedule(every=2))
    manager.initialize_agent(AgentConfig(user_id="u1", chat_id="c1"))
    manager.store.add_memory("u1", "I like green tea", "preference", 0.6)
    manager.store.add_memory("u1", "I like green apples", "preference", 0.9)

    manager.process_message("u1", "c1", "hello", True)
    assert len(manager.store.get_memories("u1")) == 2

    manager.process_message("u1", "c1", "still here", True)
    assert [item.content for item in manager.store.get_memories("u1")] == ["I like green apples"]


def test_initialize_preloads_at_most_ten_memories() -> None:
    manager = _make_manager()
    for index in range(15):
        manager.store.add_memory("u1", f"Fact number {index} about trains", "context", 0.5 + index / 100)

    manager.initialize_agent(AgentConfig(user_id="u1", chat_id="c1"))

    preloaded = [entry.text() for entry in manager.store.get_short_term_memories("u1")]
    assert len(preloaded) == PRELOAD_MEMORIES
    assert preloaded[0] == "Fact number 14 about trains"


def test_seed_memory_stays_out_of_user_context() -> None:
    manager = _make_manager()
    MemoryProcessor(store=manager.store).initialize_memory_store("u1")
    manager.store.add_memory("u1", "User likes chess", "preference", 0.8)

    manager.initialize_agent(AgentConfig(user_id="u1", chat_id="c1"))
    prompt = manager.get_enhanced_prompt("u1", "c1", "BASE")

    assert "User Context:\n- User likes chess\n" in prompt
    assert SEED_MEMORY not in prompt
    global_memories = manager.store.get_global_memories("u1")
    assert global_memories is not None
    assert all(item.content != SEED_MEMORY for bucket in global_memories.values() for item in bucket.values())


class DownDatabase(MemoryDatabase):
    def __init__(self) -> None:
        super().__init__(":memory:")
        self.write_attempts = 0

    def upsert_memory(self, item):
        self.write_attempts += 1
        raise sqlite3.OperationalError("database is locked")


def test_turns_during_outage_do_not_retry_every_write() -> None:
    db = DownDatabase()
    store = MemoryStore(db=db, pending=PendingWrites(clock=lambda: 50.0))
    manager = AgentManager(store=store, personality=PersonalityManager())
    manager.initialize_agent(AgentConfig(user_id="u1", chat_id="c1"))
    for index in range(20):
        store.add_memory("u1", f"Fact number {index} about trains", "context")
    db.write_attempts = 0

    manager.process_message("u1", "c1", "The station opens at six.", False)
    manager.process_message("u1", "c1", "Trains leave every hour.", False)

    assert db.write_attempts == 1
    assert len(store.pending) == 20
    assert store.pending.next_attempt == 50.5
