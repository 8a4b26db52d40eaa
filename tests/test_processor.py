from __future__ import annotations

from kiara.memory.personal.processor import SEED_MEMORY, MemoryProcessor
from kiara.memory.personal.storage import MemoryDatabase
from kiara.memory.personal.store import MemoryStore


def _make_processor() -> MemoryProcessor:
    return MemoryProcessor(store=MemoryStore(db=MemoryDatabase(":memory:")))


def test_first_message_seeds_the_store() -> None:
    processor = _make_processor()

    processor.process_message("u1", "c1", "hello there", "user")
    processor.process_message("u1", "c1", "hello again", "user")

    seeds = [item for item in processor.store.get_memories("u1") if item.content == SEED_MEMORY]
    assert len(seeds) == 1
    assert seeds[0].confidence == 1.0
    assert seeds[0].category == "system"
    assert seeds[0].chat_id is None


def test_user_turn_is_stored_with_chat_context() -> None:
    processor = _make_processor()
    message = "Hi, I'm Maria and I love hiking. " + "x" * 120

    stored = processor.process_message("u1", "c1", message, "user")

    by_content = {item.content: item for item in stored}
    name = by_content["User's name is Maria"]
    assert name.chat_id == "c1"
    assert name.source == "user"
    assert name.memory_context["role"] == "user"
    assert name.memory_context["extracted_from"] == message[:100] + "..."
    assert "I love hiking" in by_content
    assert processor.store.get_user_name("u1") == "Maria"


def test_assistant_turn_is_marked_as_system_source() -> None:
    processor = _make_processor()
    reply = "The trail is eleven kilometres long and fairly steep in places."

    stored = processor.process_message("u1", "c1", reply, "assistant")

    assert [item.category for item in stored] == ["answers"]
    assert stored[0].source == "system"


def test_relevant_memories_combine_chat_and_global() -> None:
    processor = _make_processor()
    processor.process_message("u1", "c1", "I love hiking", "user")
    processor.process_message("u1", "c2", "I enjoy painting", "user")

    relevant = processor.get_relevant_memories("u1", "c1", "any plans?")
    contents = [item.content for item in relevant]

    assert SEED_MEMORY not in contents
    assert "I love hiking" in contents
    assert "I enjoy painting" not in contents
    assert len(contents) == len(set(contents))


def test_invalidated_memories_are_not_recalled() -> None:
    processor = _make_processor()
    [hiking] = processor.process_message("u1", "c1", "I love hiking", "user")

    processor.store.invalidate_memory("u1", hiking.id)

    contents = [item.content for item in processor.get_relevant_memories("u1", "c1", "")]
    assert "I love hiking" not in contents
