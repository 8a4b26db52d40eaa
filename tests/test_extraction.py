from __future__ import annotations

import re

import pytest

from kiara.memory.personal.extraction import (
    AGENT_RULES,
    ExtractionRule,
    MemoryExtractor,
    extract_name,
)


def _by_rule(candidates, rule: str):
    return [candidate for candidate in candidates if candidate.rule == rule]


@pytest.mark.parametrize(
    "text, name",
    [
        ("I am Alice", "Alice"),
        ("Hello! I'm Bob, nice to meet you", "Bob"),
        ("my name is Mary Jane", "Mary Jane"),
        ("You can call me Zed.", "Zed"),
    ],
)
def test_name_statements_become_facts(text: str, name: str) -> None:
    facts = _by_rule(MemoryExtractor().extract(text, "user"), "name")

    assert len(facts) == 1
    assert facts[0].content == f"User's name is {name}"
    assert facts[0].type == "fact"
    assert facts[0].confidence == 0.9


def test_lowercase_words_are_not_names() -> None:
    assert _by_rule(MemoryExtractor().extract("I am tired today", "user"), "name") == []


def test_greeting_with_name_and_hobby() -> None:
    candidates = MemoryExtractor().extract("Hi, I'm Maria and I love hiking", "user")

    facts = [c for c in candidates if c.type == "fact"]
    preferences = [c for c in candidates if c.type == "preference"]
    assert [f.content for f in facts] == ["User's name is Maria"]
    assert facts[0].confidence == 0.9
    assert [p.content for p in preferences] == ["I love hiking"]
    assert preferences[0].confidence == 0.8
    assert preferences[0].category == "interests"


def test_name_correction_wins_over_old_name() -> None:
    candidates = MemoryExtractor().extract("No, my name is not Bob, it's Robert", "user")

    corrections = _by_rule(candidates, "name_correction")
    assert [c.content for c in corrections] == ["User's name is Robert"]


def test_questions_are_only_taken_from_user_turns() -> None:
    text = "How do I deploy this service?"

    user_questions = _by_rule(MemoryExtractor().extract(text, "user"), "questions")
    assistant_questions = _by_rule(MemoryExtractor().extract(text, "assistant"), "questions")

    assert [c.content for c in user_questions] == ["User asked: How do I deploy this service?"]
    assert assistant_questions == []


def test_answers_need_long_assistant_text_and_are_capped() -> None:
    reply = (
        "The service runs on three separate nodes today. "
        "This layout keeps every shard replicated twice. "
        "There are four background workers for indexing."
    )

    answers = _by_rule(MemoryExtractor().extract(reply, "assistant"), "answers")
    assert len(answers) == 2
    assert answers[0].content == (
        "Assistant provided information: The service runs on three separate nodes today."
    )
    assert _by_rule(MemoryExtractor().extract("The cat is here.", "assistant"), "answers") == []
    assert _by_rule(MemoryExtractor().extract(reply, "user"), "answers") == []


def test_entities_are_unique_and_limited_to_three() -> None:
    text = "I met the Doctor, a Captain, the Doctor again, an Engineer and the Pilot."

    entities = _by_rule(MemoryExtractor().extract(text, "user"), "entities")

    assert [c.content for c in entities] == [
        "Mentioned the Doctor",
        "Mentioned a Captain",
        "Mentioned an Engineer",
    ]


def test_image_description_requires_image_wording() -> None:
    candidates = MemoryExtractor().extract("The image shows a red bicycle by a lake.", "assistant")

    visual = _by_rule(candidates, "image")
    assert [c.content for c in visual] == ["Image described as: a red bicycle by a lake"]
    assert _by_rule(MemoryExtractor().extract("The photo is blurry.", "user"), "image") == []


def test_technical_and_work_context() -> None:
    candidates = MemoryExtractor().extract("We built a dashboard using React and Supabase.", "user")

    assert [c.content for c in _by_rule(candidates, "work")] == ["We built a dashboard using React and Supabase"]
    assert [c.content for c in _by_rule(candidates, "technical")] == ["using React and Supabase"]


def test_failing_rule_is_skipped() -> None:
    def boom(_: str) -> bool:
        raise RuntimeError("broken rule")

    broken = ExtractionRule(
        name="broken", pattern=re.compile("x"), type="context", confidence=0.5, requires=boom
    )
    extractor = MemoryExtractor(rules=(broken, *AGENT_RULES))

    candidates = extractor.extract("I am Alice", "user")

    assert [c.content for c in candidates] == ["User's name is Alice"]


def test_agent_rules_keep_one_memory_per_kind() -> None:
    extractor = MemoryExtractor(rules=AGENT_RULES)

    candidates = extractor.extract("I am a nurse. I like tea. I like coffee. I'm Sam", "user")

    assert [(c.rule, c.content) for c in candidates] == [
        ("name", "User's name is Sam"),
        ("preference", "User likes tea"),
        ("context", "User is nurse"),
    ]
    assert extractor.extract("I like tea", "assistant") == []


def test_empty_text_yields_nothing() -> None:
    assert MemoryExtractor().extract("", "user") == []


def test_extract_name() -> None:
    assert extract_name("User's name is Maria") == "Maria"
    assert extract_name("User likes hiking") is None
