from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Sequence

import pytest

from kiara.memory.personal.config import KiaraConfig, load_config
from kiara.memory.personal.personality import PersonalityConfigError
from kiara.memory.personal.runtime import KiaraRuntime, main


class FakeLLMClient:
    def __init__(self) -> None:
        self.calls: List[Sequence[Mapping[str, Any]]] = []

    def stream_chat(self, messages: Sequence[Mapping[str, Any]], **params: Any) -> Iterator[str]:
        self.calls.append(list(messages))
        yield "Got it."


def test_load_config_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("KIARA_DB_PATH", "/tmp/kiara-test.sqlite")
    monkeypatch.setenv("KIARA_MODEL_VARIANT", "vision")
    monkeypatch.setenv("KIARA_SHORT_TERM_TTL", "60")
    monkeypatch.setenv("KIARA_CONSOLIDATE_EVERY", "4")
    monkeypatch.delenv("KIARA_LLM_MODEL", raising=False)

    config = load_config()

    assert config.db_path == "/tmp/kiara-test.sqlite"
    assert config.model_variant == "vision"
    assert config.short_term_ttl == 60.0
    assert config.consolidate_every == 4
    assert config.llm_model is None
    assert config.user_level == "intermediate"


def test_runtime_remembers_across_turns(tmp_path: Path) -> None:
    llm = FakeLLMClient()
    runtime = KiaraRuntime(
        config=KiaraConfig(db_path=":memory:", memory_dir=str(tmp_path)), llm_client=llm
    )

    assert runtime.send("u1", "c1", "Hi, I'm Maria and I love hiking") == "Got it."
    runtime.send("u1", "c1", "Any trail ideas?")

    system_prompt = llm.calls[-1][0]["content"]
    assert "User's name: Maria" in system_prompt
    assert "Recent Context:" in system_prompt
    assert runtime.database.get_memory_store("u1") is not None

    runtime.end_chat("u1", "c1")
    assert not runtime.agents.has_session("u1", "c1")
    assert ("u1", "c1") not in runtime.composer.histories


def test_cli_show_prompt(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("OPENROUTER_API_KEY", "test-key")
    turns = tmp_path / "turns.jsonl"
    turns.write_text(
        "# greeting\n" + json.dumps({"user_id": "u1", "chat_id": "c1", "content": "Hello"}) + "\n",
        encoding="utf-8",
    )

    exit_code = main(
        [
            "--db",
            str(tmp_path / "memory.sqlite"),
            "--memory-dir",
            str(tmp_path / "local"),
            "--model-variant",
            "vision",
            "--input",
            str(turns),
            "--show-prompt",
        ]
    )

    assert exit_code == 0
    result = json.loads(capsys.readouterr().out)
    assert result["chat_id"] == "c1"
    assert result["prompt"].startswith("You are Kiara Vision X")
    assert "Response Guidelines:" in result["prompt"]


def test_unknown_model_variant_is_rejected(tmp_path: Path) -> None:
    config = KiaraConfig(model_variant="oracle", db_path=":memory:", memory_dir=str(tmp_path))

    with pytest.raises(PersonalityConfigError, match="oracle"):
        KiaraRuntime(config=config, llm_client=FakeLLMClient())


def test_pending_write_settings_reach_the_store(tmp_path: Path) -> None:
    config = KiaraConfig(db_path=":memory:", memory_dir=str(tmp_path), retry_delay=2.0, max_pending=7)

    runtime = KiaraRuntime(config=config, llm_client=FakeLLMClient())

    assert runtime.store.pending.retry_delay == 2.0
    assert runtime.store.pending.max_entries == 7
