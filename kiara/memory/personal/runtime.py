"""Runtime wiring and command line entry point for the Kiara chat pipeline."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping, Optional

from .clients import LLMClient
from .composer import ChatComposer
from .config import KiaraConfig, load_config
from .local import LocalMemory
from .manager import AgentManager, ConsolidationSchedule
from .personality import PersonalityConfigError, PersonalityManager
from .processor import MemoryProcessor
from .prompts import GENERATION_PARAMS
from .schemas import MODEL_VARIANTS, AgentConfig, dumps_payload
from .storage import MemoryDatabase
from .store import MemoryStore, PendingWrites

logger = logging.getLogger(__name__)


@dataclass
class KiaraRuntime:
    """Build every memory layer from one :class:`KiaraConfig`."""

    config: KiaraConfig = field(default_factory=KiaraConfig)
    llm_client: Optional[LLMClient] = None

    def __post_init__(self) -> None:
        config = self.config
        if config.model_variant not in MODEL_VARIANTS:
            raise PersonalityConfigError(f"Unsupported model variant '{config.model_variant}'")
        if config.db_path != ":memory:":
            Path(config.db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
            db_path = str(Path(config.db_path).expanduser())
        else:
            db_path = config.db_path

        self.database = MemoryDatabase(db_path)
        self.personality = PersonalityManager()
        self.store = MemoryStore(
            db=self.database,
            short_term_ttl=config.short_term_ttl,
            profile_hook=self.personality.update_user_profile,
            pending=PendingWrites(retry_delay=config.retry_delay, max_entries=config.max_pending),
        )
        self.agents = AgentManager(
            store=self.store,
            personality=self.personality,
            user_level=config.user_level,
            schedule=ConsolidationSchedule(every=config.consolidate_every),
        )
        self.processor = MemoryProcessor(store=self.store)
        self.local = LocalMemory(Path(config.memory_dir))

        if self.llm_client is None:
            self.llm_client = LLMClient(
                base_url=config.llm_url,
                model=config.llm_model or GENERATION_PARAMS[config.model_variant]["model"],
                provider=config.llm_provider,
            )
        self.composer = ChatComposer(
            llm_client=self.llm_client,
            store=self.store,
            agents=self.agents,
            processor=self.processor,
            local=self.local,
            model_variant=config.model_variant,
            model_override=config.llm_model,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def start_chat(self, user_id: str, chat_id: str, model: Optional[str] = None) -> None:
        if not self.agents.has_session(user_id, chat_id):
            self.agents.initialize_agent(
                AgentConfig(user_id=user_id, chat_id=chat_id, model=model or self.config.model_variant)
            )

    def end_chat(self, user_id: str, chat_id: str) -> None:
        self.agents.remove_agent(user_id, chat_id)
        self.composer.reset_conversation(user_id, chat_id)

    def send(
        self,
        user_id: str,
        chat_id: str,
        content: str,
        *,
        image_url: Optional[str] = None,
        model: Optional[str] = None,
    ) -> str:
        self.start_chat(user_id, chat_id, model)
        return self.composer.send_message(user_id, chat_id, content, image_url=image_url)

    def preview_prompt(self, user_id: str, chat_id: str, content: str, model: Optional[str] = None) -> str:
        self.start_chat(user_id, chat_id, model)
        return self.composer.build_system_prompt(user_id, chat_id, content)


def _iter_turns(stream: Iterable[str]) -> Iterable[Mapping[str, object]]:
    for raw_line in stream:
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            turn = json.loads(line)
        except json.JSONDecodeError as exc:  # pragma: no cover - CLI guard
            logger.error("Skipping malformed JSON line: %s", line)
            raise SystemExit(1) from exc
        if not isinstance(turn, Mapping) or "content" not in turn:
            logger.error("Each line must include a 'content' field: %s", line)
            raise SystemExit(1)
        yield turn


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Chat with Kiara using persistent memory")
    parser.add_argument("--env-file", help="Optional .env file to load before reading settings")
    parser.add_argument("--db", help="SQLite file for storing memories")
    parser.add_argument("--memory-dir", help="Directory for per-user chat transcripts")
    parser.add_argument("--llm-url", help="Base URL of the OpenAI-compatible gateway")
    parser.add_argument("--llm-model", help="Override the model chosen by the variant")
    parser.add_argument("--model-variant", choices=list(MODEL_VARIANTS), help="Assistant personality")
    parser.add_argument(
        "--user-level",
        choices=["beginner", "intermediate", "expert"],
        help="Expertise level used to adapt response style",
    )
    parser.add_argument(
        "--input",
        type=Path,
        help="Optional path to a JSONL file. Defaults to reading from standard input.",
    )
    parser.add_argument(
        "--show-prompt",
        action="store_true",
        help="Print the composed system prompt instead of calling the model.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging to trace prompt/response payloads.",
    )

    args = parser.parse_args(list(argv) if argv is not None else None)

    config = load_config(args.env_file)
    for attr, value in (
        ("db_path", args.db),
        ("memory_dir", args.memory_dir),
        ("llm_url", args.llm_url),
        ("llm_model", args.llm_model),
        ("model_variant", args.model_variant),
        ("user_level", args.user_level),
    ):
        if value:
            setattr(config, attr, value)

    logging.basicConfig(level=logging.DEBUG if args.verbose else config.log_level.upper())

    runtime = KiaraRuntime(config=config)

    def _run_stream(stream: Iterable[str]) -> list[Mapping[str, object]]:
        results: list[Mapping[str, object]] = []
        for turn in _iter_turns(stream):
            user_id = str(turn.get("user_id") or "local-user")
            chat_id = str(turn.get("chat_id") or "chat-1")
            content = str(turn["content"])
            image_url = turn.get("image_url")
            if args.show_prompt:
                prompt = runtime.preview_prompt(user_id, chat_id, content)
                results.append({"user_id": user_id, "chat_id": chat_id, "prompt": prompt})
                continue
            reply = runtime.send(
                user_id, chat_id, content, image_url=str(image_url) if image_url else None
            )
            results.append({"user_id": user_id, "chat_id": chat_id, "reply": reply})
        return results

    if args.input:
        with args.input.open("r", encoding="utf-8") as fh:
            results = _run_stream(fh)
    else:
        results = _run_stream(sys.stdin)

    for result in results:
        print(dumps_payload(result))

    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
