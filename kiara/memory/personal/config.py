"""Environment-driven settings for the Kiara runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


@dataclass
class KiaraConfig:
    db_path: str = "kiara_memory.sqlite"
    memory_dir: str = "~/.kiara"
    llm_url: str = "https://openrouter.ai/api/v1"
    llm_provider: str = "openrouter"
    llm_model: Optional[str] = None
    model_variant: str = "dominator"
    short_term_ttl: float = 1800.0
    consolidate_every: int = 10
    user_level: str = "intermediate"
    retry_delay: float = 0.5
    max_pending: int = 500
    log_level: str = "INFO"


def load_config(env_file: Optional[str] = None) -> KiaraConfig:
    """Load configuration from environment variables, reading ``.env`` first."""

    load_dotenv(env_file)
    return KiaraConfig(
        db_path=os.getenv("KIARA_DB_PATH", "kiara_memory.sqlite"),
        memory_dir=os.getenv("KIARA_MEMORY_DIR", "~/.kiara"),
        llm_url=os.getenv("OPENROUTER_API_URL", "https://openrouter.ai/api/v1"),
        llm_provider=os.getenv("KIARA_LLM_PROVIDER", "openrouter"),
        llm_model=os.getenv("KIARA_LLM_MODEL") or None,
        model_variant=os.getenv("KIARA_MODEL_VARIANT", "dominator"),
        short_term_ttl=float(os.getenv("KIARA_SHORT_TERM_TTL", "1800")),
        consolidate_every=int(os.getenv("KIARA_CONSOLIDATE_EVERY", "10")),
        user_level=os.getenv("KIARA_USER_LEVEL", "intermediate"),
        retry_delay=float(os.getenv("KIARA_RETRY_DELAY", "0.5")),
        max_pending=int(os.getenv("KIARA_MAX_PENDING_WRITES", "500")),
        log_level=os.getenv("KIARA_LOG_LEVEL", "INFO"),
    )


__all__ = ["KiaraConfig", "load_config"]
