"""Personal memory and personality layer for the Kiara chat client.

This subpackage augments each chat turn with what the assistant knows about
the user. It wires together

* a regex rule engine that lifts facts and preferences out of messages,
* a per-user memory store with a SQLite backend and a short-term buffer,
* personality profiles that adapt response style per model variant, and
* a composer that folds all of it into the system prompt of a streamed chat.
"""

from .clients import LLMClient
from .composer import ChatComposer, UnsupportedImageError
from .config import KiaraConfig, load_config
from .extraction import AGENT_RULES, RULES, ExtractionRule, MemoryExtractor, extract_name
from .local import LocalMemory
from .manager import AgentManager, ConsolidationSchedule
from .personality import (
    BehaviorAdapter,
    PersonalityConfigError,
    PersonalityManager,
    PersonalityProfile,
)
from .processor import MemoryProcessor
from .runtime import KiaraRuntime, main as runtime_main
from .schemas import (
    AgentConfig,
    ChatMemory,
    ChatMessage,
    MemoryCandidate,
    MemoryItem,
    ResponseStyle,
    ShortTermEntry,
    UserMemory,
)
from .storage import MemoryDatabase
from .store import MemoryStore, PendingWrites

__all__ = [
    "AGENT_RULES",
    "AgentConfig",
    "AgentManager",
    "BehaviorAdapter",
    "ChatComposer",
    "ChatMemory",
    "ChatMessage",
    "ConsolidationSchedule",
    "ExtractionRule",
    "KiaraConfig",
    "KiaraRuntime",
    "LLMClient",
    "LocalMemory",
    "MemoryCandidate",
    "MemoryDatabase",
    "MemoryExtractor",
    "MemoryItem",
    "MemoryProcessor",
    "MemoryStore",
    "PendingWrites",
    "PersonalityConfigError",
    "PersonalityManager",
    "PersonalityProfile",
    "RULES",
    "ResponseStyle",
    "ShortTermEntry",
    "UnsupportedImageError",
    "UserMemory",
    "extract_name",
    "load_config",
    "runtime_main",
]
