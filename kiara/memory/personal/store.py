"""Per-user memory cache backed by :class:`MemoryDatabase`."""

from __future__ import annotations

import logging
import re
import time
from collections import deque
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Deque,
    Dict,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Tuple,
)

from .extraction import extract_name
from .schemas import MEMORY_TYPES, MemoryItem, ShortTermEntry
from .storage import MemoryDatabase

logger = logging.getLogger(__name__)

SHORT_TERM_TTL = 30 * 60
BUCKETS = ("facts", "preferences", "context")
SYSTEM_CATEGORY = "system"
_TYPE_BUCKET = {"fact": "facts", "preference": "preferences"}
_KEY_PATTERN = re.compile(r"[^a-z0-9]")


def memory_key(content: str) -> str:
    """Normalized content key used for the global index and de-duplication."""

    return _KEY_PATTERN.sub("_", content.lower())


def group_key(content: str) -> str:
    """Coarse consolidation key: the first three lowercase words."""

    return " ".join(content.lower().split(" ")[:3])


def bucket_for(memory_type: str) -> str:
    return _TYPE_BUCKET.get(memory_type, "context")


@dataclass
class PendingWrites:
    """Backend mutations that failed and wait to be replayed.

    Each entry is ``(operation, args)`` where ``operation`` is ``"upsert"``
    (args: ``(MemoryItem,)``), ``"deactivate"`` (args: ``(user_id, memory_id)``)
    or ``"confidence"`` (args: ``(user_id, memory_id, confidence)``).

    Replay never sleeps: after a failed pass the next one is skipped until
    ``retry_delay * 2**failures`` seconds (at most ``max_delay``) have passed.
    The queue keeps the newest ``max_entries`` writes.
    """

    retry_delay: float = 0.5
    max_delay: float = 60.0
    max_entries: int = 500
    clock: Callable[[], float] = time.time
    entries: Deque[Tuple[str, Tuple[Any, ...]]] = field(default_factory=deque)
    failures: int = 0
    next_attempt: float = 0.0

    def record(self, operation: str, *args: Any) -> None:
        self.entries.append((operation, args))
        while len(self.entries) > self.max_entries:
            dropped, _ = self.entries.popleft()
            logger.warning("Pending write queue full, dropped oldest %s", dropped)

    def __len__(self) -> int:
        return len(self.entries)

    def replay(self, db: MemoryDatabase) -> int:
        """Replay queued writes in order until one fails; return how many succeeded."""

        now = self.clock()
        if not self.entries or now < self.next_attempt:
            return 0

        applied = 0
        while self.entries:
            operation, args = self.entries[0]
            try:
                self._apply(db, operation, args)
            except Exception as exc:
                self.failures += 1
                delay = min(self.max_delay, self.retry_delay * (2 ** (self.failures - 1)))
                self.next_attempt = now + delay
                logger.warning(
                    "Pending %s failed (attempt %s), next replay in %ss: %s",
                    operation,
                    self.failures,
                    delay,
                    exc,
                )
                break
            self.entries.popleft()
            applied += 1
        else:
            self.failures = 0
            self.next_attempt = 0.0
        return applied

    @staticmethod
    def _apply(db: MemoryDatabase, operation: str, args: Tuple[Any, ...]) -> None:
        if operation == "upsert":
            db.upsert_memory(*args)
        elif operation == "deactivate":
            db.set_active(args[0], args[1], False)
        elif operation == "confidence":
            db.update_confidence(*args)
        else:
            raise ValueError(f"Unknown pending operation '{operation}'")


@dataclass
class MemoryStore:
    """Long-term, global and short-term memories for every user.

    The in-process cache answers all reads. Backend writes are best effort:
    failures are logged and queued in :attr:`pending`, and
    :meth:`flush_pending` replays them.
    """

    db: MemoryDatabase
    short_term_ttl: float = SHORT_TERM_TTL
    clock: Callable[[], float] = time.time
    profile_hook: Optional[Callable[[str, Mapping[str, Any]], None]] = None
    pending: PendingWrites = field(default_factory=PendingWrites)

    def __post_init__(self) -> None:
        self._memories: Dict[str, List[MemoryItem]] = {}
        self._global: Dict[str, Dict[str, MutableMapping[str, MemoryItem]]] = {}
        self._short_term: Dict[str, List[ShortTermEntry]] = {}

    # ------------------------------------------------------------------
    # Backend helpers
    # ------------------------------------------------------------------
    def _persist(self, operation: str, *args: Any) -> bool:
        try:
            PendingWrites._apply(self.db, operation, args)
            return True
        except Exception as exc:
            logger.warning("Memory backend %s failed, queued for retry: %s", operation, exc)
            self.pending.record(operation, *args)
            return False

    def flush_pending(self) -> int:
        if not len(self.pending):
            return 0
        applied = self.pending.replay(self.db)
        if applied:
            logger.info("Replayed %s pending memory write(s), %s left", applied, len(self.pending))
        return applied

    def _user_global(self, user_id: str) -> Dict[str, MutableMapping[str, MemoryItem]]:
        return self._global.setdefault(user_id, {bucket: {} for bucket in BUCKETS})

    def _find_cached(self, user_id: str, content: str) -> Optional[MemoryItem]:
        lowered = content.lower()
        for item in self._memories.get(user_id, []):
            if item.is_active and item.content.lower() == lowered:
                return item
        return None

    def _find_by_id(self, user_id: str, memory_id: str) -> Optional[MemoryItem]:
        for item in self._memories.get(user_id, []):
            if item.id == memory_id:
                return item
        return None

    # ------------------------------------------------------------------
    # Long-term memories
    # ------------------------------------------------------------------
    def add_memory(
        self,
        user_id: str,
        content: str,
        type: str,
        confidence: float = 0.8,
        *,
        chat_id: Optional[str] = None,
        category: Optional[str] = None,
        source: str = "user",
        memory_context: Optional[Mapping[str, Any]] = None,
    ) -> MemoryItem:
        """Store a memory unless an active one with the same content exists.

        A duplicate (case-insensitive content) keeps the higher confidence and
        is returned instead of a new record. Records in the ``"system"``
        category are stored but never indexed or recalled.
        """

        if type not in MEMORY_TYPES:
            raise ValueError(f"Unsupported memory type '{type}'")

        existing = self._find_cached(user_id, content)
        if existing is None:
            try:
                existing = self.db.find_active_by_content(user_id, content)
            except Exception as exc:
                logger.warning("Duplicate check failed for user %s: %s", user_id, exc)
                existing = None
            if existing is not None and self._find_by_id(user_id, existing.id) is not None:
                # cached copy is inactive; the backend has not caught up yet
                existing = None
            if existing is not None:
                self._memories.setdefault(user_id, []).append(existing)

        if existing is not None:
            if confidence > existing.confidence:
                existing.confidence = confidence
                existing.touch()
                if memory_context:
                    existing.memory_context = dict(memory_context)
                self._persist("upsert", existing)
                logger.debug("Raised confidence of memory %s to %s", existing.id, confidence)
            self._index(existing)
            self._notify(user_id, existing)
            return existing

        item = MemoryItem(
            user_id=user_id,
            chat_id=chat_id,
            content=content,
            type=type,
            category=category,
            confidence=confidence,
            source=source,
            memory_context=dict(memory_context or {}),
        )
        self._memories.setdefault(user_id, []).append(item)
        if self._persist("upsert", item):
            try:
                self.db.increment_memory_count(user_id)
            except Exception as exc:
                logger.warning("Failed to update memory store counters: %s", exc)
        self._index(item)
        self._notify(user_id, item)
        return item

    def _notify(self, user_id: str, item: MemoryItem) -> None:
        if self.profile_hook is None:
            return
        try:
            self.profile_hook(user_id, {"lastMemory": item.content, "memoryType": item.type})
        except Exception as exc:
            logger.warning("Profile hook failed for %s: %s", user_id, exc)

    def _index(self, item: MemoryItem) -> None:
        if item.category == SYSTEM_CATEGORY:
            return
        user_global = self._user_global(item.user_id)
        if item.type == "fact":
            name = extract_name(item.content)
            if name:
                previous = user_global["facts"].get("name")
                if previous is not None and previous.id != item.id and previous.is_active:
                    if previous.content.lower() != item.content.lower():
                        self.invalidate_memory(item.user_id, previous.id)
                user_global["facts"]["name"] = item
        user_global[bucket_for(item.type)][memory_key(item.content)] = item

    def get_memories(self, user_id: str, include_inactive: bool = False) -> List[MemoryItem]:
        items = self._memories.get(user_id, [])
        if include_inactive:
            return list(items)
        return [item for item in items if item.is_active]

    def get_global_memories(self, user_id: str) -> Optional[Mapping[str, Mapping[str, MemoryItem]]]:
        user_global = self._global.get(user_id)
        if user_global is None:
            return None
        return {
            bucket: {key: item for key, item in entries.items() if item.is_active}
            for bucket, entries in user_global.items()
        }

    def get_user_name(self, user_id: str) -> Optional[str]:
        name_fact = self._global.get(user_id, {}).get("facts", {}).get("name")
        if name_fact is None or not name_fact.is_active:
            return None
        return extract_name(name_fact.content)

    def get_relevant_memories(self, user_id: str, context: str = "", limit: int = 5) -> List[MemoryItem]:
        """Global memories plus the top backend memories, de-duplicated.

        ``context`` does not influence ranking; results are ordered by
        confidence. ``limit`` bounds the backend query only.
        """

        memories: List[MemoryItem] = []
        for entries in self._global.get(user_id, {}).values():
            memories.extend(entries.values())

        try:
            memories.extend(self.db.query_memories(user_id, limit=limit))
        except Exception as exc:
            logger.warning("Failed to load relevant memories for %s: %s", user_id, exc)

        seen: set[str] = set()
        unique: List[MemoryItem] = []
        for item in memories:
            if not item.is_active or item.category == SYSTEM_CATEGORY:
                continue
            if self._is_invalidated(user_id, item.id):
                continue
            key = memory_key(item.content)
            if key in seen:
                continue
            seen.add(key)
            unique.append(item)
        unique.sort(key=lambda item: item.confidence, reverse=True)
        return unique

    def _is_invalidated(self, user_id: str, memory_id: str) -> bool:
        cached = self._find_by_id(user_id, memory_id)
        return cached is not None and not cached.is_active

    def update_memory_confidence(self, user_id: str, memory_id: str, confidence: float) -> None:
        item = self._find_by_id(user_id, memory_id)
        if item is not None:
            item.confidence = confidence
            item.touch()
        self._persist("confidence", user_id, memory_id, confidence)

    def invalidate_memory(self, user_id: str, memory_id: str) -> None:
        """Soft-delete a memory in the backend and the local cache."""

        self._persist("deactivate", user_id, memory_id)
        item = self._find_by_id(user_id, memory_id)
        if item is not None:
            item.is_active = False
        for entries in self._global.get(user_id, {}).values():
            for key in [key for key, value in entries.items() if value.id == memory_id]:
                del entries[key]

    def consolidate_memories(self, user_id: str) -> int:
        """Keep the most confident memory of each group; return invalidations."""

        groups: Dict[str, List[MemoryItem]] = {}
        for item in self.get_memories(user_id):
            groups.setdefault(group_key(item.content), []).append(item)

        invalidated = 0
        for key, members in groups.items():
            if len(members) < 2:
                continue
            best = max(members, key=lambda item: item.confidence)
            for item in members:
                if item.id != best.id:
                    self.invalidate_memory(user_id, item.id)
                    invalidated += 1
            logger.debug("Consolidated group %r for %s: kept %s", key, user_id, best.id)
        if invalidated:
            logger.info("Consolidation invalidated %s memories for %s", invalidated, user_id)
        return invalidated

    # ------------------------------------------------------------------
    # Short-term memories
    # ------------------------------------------------------------------
    def add_to_short_term_memory(self, user_id: str, content: Any, ttl: Optional[float] = None) -> None:
        duration = self.short_term_ttl if ttl is None else ttl
        entries = self._short_term.setdefault(user_id, [])
        entries.append(ShortTermEntry(content=content, expiry=self.clock() + duration))
        self._purge_short_term(user_id)

    def get_short_term_memories(self, user_id: str) -> List[ShortTermEntry]:
        self._purge_short_term(user_id)
        return list(self._short_term.get(user_id, []))

    def _purge_short_term(self, user_id: str) -> None:
        entries = self._short_term.get(user_id)
        if not entries:
            return
        now = self.clock()
        self._short_term[user_id] = [entry for entry in entries if entry.expiry > now]


__all__ = [
    "BUCKETS",
    "MemoryStore",
    "PendingWrites",
    "SHORT_TERM_TTL",
    "SYSTEM_CATEGORY",
    "bucket_for",
    "group_key",
    "memory_key",
]
