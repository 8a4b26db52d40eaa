"""Rule-based extraction of typed memories from chat text."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Pattern, Sequence, Tuple

from .schemas import MemoryCandidate

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant")

# Capitalised name words stay case-sensitive so "I'm Maria and I ..." stops at "Maria".
_NAME_WORDS = r"([A-Z][a-z]+(?: [A-Z][a-z]+)*)"
NAME_PATTERN = re.compile(r"(?i:\b(?:I am|I'm|my name is|call me))\s" + _NAME_WORDS)
NAME_FACT_PATTERN = re.compile(r"(?i:User's name is )" + _NAME_WORDS)
NAME_CORRECTION = re.compile(
    r"(?i:(?:no,?\s+)?(?:actually,?\s+)?my (?:real |actual )?name is not )"
    + _NAME_WORDS
    + r",? (?i:it'?s|it is) "
    + _NAME_WORDS
)

_TECHNOLOGIES = r"(?:React|Vue|Angular|Node\.js|Python|JavaScript|TypeScript|SQL|Supabase)"


def _describes_image(text: str) -> bool:
    return "image" in text and any(word in text for word in ("shows", "displays", "contains"))


@dataclass(frozen=True)
class ExtractionRule:
    """One independent pattern rule with a fixed type, category and confidence.

    ``template`` is formatted with ``match`` (the stripped full match) and
    ``groups`` (``groups[0]`` is the full match, ``groups[n]`` the n-th group).
    ``limit`` keeps only the first matches, after de-duplication when
    ``unique`` is set and before ``min_match_length`` filtering.
    """

    name: str
    pattern: Pattern[str]
    type: str
    confidence: float
    category: Optional[str] = None
    template: str = "{match}"
    roles: Tuple[str, ...] = ROLES
    limit: Optional[int] = None
    unique: bool = False
    min_text_length: int = 0
    min_match_length: int = 0
    requires: Optional[Callable[[str], bool]] = None

    def applies_to(self, text: str, role: str) -> bool:
        if role not in self.roles:
            return False
        if len(text) <= self.min_text_length:
            return False
        if self.requires is not None and not self.requires(text):
            return False
        return True

    def apply(self, text: str, role: str) -> List[MemoryCandidate]:
        if not self.applies_to(text, role):
            return []

        matches = list(self.pattern.finditer(text))
        if self.unique:
            seen: set[str] = set()
            deduped = []
            for match in matches:
                key = match.group(0).strip()
                if key in seen:
                    continue
                seen.add(key)
                deduped.append(match)
            matches = deduped
        if self.limit is not None:
            matches = matches[: self.limit]

        candidates: List[MemoryCandidate] = []
        for match in matches:
            full = match.group(0).strip()
            if len(full) <= self.min_match_length:
                continue
            groups = [full] + [(value or "").strip() for value in match.groups()]
            candidates.append(
                MemoryCandidate(
                    content=self.template.format(match=full, groups=groups),
                    type=self.type,
                    category=self.category,
                    confidence=self.confidence,
                    rule=self.name,
                )
            )
        return candidates


RULES: Tuple[ExtractionRule, ...] = (
    ExtractionRule(
        name="name",
        pattern=NAME_PATTERN,
        type="fact",
        category="personal",
        confidence=0.9,
        template="User's name is {groups[1]}",
        limit=1,
    ),
    ExtractionRule(
        name="name_correction",
        pattern=NAME_CORRECTION,
        type="fact",
        category="personal",
        confidence=0.9,
        template="User's name is {groups[2]}",
        roles=("user",),
        limit=1,
    ),
    ExtractionRule(
        name="likes",
        pattern=re.compile(r"\bI (?:really )?(?:like|love|enjoy|prefer) (.+?)(?=[.\n]|$)", re.IGNORECASE),
        type="preference",
        category="interests",
        confidence=0.8,
    ),
    ExtractionRule(
        name="dislikes",
        pattern=re.compile(
            r"\bI (?:really )?(?:dislike|hate|don't like|don't enjoy) (.+?)(?=[.\n]|$)",
            re.IGNORECASE,
        ),
        type="preference",
        category="dislikes",
        confidence=0.8,
    ),
    ExtractionRule(
        name="background",
        pattern=re.compile(r"\b(?:I am|I'm) (?:a|an) ([^.,!?]+)", re.IGNORECASE),
        type="context",
        category="background",
        confidence=0.7,
    ),
    ExtractionRule(
        name="personality",
        pattern=re.compile(r"\bI (?:tend to|usually|often|always) ([^.,!?]+)", re.IGNORECASE),
        type="personality",
        category="traits",
        confidence=0.6,
    ),
    ExtractionRule(
        name="work",
        pattern=re.compile(
            r"\b(?:we|I) (?:worked on|developed|created|built|implemented) ([^.,!?]+)",
            re.IGNORECASE,
        ),
        type="context",
        category="work",
        confidence=0.85,
    ),
    ExtractionRule(
        name="technical",
        pattern=re.compile(r"\b(?:using|with|in) " + _TECHNOLOGIES + r"([^.,!?]*)", re.IGNORECASE),
        type="context",
        category="technical",
        confidence=0.9,
    ),
    ExtractionRule(
        name="questions",
        pattern=re.compile(r"[^.!?]+\?"),
        type="context",
        category="questions",
        confidence=0.85,
        template="User asked: {match}",
        roles=("user",),
    ),
    ExtractionRule(
        name="answers",
        pattern=re.compile(r"(?:The|This|It is|There are) [^.!?]+\."),
        type="context",
        category="answers",
        confidence=0.75,
        template="Assistant provided information: {match}",
        roles=("assistant",),
        limit=2,
        min_text_length=50,
        min_match_length=20,
    ),
    ExtractionRule(
        name="entities",
        pattern=re.compile(r"\b(?:the|a|an) " + _NAME_WORDS),
        type="context",
        category="entities",
        confidence=0.6,
        template="Mentioned {match}",
        limit=3,
        unique=True,
    ),
    ExtractionRule(
        name="image",
        pattern=re.compile(r"(?:image|picture|photo) (?:shows|displays|contains|depicts) ([^.!?]+)", re.IGNORECASE),
        type="context",
        category="visual",
        confidence=0.9,
        template="Image described as: {groups[1]}",
        limit=1,
        requires=_describes_image,
    ),
)

# Narrow per-turn rules used by the agent manager: at most one memory of each kind.
AGENT_RULES: Tuple[ExtractionRule, ...] = (
    ExtractionRule(
        name="name",
        pattern=NAME_PATTERN,
        type="fact",
        category="personal",
        confidence=0.9,
        template="User's name is {groups[1]}",
        roles=("user",),
        limit=1,
    ),
    ExtractionRule(
        name="preference",
        pattern=re.compile(r"\bI (?:like|love|enjoy|prefer) (.+?)(?=[.\n]|$)", re.IGNORECASE),
        type="preference",
        category="interests",
        confidence=0.8,
        template="User likes {groups[1]}",
        roles=("user",),
        limit=1,
    ),
    ExtractionRule(
        name="context",
        pattern=re.compile(r"\bI am (?:a|an) (.+?)(?=[.\n]|$)", re.IGNORECASE),
        type="context",
        category="background",
        confidence=0.7,
        template="User is {groups[1]}",
        roles=("user",),
        limit=1,
    ),
)


@dataclass
class MemoryExtractor:
    """Evaluate every rule of a rule table independently against a message."""

    rules: Sequence[ExtractionRule] = field(default_factory=lambda: RULES)

    def extract(self, text: str, role: str = "user") -> List[MemoryCandidate]:
        if not text:
            return []
        candidates: List[MemoryCandidate] = []
        for rule in self.rules:
            try:
                found = rule.apply(text, role)
            except Exception as exc:
                logger.warning("Extraction rule %s failed: %s", rule.name, exc)
                continue
            if found:
                logger.debug("Rule %s produced %s candidate(s)", rule.name, len(found))
            candidates.extend(found)
        return candidates


def extract_name(content: str) -> Optional[str]:
    """Return the name stored in a ``"User's name is X"`` statement."""

    match = NAME_FACT_PATTERN.search(content)
    return match.group(1) if match else None


__all__ = [
    "AGENT_RULES",
    "ExtractionRule",
    "MemoryExtractor",
    "NAME_CORRECTION",
    "NAME_PATTERN",
    "RULES",
    "extract_name",
]
