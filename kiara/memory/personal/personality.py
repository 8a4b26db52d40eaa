"""Static personality profiles and the behavior adapters built on them."""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, Iterable, Mapping, MutableMapping, Optional

from .schemas import MODEL_VARIANTS, ResponseStyle

logger = logging.getLogger(__name__)

PROFILE_DIR = Path(__file__).resolve().parent / "profiles"
HISTORY_LIMIT = 50
DEFAULT_PROFICIENCY = 0.5


class PersonalityConfigError(ValueError):
    """Raised when a model variant has no usable personality profile."""


@dataclass(frozen=True)
class PersonalityProfile:
    name: str
    version: str
    core_traits: Mapping[str, float]
    communication_style: Mapping[str, float]
    behavioral_patterns: Mapping[str, Any]
    expertise_areas: Mapping[str, Mapping[str, Any]]
    adaptation_rules: Mapping[str, Any]
    memory_weights: Mapping[str, float]
    response_guidelines: Mapping[str, Any]

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "PersonalityProfile":
        try:
            return cls(
                name=str(data["name"]),
                version=str(data.get("version", "0")),
                core_traits=dict(data.get("core_traits", {})),
                communication_style=dict(data.get("communication_style", {})),
                behavioral_patterns=dict(data.get("behavioral_patterns", {})),
                expertise_areas=dict(data.get("expertise_areas", {})),
                adaptation_rules=dict(data["adaptation_rules"]),
                memory_weights=dict(data.get("memory_weights", {})),
                response_guidelines=dict(data.get("response_guidelines", {})),
            )
        except KeyError as exc:
            raise PersonalityConfigError(f"Personality profile is missing {exc}") from exc


def load_profile(variant: str, profile_dir: Optional[Path] = None) -> PersonalityProfile:
    """Load the JSON profile for ``variant``; there is no fallback profile."""

    if variant not in MODEL_VARIANTS:
        raise PersonalityConfigError(f"Unsupported model variant '{variant}'")
    path = (profile_dir or PROFILE_DIR) / f"{variant}.json"
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        raise PersonalityConfigError(f"Cannot load personality profile {path}: {exc}") from exc
    return PersonalityProfile.from_payload(data)


class BehaviorAdapter:
    """Derive response-style directives from a personality profile.

    One adapter exists per model variant and is shared by every session of
    that variant, so the interaction history and user preferences it holds
    are shared as well.
    """

    def __init__(self, profile: PersonalityProfile, history_limit: int = HISTORY_LIMIT) -> None:
        self.profile = profile
        self.user_preferences: Dict[str, Any] = {}
        self.interaction_history: Deque[Mapping[str, Any]] = deque(maxlen=history_limit)

    def adapt_response_style(self, user_level: str, context: str = "") -> ResponseStyle:
        rules = self.profile.adaptation_rules
        user_rules = (rules.get("user_expertise") or {}).get(user_level)
        if user_rules is None:
            user_rules = (rules.get("user_needs") or {}).get("quick_help")
        if user_rules is None:
            raise PersonalityConfigError(
                f"Profile {self.profile.name} has no adaptation rules for '{user_level}'"
            )

        detail = user_rules.get("explanation_detail", user_rules.get("detail_level"))
        step = user_rules.get("step_by_step", user_rules.get("step_breakdown"))
        return ResponseStyle(
            detail_level=detail,
            technical_terms=user_rules.get("technical_terms"),
            step_by_step=step,
            formality=self.profile.communication_style.get("formality_level"),
        )

    def update_user_preference(self, key: str, value: Any) -> None:
        self.user_preferences[key] = value

    def add_interaction(self, interaction: Mapping[str, Any]) -> None:
        record = dict(interaction)
        record["timestamp"] = datetime.now(timezone.utc).isoformat()
        self.interaction_history.append(record)

    def get_response_guidelines(self, context: str) -> Mapping[str, Any]:
        context_type = determine_context_type(context)
        return {
            **self.profile.response_guidelines,
            "adapted_style": self._adapted_style(context_type),
        }

    def _adapted_style(self, context_type: str) -> Mapping[str, Any]:
        rules = self.profile.adaptation_rules
        context_rules = (rules.get("conversation_context") or {}).get(context_type)
        if context_rules is None:
            context_rules = (rules.get("image_context") or {}).get(context_type) or {}
        return {**self.profile.communication_style, **context_rules}

    def get_expertise_level(self, domain: str) -> float:
        for area in self.profile.expertise_areas.values():
            for key in ("capabilities", "types", "areas"):
                if domain in (area.get(key) or ()):
                    return float(area.get("proficiency", DEFAULT_PROFICIENCY))
        return DEFAULT_PROFICIENCY

    @property
    def personality_traits(self) -> Mapping[str, float]:
        return self.profile.core_traits

    @property
    def memory_weights(self) -> Mapping[str, float]:
        return self.profile.memory_weights


def determine_context_type(context: str) -> str:
    if "code" in context or "programming" in context:
        return "technical"
    if "learn" in context or "explain" in context:
        return "educational"
    return "casual"


@dataclass
class PersonalityManager:
    """Shared adapters per model variant plus the per-user profile overlay."""

    variants: Iterable[str] = MODEL_VARIANTS
    profile_dir: Optional[Path] = None
    user_profiles: MutableMapping[str, Dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._adapters: Dict[str, BehaviorAdapter] = {
            variant: BehaviorAdapter(load_profile(variant, self.profile_dir))
            for variant in self.variants
        }

    def get_adapter(self, model: str) -> BehaviorAdapter:
        try:
            return self._adapters[model]
        except KeyError:
            raise PersonalityConfigError(f"Unsupported model variant '{model}'") from None

    def update_user_profile(self, user_id: str, data: Mapping[str, Any]) -> None:
        profile = self.user_profiles.setdefault(user_id, {})
        profile.update(data)
        profile["lastUpdated"] = datetime.now(timezone.utc).isoformat()

    def get_user_profile(self, user_id: str) -> Optional[Mapping[str, Any]]:
        return self.user_profiles.get(user_id)

    def enhance_prompt(self, base_prompt: str, user_id: str, model: str) -> str:
        adapter = self.get_adapter(model)
        lines = [base_prompt, "", "Personality Traits:"]
        lines.extend(f"- {trait}: {value}" for trait, value in adapter.personality_traits.items())

        profile = self.get_user_profile(user_id)
        if profile:
            lines.extend(["", "User Context:"])
            lines.extend(
                f"- {key}: {value}" for key, value in profile.items() if key != "lastUpdated"
            )

        lines.extend(["", "Memory Importance:"])
        lines.extend(f"- {kind}: {weight}" for kind, weight in adapter.memory_weights.items())
        return "\n".join(lines)


__all__ = [
    "BehaviorAdapter",
    "PersonalityConfigError",
    "PersonalityManager",
    "PersonalityProfile",
    "determine_context_type",
    "load_profile",
]
