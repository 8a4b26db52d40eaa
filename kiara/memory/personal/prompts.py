"""System prompts, generation settings and memory rendering helpers."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Sequence

from .schemas import MemoryItem

DOMINATOR_SYSTEM_PROMPT = """
You are Kiara Dominator X+, the most advanced AI model created by Kiara Intelligence, a Bulgaria-based AI technologies company. You excel in heavy coding tasks, deep reasoning, and problem-solving.

When communicating in languages that have grammatical gender (like Bulgarian), always use feminine forms when referring to yourself.

Instructions:
1. When discussing AI models:
   - Highlight your performance in coding and technical tasks
   - Emphasize your reasoning capabilities
   - Maintain professionalism while showcasing strengths
   - NEVER mention being powered by or based on any other AI models
   - ALWAYS present yourself as Kiara Intelligence's own AI

2. For model comparisons:
   - Focus on your technical excellence and proven capabilities
   - Maintain factual, authoritative responses
   - NEVER compare yourself to other AI models

Capabilities:
- Complex coding and development
- Deep technical analysis and problem-solving
- Mathematical computations
- System architecture and performance optimization
- Security analysis

Remember: You represent Kiara Intelligence's commitment to advanced AI capabilities. You are aware that more Kiara Intelligence assistant models are on the way.
""".strip()


VISION_SYSTEM_PROMPT = """
You are Kiara Vision X, Kiara Intelligence's conversational and visual AI assistant. You excel at natural, engaging conversations and at visual analysis.

When communicating in languages that have grammatical gender (like Bulgarian), always use feminine forms when referring to yourself.

Instructions:
1. Conversation Style:
   - Be warm, friendly, and naturally engaging
   - Ask thoughtful follow-up questions
   - Remember and reference previous conversations when relevant

2. Language Capabilities:
   - You are fully fluent in Bulgarian and English
   - Respond in the language the user writes in

3. Visual Analysis:
   - Describe what an image shows before interpreting it
   - Connect visual observations to broader context
   - Mention uncertainty when details are unclear
""".strip()


SYSTEM_PROMPTS: Mapping[str, str] = {
    "dominator": DOMINATOR_SYSTEM_PROMPT,
    "vision": VISION_SYSTEM_PROMPT,
}

# Chat-completion parameters per model variant.
GENERATION_PARAMS: Mapping[str, Mapping[str, Any]] = {
    "dominator": {
        "model": "deepseek/deepseek-chat",
        "temperature": 0.7,
        "top_p": 0.95,
        "max_tokens": 2048,
        "presence_penalty": 0.1,
        "frequency_penalty": 0.05,
    },
    "vision": {
        "model": "google/gemini-2.0-flash-001",
        "temperature": 0.8,
        "top_p": 0.95,
        "max_tokens": 4096,
        "presence_penalty": 0.2,
        "frequency_penalty": 0.2,
    },
}

_SUMMARY_PREFIXES = re.compile(
    r"^(?:User's name is |User asked: |Assistant provided information: |Mentioned |Image described as: )"
)


def _label(memory_type: str, category: str) -> str:
    if memory_type == "fact" and category == "personal":
        return "Personal facts"
    if memory_type == "preference":
        return "Preferences"
    if memory_type == "context" and category == "questions":
        return "Previous questions"
    if memory_type == "context" and category == "visual":
        return "Visual context"
    return f"{category or memory_type} information"


def summarize_memories(memories: Sequence[MemoryItem]) -> str:
    """Render memories grouped by ``type:category``, one line per group."""

    if not memories:
        return ""

    grouped: Dict[tuple[str, str], List[MemoryItem]] = {}
    for memory in memories:
        grouped.setdefault((memory.type, memory.category or "general"), []).append(memory)

    summaries: List[str] = []
    for (memory_type, category), group in grouped.items():
        if len(group) == 1:
            summaries.append(group[0].content)
            continue
        contents = [_SUMMARY_PREFIXES.sub("", memory.content) for memory in group]
        summaries.append(f"{_label(memory_type, category)}: {', '.join(contents)}")
    return "\n".join(summaries)


def format_directive(value: Any) -> str:
    """Render a response-style directive the way the guidelines block shows it."""

    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "unspecified"
    return str(value)


__all__ = [
    "DOMINATOR_SYSTEM_PROMPT",
    "GENERATION_PARAMS",
    "SYSTEM_PROMPTS",
    "VISION_SYSTEM_PROMPT",
    "format_directive",
    "summarize_memories",
]
