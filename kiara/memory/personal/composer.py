"""Compose memory-augmented chat requests and stream the model's reply."""

from __future__ import annotations

import base64
import logging
import mimetypes
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Optional, Tuple

from .clients import LLMClient
from .local import LocalMemory
from .manager import AgentManager
from .processor import MemoryProcessor
from .prompts import GENERATION_PARAMS, SYSTEM_PROMPTS, summarize_memories
from .store import MemoryStore

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 10
IMAGE_FORMATS = ("image/png", "image/jpeg", "image/webp")


class UnsupportedImageError(ValueError):
    """Raised when an attached image is not PNG, JPEG or WebP."""


def image_data_url(image_url: str) -> str:
    """Return a URL the model can read: data URLs are checked, files inlined."""

    if image_url.startswith(("http://", "https://")):
        return image_url

    if image_url.startswith("data:"):
        media_type = image_url[5:].split(";", 1)[0]
        data_url = image_url
    else:
        path = Path(image_url).expanduser()
        media_type = mimetypes.guess_type(path.name)[0] or ""
        if media_type not in IMAGE_FORMATS:
            raise UnsupportedImageError(f"Unsupported image format: {path.suffix or path.name}")
        encoded = base64.b64encode(path.read_bytes()).decode("ascii")
        data_url = f"data:{media_type};base64,{encoded}"

    if media_type not in IMAGE_FORMATS:
        raise UnsupportedImageError("Unsupported image format. Please use PNG, JPEG, or WebP images.")
    return data_url


def _message_id(role: str) -> str:
    return f"{int(time.time() * 1000)}-{role}"


@dataclass
class ChatComposer:
    """Build the system prompt from every memory layer and stream replies."""

    llm_client: LLMClient
    store: MemoryStore
    agents: AgentManager
    processor: MemoryProcessor
    local: LocalMemory
    model_variant: str = "dominator"
    model_override: Optional[str] = None
    history_limit: int = HISTORY_LIMIT
    histories: Dict[Tuple[str, str], List[MutableMapping[str, Any]]] = field(default_factory=dict)

    def reset_conversation(self, user_id: str, chat_id: str) -> None:
        self.histories.pop((user_id, chat_id), None)

    def _variant(self, user_id: str, chat_id: str) -> str:
        config = self.agents.sessions.get((user_id, chat_id))
        return config.model if config is not None else self.model_variant

    def build_system_prompt(self, user_id: str, chat_id: str, message: str = "") -> str:
        variant = self._variant(user_id, chat_id)
        prompt = SYSTEM_PROMPTS[variant]

        summary = self.local.get_memory_summary(user_id, chat_id)
        if summary:
            prompt += f"\n\nUser Context and Memory:\n{summary}"

        relevant = summarize_memories(self.processor.get_relevant_memories(user_id, chat_id, message))
        if relevant:
            prompt += f"\n\nRelevant Memories:\n{relevant}"

        user_name = self.store.get_user_name(user_id)
        if user_name:
            prompt += f"\n\nUser's name: {user_name}"

        return self.agents.get_enhanced_prompt(user_id, chat_id, prompt)

    def _generation_params(self, variant: str) -> Dict[str, Any]:
        params = dict(GENERATION_PARAMS[variant])
        if self.model_override:
            params["model"] = self.model_override
        return params

    def _record_user_turn(
        self, user_id: str, chat_id: str, content: str, image_url: Optional[str]
    ) -> None:
        self.processor.process_message(user_id, chat_id, content, "user")
        self.agents.process_message(user_id, chat_id, content, True)
        self.local.add_message(
            user_id,
            chat_id,
            message_id=_message_id("user"),
            content=content,
            role="user",
            image_url=image_url,
            model=self._variant(user_id, chat_id),
        )

    def _record_assistant_turn(self, user_id: str, chat_id: str, reply: str) -> None:
        self.local.add_message(
            user_id,
            chat_id,
            message_id=_message_id("assistant"),
            content=reply,
            role="assistant",
        )
        if reply:
            self.processor.process_message(user_id, chat_id, reply, "assistant")
            self.agents.process_message(user_id, chat_id, reply, False)

    def send_message(
        self,
        user_id: str,
        chat_id: str,
        content: str,
        *,
        image_url: Optional[str] = None,
        on_progress: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Send one user turn and return the full assistant reply.

        Memory bookkeeping never fails the call; model and image errors do.
        """

        parts: List[Mapping[str, Any]] = [{"type": "text", "text": content}]
        if image_url:
            parts.append({"type": "image_url", "image_url": {"url": image_data_url(image_url)}})

        try:
            self._record_user_turn(user_id, chat_id, content, image_url)
        except Exception:
            logger.exception("Failed to record user turn for chat %s", chat_id)
        system_prompt = self.build_system_prompt(user_id, chat_id, content)

        history = self.histories.setdefault((user_id, chat_id), [])
        history.append({"role": "user", "content": parts})
        if len(history) > self.history_limit:
            del history[: len(history) - self.history_limit]

        variant = self._variant(user_id, chat_id)
        messages = [{"role": "system", "content": system_prompt}, *history]
        accumulated = ""
        try:
            for delta in self.llm_client.stream_chat(messages, **self._generation_params(variant)):
                accumulated += delta
                if on_progress is not None:
                    on_progress(accumulated)
        except Exception:
            logger.error("Chat completion failed for chat %s", chat_id)
            raise

        history.append({"role": "assistant", "content": accumulated})
        try:
            self._record_assistant_turn(user_id, chat_id, accumulated)
        except Exception:
            logger.exception("Failed to record assistant turn for chat %s", chat_id)
        logger.debug("Assistant reply for %s: %s characters", chat_id, len(accumulated))
        return accumulated


__all__ = ["ChatComposer", "UnsupportedImageError", "image_data_url"]
