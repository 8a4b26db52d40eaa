"""OpenAI-compatible chat client for the hosted LLM gateway."""

from __future__ import annotations

import logging
import os
from copy import deepcopy
from typing import Any, Iterator, Mapping, MutableMapping, Sequence

from openai import OpenAI

logger = logging.getLogger(__name__)

PROVIDER_KEYS: Mapping[str, str] = {
    "openrouter": "OPENROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
}

OPENROUTER_HEADERS: Mapping[str, str] = {
    "HTTP-Referer": "https://kiara.ai",
    "X-Title": "Kiara Intelligence",
}


class LLMClient:
    """Thin wrapper over :class:`openai.OpenAI` with provider defaults."""

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        provider: str = "openrouter",
        api_key: str | None = None,
        api_key_env: str | None = None,
        default_headers: Mapping[str, str] | None = None,
        default_extra_body: Mapping[str, Any] | None = None,
    ) -> None:
        provider_key = provider.lower()
        if provider_key not in PROVIDER_KEYS:
            raise ValueError(f"Unsupported provider '{provider}'")

        if api_key is None:
            api_key = os.environ.get(api_key_env or PROVIDER_KEYS[provider_key]) or ""

        headers = default_headers
        if headers is None and provider_key == "openrouter":
            headers = OPENROUTER_HEADERS

        self._client = OpenAI(base_url=base_url, api_key=api_key, default_headers=dict(headers or {}))
        self.model = model
        self.provider = provider_key
        self.default_extra_body = dict(default_extra_body or {})

    # ------------------------------------------------------------------
    # Chat completions
    # ------------------------------------------------------------------
    def _payload(
        self,
        messages: Sequence[Mapping[str, object]],
        params: Mapping[str, Any],
        extra_body: Mapping[str, Any] | None,
    ) -> MutableMapping[str, Any]:
        payload: MutableMapping[str, Any] = {"model": self.model, "messages": list(messages)}
        payload.update(params)
        merged = self._merge_extra(extra_body)
        if merged:
            payload["extra_body"] = merged
        return payload

    def chat(
        self,
        messages: Sequence[Mapping[str, object]],
        *,
        extra_body: Mapping[str, Any] | None = None,
        **params: Any,
    ) -> str:
        payload = self._payload(messages, params, extra_body)
        logger.debug("Dispatching chat request: %s", payload)
        response = self._client.chat.completions.create(**payload)
        logger.debug("Chat raw response: %s", response)
        choice = response.choices[0].message
        return getattr(choice, "content", "") or ""

    def stream_chat(
        self,
        messages: Sequence[Mapping[str, object]],
        *,
        extra_body: Mapping[str, Any] | None = None,
        **params: Any,
    ) -> Iterator[str]:
        """Yield content deltas of a streamed chat completion."""

        payload = self._payload(messages, params, extra_body)
        payload["stream"] = True
        logger.debug("Dispatching streaming chat request: %s", payload)
        stream = self._client.chat.completions.create(**payload)
        for chunk in stream:
            if not chunk.choices:
                continue
            delta = getattr(chunk.choices[0], "delta", None)
            content = getattr(delta, "content", None)
            if content:
                yield content

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _merge_extra(
        self, extra_body: Mapping[str, Any] | None
    ) -> MutableMapping[str, Any] | None:
        if not self.default_extra_body and not extra_body:
            return None
        merged: MutableMapping[str, Any] = deepcopy(self.default_extra_body)
        if extra_body:
            for key, value in extra_body.items():
                if (
                    key in merged
                    and isinstance(merged[key], MutableMapping)
                    and isinstance(value, Mapping)
                ):
                    merged[key].update(value)  # type: ignore[arg-type]
                else:
                    merged[key] = deepcopy(value) if isinstance(value, Mapping) else value
        return merged


__all__ = ["LLMClient"]
