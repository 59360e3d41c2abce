"""Client for an OpenAI-compatible chat completion endpoint."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence

import httpx

from .errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"
DEFAULT_BASE_URL = "https://api.openai.com/v1"


# -----------------------------
# Types & defaults
# -----------------------------

@dataclass
class CompletionConfig:
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    api_key_env: str = "OPENAI_API_KEY"
    timeout: Optional[float] = None  # None: wait for the provider indefinitely


class CompletionClient:
    """Stateless text-completion client.

    ``complete`` sends the ordered ``{role, content}`` list and returns the
    generated text. No retries are attempted here; a failed call raises
    :class:`UpstreamError` and retry policy is left to the caller.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        config: Optional[CompletionConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.config = config or CompletionConfig()
        self.api_key = api_key if api_key is not None else os.environ.get(self.config.api_key_env, "")
        if not self.api_key:
            logger.warning("%s is not set; completion requests will be rejected upstream", self.config.api_key_env)
        self._client = httpx.Client(
            base_url=self.config.base_url.rstrip("/"),
            timeout=httpx.Timeout(self.config.timeout),
            transport=transport,
        )

    def complete(self, messages: Sequence[Mapping[str, Any]]) -> str:
        payload = {
            "model": self.config.model,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
            "stream": False,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            r = self._client.post("/chat/completions", json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Completion request failed: {e}") from e

        if r.is_error:
            raise UpstreamError(f"Completion API error: {r.status_code}")

        try:
            data = r.json()
        except ValueError as e:
            raise UpstreamError(f"Completion API returned invalid JSON: {e}") from e
        return _reply_text(data)

    def close(self) -> None:
        self._client.close()


def _reply_text(data: Any) -> str:
    """Pull ``choices[0].message.content``; absent content is an empty reply."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return "" if content is None else str(content)


# -----------------------------
# Convenience factory
# -----------------------------

def create_from_config(cfg: Dict[str, Any]) -> CompletionClient:
    """Create a CompletionClient from a config dict (e.g., loaded YAML)."""
    c = (cfg or {}).get("completion", {}) if isinstance(cfg, dict) else {}
    timeout = c.get("timeout")
    config = CompletionConfig(
        model=str(c.get("model") or DEFAULT_MODEL),
        base_url=str(c.get("base_url") or DEFAULT_BASE_URL),
        api_key_env=str(c.get("api_key_env") or "OPENAI_API_KEY"),
        timeout=float(timeout) if timeout is not None else None,
    )
    return CompletionClient(config=config)
