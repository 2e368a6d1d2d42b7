# smart_intake/integrations/llm_client.py
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..config import settings
from ..domain.errors import CollaboratorUnavailable


@dataclass
class LLMConfig:
    """
    OpenAI-compatible chat completions endpoint
    (LM Studio, vLLM, OpenAI, ...):
      {base_url}/chat/completions
    """
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    timeout_seconds: float = 60.0

    @classmethod
    def from_settings(cls) -> "LLMConfig":
        return cls(
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            timeout_seconds=settings.llm_timeout_seconds,
        )


_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_reply(content: str) -> Dict[str, Any]:
    """Model replies sometimes wrap JSON in a fenced block."""
    s = _FENCE_RE.sub("", (content or "").strip())
    try:
        v = json.loads(s)
    except json.JSONDecodeError as e:
        raise CollaboratorUnavailable(f"LLM returned non-JSON content: {e}", e) from e
    if not isinstance(v, dict):
        raise CollaboratorUnavailable("LLM returned JSON that is not an object")
    return v


class LLMClient:
    def __init__(self, cfg: Optional[LLMConfig] = None, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.cfg = cfg or LLMConfig.from_settings()
        self._transport = transport

    def enabled(self) -> bool:
        return bool(self.cfg.base_url)

    async def chat_complete(self, *, system: str, user: str, temperature: float = 0.2, json_mode: bool = False) -> str:
        if not self.enabled():
            raise CollaboratorUnavailable("llm_base_url not set")

        url = f"{self.cfg.base_url.rstrip('/')}/chat/completions"
        payload: dict[str, Any] = {
            "model": self.cfg.model,
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        headers = {"Content-Type": "application/json"}
        if self.cfg.api_key:
            headers["Authorization"] = f"Bearer {self.cfg.api_key}"

        try:
            async with httpx.AsyncClient(timeout=self.cfg.timeout_seconds, transport=self._transport) as client:
                r = await client.post(url, json=payload, headers=headers)
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPStatusError as e:
            raise CollaboratorUnavailable(f"LLM HTTP {e.response.status_code}", e) from e
        except httpx.HTTPError as e:
            raise CollaboratorUnavailable(f"LLM request failed: {e}", e) from e
        except ValueError as e:
            raise CollaboratorUnavailable("LLM returned invalid JSON", e) from e

        try:
            return str(data["choices"][0]["message"]["content"] or "")
        except (KeyError, IndexError, TypeError) as e:
            raise CollaboratorUnavailable("LLM response missing choices[0].message.content", e) from e

    async def chat_json(self, *, system: str, user: str, temperature: float = 0.0) -> Dict[str, Any]:
        content = await self.chat_complete(system=system, user=user, temperature=temperature, json_mode=True)
        return parse_json_reply(content)
