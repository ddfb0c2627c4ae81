from __future__ import annotations
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

import httpx

from .config import AIConfig

log = logging.getLogger(__name__)

COMPLETIONS_SUFFIX = "/chat/completions"


class NarrativeError(Exception):
    """The narrative service failed or returned something unusable."""


class NarrativeTimeout(NarrativeError):
    """The narrative service did not answer in time; safe to retry."""


def chat_completions_url(endpoint: str) -> str:
    """Append /chat/completions to an OpenAI-compatible base URL unless it is already there."""
    parts = urlsplit(endpoint.strip())
    path = parts.path.rstrip("/")
    if not path.endswith(COMPLETIONS_SUFFIX):
        path = f"{path}{COMPLETIONS_SUFFIX}"
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


def _extract_content(data: Any) -> Optional[str]:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(content, str):
        return None
    return content.strip() or None


class NarrativeClient:
    def __init__(self, config: AIConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        if not config.configured:
            raise ValueError("AI endpoint and API key are required")
        self.config = config
        self._transport = transport

    def _payload(self, system: str, prompt: str) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }

    async def generate(self, system: str, prompt: str) -> Optional[str]:
        url = chat_completions_url(self.config.endpoint or "")
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport) as client:
                r = await client.post(url, headers=headers, json=self._payload(system, prompt))
        except httpx.TimeoutException as e:
            raise NarrativeTimeout(f"Narrative service timed out after {self.config.timeout}s") from e
        except httpx.HTTPError as e:
            raise NarrativeError(f"Narrative service unreachable: {e}") from e

        if r.status_code >= 300:
            log.error("Narrative request failed: %s %s", r.status_code, r.text[:200])
            raise NarrativeError(f"Narrative service request failed ({r.status_code}): {r.text[:200]}")

        try:
            data = r.json()
        except ValueError as e:
            raise NarrativeError("Narrative service returned malformed JSON") from e
        return _extract_content(data)


async def generate_narrative(config: AIConfig, system: str, prompt: str) -> Optional[str]:
    return await NarrativeClient(config).generate(system, prompt)
