from __future__ import annotations

import logging
from typing import Optional, Protocol, Tuple

import requests

from ..config import LlmConfig
from .prompts import build_engine_user_message

LOGGER = logging.getLogger(__name__)

SYSTEM_MESSAGE = "You are a JSON extractor. Return JSON only. Do not wrap in markdown."


class GenerativeEngine(Protocol):
    def complete(self, raw_text: str, directive: str) -> Tuple[Optional[str], Optional[str]]:
        ...


class ChatCompletionEngine:
    """OpenAI-compatible chat completion client.

    ``complete`` returns ``(reply, None)`` on success and ``(None, error)`` when the
    endpoint is unconfigured or the call fails. The reply is untrusted free text.
    """

    def __init__(self, config: LlmConfig, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self.session = session or requests.Session()

    @property
    def model(self) -> str:
        return self.config.model

    def complete(self, raw_text: str, directive: str) -> Tuple[Optional[str], Optional[str]]:
        if not self.config.endpoint:
            return None, "LLM endpoint not configured"
        if not self.config.api_key:
            return None, "LLM API key not configured"

        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self.config.api_key}"}
        payload = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": SYSTEM_MESSAGE},
                {"role": "user", "content": build_engine_user_message(raw_text, directive)},
            ],
            "temperature": 0,
        }
        try:
            resp = self.session.post(
                self.config.endpoint, json=payload, headers=headers, timeout=self.config.timeout
            )
            resp.raise_for_status()
            data = resp.json()
            content = (
                data.get("choices", [{}])[0]
                .get("message", {})
                .get("content", "")
            )
        except (requests.RequestException, ValueError, IndexError, AttributeError) as exc:
            LOGGER.warning("LLM field mapping failed: %s", exc)
            return None, f"LLM field mapping failed: {exc}"
        return content or "", None


def build_engine(config: LlmConfig) -> ChatCompletionEngine:
    return ChatCompletionEngine(config)
