from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from openai import OpenAI

from ..config import OpenAIConfig
from ..errors import GenerationError


LOGGER = logging.getLogger("bizbox.openai")


@dataclass(frozen=True)
class Completion:
    text: str
    tokens_used: int = 0


class GenerativeClient(Protocol):
    """Anything that turns (system instructions, user input) into generated text."""

    def invoke(self, system_instructions: str, user_input: str, max_tokens: Optional[int] = None) -> Completion:
        ...


@dataclass
class OpenAIClient:
    """Thin wrapper around OpenAI's Responses API; raises on unusable output."""

    model: str
    temperature: float
    max_output_tokens: Optional[int]
    dry_run: bool
    api_key_env: str = "OPENAI_API_KEY"
    base_url: Optional[str] = None
    timeout: float = 120.0
    _client: Optional[Any] = field(default=None, init=False, repr=False)
    _api_key: Optional[str] = field(default=None, init=False, repr=False)

    def invoke(self, system_instructions: str, user_input: str, max_tokens: Optional[int] = None) -> Completion:
        if self.dry_run:
            LOGGER.debug("OpenAI client in dry mode - returning stub content")
            return Completion(text=_stub_text(self.model, user_input), tokens_used=0)

        api_key = os.getenv(self.api_key_env)
        if not api_key:
            raise GenerationError(f"{self.api_key_env} is not set")

        client = self._ensure_client(api_key)
        request_params = {
            "model": self.model,
            "instructions": system_instructions,
            "input": user_input,
            "temperature": self.temperature,
        }
        limit = max_tokens if max_tokens is not None else self.max_output_tokens
        if limit is not None:
            request_params["max_output_tokens"] = limit
        try:
            LOGGER.debug("Invoking OpenAI Responses API with model %s", self.model)
            response = client.responses.create(**request_params)
        except Exception as exc:
            raise GenerationError(f"OpenAI API call failed: {exc}") from exc

        text = self._extract_text(response)
        if not text:
            raise GenerationError("OpenAI response contained no text output")
        return Completion(text=text, tokens_used=self._extract_tokens(response))

    def _ensure_client(self, api_key: str):
        if self._client is not None and self._api_key == api_key:
            return self._client
        base_url = self.base_url or os.getenv("OPENAI_BASE_URL")
        kwargs = {"api_key": api_key}
        if base_url:
            kwargs["base_url"] = base_url
        client = OpenAI(**kwargs)
        if self.timeout:
            client = client.with_options(timeout=self.timeout)
        self._client = client
        self._api_key = api_key
        return self._client

    @staticmethod
    def _extract_text(response: Any) -> str:
        if response is None:
            return ""
        output_text = getattr(response, "output_text", None)
        if isinstance(output_text, str) and output_text.strip():
            return output_text.strip()

        chunks = []
        for item in getattr(response, "output", None) or []:
            if getattr(item, "type", None) != "message":
                continue
            for content in getattr(item, "content", None) or []:
                text = getattr(content, "text", None)
                if isinstance(text, str) and text.strip():
                    chunks.append(text.strip())
        return "\n".join(chunks)

    @staticmethod
    def _extract_tokens(response: Any) -> int:
        usage = getattr(response, "usage", None)
        if usage is None:
            return 0
        total = getattr(usage, "total_tokens", None)
        if isinstance(total, int):
            return total
        return int(getattr(usage, "input_tokens", 0) or 0) + int(getattr(usage, "output_tokens", 0) or 0)


def _stub_text(model: str, user_input: str) -> str:
    first_line = user_input.strip().splitlines()[0] if user_input.strip() else ""
    return f"[stubbed response for model {model}] {first_line}"


class OpenAIClientFactory:
    """Factory for creating `OpenAIClient` instances from configuration."""

    @staticmethod
    def create(config: OpenAIConfig, dry_run: bool) -> OpenAIClient:
        stubbed = dry_run or not config.enabled
        if not stubbed and not os.getenv(config.api_key_env):
            LOGGER.warning("%s not set - falling back to stubbed responses.", config.api_key_env)
            stubbed = True
        return OpenAIClient(
            model=config.model,
            temperature=config.temperature,
            max_output_tokens=config.max_output_tokens,
            dry_run=stubbed,
            api_key_env=config.api_key_env,
            base_url=config.base_url,
            timeout=config.timeout,
        )
