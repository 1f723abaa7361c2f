"""OpenAI chat completion adapter used for classification and replies."""

import logging
from typing import Optional, Protocol

from openai import AsyncOpenAI

from receptionist.config import ModelConfig, settings

logger = logging.getLogger(__name__)

Message = dict[str, str]


class LLMClient(Protocol):
    """Black-box completion capability."""

    async def complete_json(self, messages: list[Message]) -> str:
        """Return raw model output constrained to a JSON object."""
        ...

    async def complete_text(self, messages: list[Message]) -> str:
        """Return a short natural-language reply."""
        ...


class OpenAIChatClient:
    """LLMClient backed by the OpenAI chat completions API."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        config: Optional[ModelConfig] = None,
    ):
        self._config = config or settings.model
        self._client = client or AsyncOpenAI(api_key=self._config.openai_api_key or None)

    async def complete_json(self, messages: list[Message]) -> str:
        response = await self._client.chat.completions.create(
            model=self._config.llm_model,
            messages=messages,
            response_format={"type": "json_object"},
            temperature=self._config.classify_temperature,
            max_tokens=self._config.classify_max_tokens,
        )
        content = response.choices[0].message.content or ""
        logger.debug("Classifier raw output: %s", content)
        return content

    async def complete_text(self, messages: list[Message]) -> str:
        response = await self._client.chat.completions.create(
            model=self._config.llm_model,
            messages=messages,
            temperature=self._config.reply_temperature,
            max_tokens=self._config.reply_max_tokens,
            presence_penalty=self._config.reply_presence_penalty,
            frequency_penalty=self._config.reply_frequency_penalty,
        )
        return (response.choices[0].message.content or "").strip()
