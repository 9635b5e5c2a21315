from __future__ import annotations

import logging
from typing import Sequence

import httpx

from telegram_orchestrator.config import settings
from telegram_orchestrator.config.loader import AIConfig, ConfigError
from .interfaces import ChatMessage

logger = logging.getLogger(__name__)


class GenerationError(RuntimeError):
    def __init__(self, message: str, *, model: str) -> None:
        super().__init__(message)
        self.model = model


class RateLimitError(GenerationError):
    """The backend answered 429 for this model."""


class Delegate:
    """Execution service: LLM call to generate the reply text.

    Talks to an OpenAI-compatible chat-completions endpoint and walks the
    configured model list in order until one of them answers.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str,
        models: Sequence[str],
        temperature: float,
        *,
        timeout: float = settings.HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.models = list(models)
        self.temperature = temperature
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, ai: AIConfig, **kwargs) -> "Delegate":
        return cls(ai.api_key, ai.api_url, ai.models, ai.temperature, **kwargs)

    async def generate_reply(self, system_prompt: str, history: Sequence[ChatMessage]) -> str:
        if not self.models:
            raise ConfigError("No models configured")

        last_error: GenerationError | None = None

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for idx, model in enumerate(self.models):
                logger.debug("Trying model %d of %d: %s", idx + 1, len(self.models), model)
                try:
                    reply = await self._reply_with_model(client, model, system_prompt, history)
                except GenerationError as exc:
                    logger.warning("[FAILOVER] Model %s failed: %s", model, exc)
                    last_error = exc
                    continue

                if idx > 0:
                    logger.info("[FAILOVER] Succeeded on fallback model: %s", model)
                return reply

        assert last_error is not None
        raise last_error

    async def _reply_with_model(
        self,
        client: httpx.AsyncClient,
        model: str,
        system_prompt: str,
        history: Sequence[ChatMessage],
    ) -> str:
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(m.to_dict() for m in history)
        payload = {"model": model, "messages": messages, "temperature": self.temperature}

        logger.debug("Sending completion request (%d history messages) to %s", len(history), self.api_url)

        try:
            response = await client.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as exc:
            raise GenerationError(f"Request failed: {exc}", model=model) from exc

        if response.status_code == 429:
            logger.warning("Rate limit (429) reached for model: %s", model)
            raise RateLimitError(f"Rate limit (429): {response.text}", model=model)

        if not response.is_success:
            raise GenerationError(f"API Error {response.status_code}: {response.text}", model=model)

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise GenerationError(f"No choices in response: {response.text[:200]}", model=model) from exc

        if not isinstance(content, str):
            raise GenerationError("Completion content is not text", model=model)

        logger.debug("Successfully generated reply with model %s", model)
        return content


async def generate_reply_with_fallback(
    api_key: str,
    api_url: str,
    models: Sequence[str],
    temperature: float,
    system_prompt: str,
    history: Sequence[ChatMessage],
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    delegate = Delegate(api_key, api_url, models, temperature, transport=transport)
    return await delegate.generate_reply(system_prompt, history)
