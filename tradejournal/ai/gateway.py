from __future__ import annotations

import asyncio
from typing import Any, Optional

import aiohttp
from aiolimiter import AsyncLimiter

from tradejournal.utils.config import get_settings
from tradejournal.utils.exceptions import AIGatewayError, ConfigurationError, RateLimitError
from tradejournal.utils.logger import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = "You are a concise trading coach."


def parse_completion(body: Any) -> str:
    """Text of the first choice of an OpenAI-style chat completion."""
    if not isinstance(body, dict):
        raise AIGatewayError("AI gateway returned a non-JSON response")
    choices = body.get("choices") or []
    if not choices:
        raise AIGatewayError("AI gateway returned no choices")
    content = (choices[0].get("message") or {}).get("content")
    if not content:
        raise AIGatewayError("AI gateway returned an empty message")
    return content


class AIGatewayClient:
    """Relays one chat-completion request to the configured gateway.

    A failed call is never retried: 429 becomes RateLimitError, any other
    non-2xx or transport failure becomes AIGatewayError.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None) -> None:
        self._settings = get_settings()
        self._api_key = api_key if api_key is not None else self._settings.ai_gateway_key
        self._model = model or self._settings.ai_model
        self._session: Optional[aiohttp.ClientSession] = None
        self._limiter = AsyncLimiter(self._settings.ai_rate_limit, 1)

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._settings.ai_timeout),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _send(self, payload: dict[str, Any]) -> tuple[int, Any]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        async with self._limiter:
            session = await self._get_session()
            async with session.post(self._settings.ai_gateway_url, json=payload, headers=headers) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = await response.text()
                return response.status, body

    async def complete(self, prompt: str, system_prompt: str = SYSTEM_PROMPT) -> str:
        if not self.configured:
            raise ConfigurationError("AI gateway key is not configured")

        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
        }
        try:
            status, body = await self._send(payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("ai_gateway_unreachable", error=str(e))
            raise AIGatewayError(f"AI gateway unreachable: {e}") from e

        if status == 429:
            logger.warning("ai_gateway_rate_limited", model=self._model)
            raise RateLimitError("AI gateway rate limit exceeded, try again later")
        if status == 402:
            logger.warning("ai_gateway_payment_required", model=self._model)
            raise AIGatewayError("AI gateway credits exhausted", 402)
        if status < 200 or status >= 300:
            logger.error("ai_gateway_failed", status=status, model=self._model)
            raise AIGatewayError(f"AI request failed (HTTP {status})")

        text = parse_completion(body)
        logger.info("ai_completion_received", model=self._model, chars=len(text))
        return text
