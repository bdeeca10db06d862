"""Tests for the AI gateway client status mapping."""

from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from tradejournal.ai.gateway import AIGatewayClient, parse_completion
from tradejournal.utils.exceptions import AIGatewayError, ConfigurationError, RateLimitError


def _completion(text: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


class TestParseCompletion:

    def test_first_choice(self):
        assert parse_completion(_completion("hello")) == "hello"

    @pytest.mark.parametrize("body", [
        "plain text",
        {"choices": []},
        {"choices": [{"message": {"content": ""}}]},
    ])
    def test_malformed(self, body):
        with pytest.raises(AIGatewayError):
            parse_completion(body)


class TestComplete:

    @pytest.mark.asyncio
    async def test_success_sends_system_and_user_messages(self):
        client = AIGatewayClient(api_key="k", model="test-model")
        with patch.object(client, "_send", AsyncMock(return_value=(200, _completion("ok")))) as send:
            assert await client.complete("How did I do?") == "ok"
        payload = send.call_args[0][0]
        assert payload["model"] == "test-model"
        assert [m["role"] for m in payload["messages"]] == ["system", "user"]
        assert payload["messages"][1]["content"] == "How did I do?"

    @pytest.mark.asyncio
    async def test_missing_key_never_calls_out(self):
        client = AIGatewayClient(api_key="")
        with patch.object(client, "_send", AsyncMock()) as send:
            with pytest.raises(ConfigurationError) as exc:
                await client.complete("x")
        send.assert_not_called()
        assert exc.value.status_code == 503

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        client = AIGatewayClient(api_key="k")
        with patch.object(client, "_send", AsyncMock(return_value=(429, {}))) as send:
            with pytest.raises(RateLimitError) as exc:
                await client.complete("x")
        assert exc.value.status_code == 429
        assert send.await_count == 1

    @pytest.mark.asyncio
    async def test_payment_required(self):
        client = AIGatewayClient(api_key="k")
        with patch.object(client, "_send", AsyncMock(return_value=(402, {}))):
            with pytest.raises(AIGatewayError) as exc:
                await client.complete("x")
        assert exc.value.status_code == 402

    @pytest.mark.asyncio
    async def test_server_error_not_retried(self):
        client = AIGatewayClient(api_key="k")
        with patch.object(client, "_send", AsyncMock(return_value=(500, "boom"))) as send:
            with pytest.raises(AIGatewayError) as exc:
                await client.complete("x")
        assert exc.value.status_code == 502
        assert send.await_count == 1

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        client = AIGatewayClient(api_key="k")
        failing = AsyncMock(side_effect=aiohttp.ClientConnectionError("refused"))
        with patch.object(client, "_send", failing):
            with pytest.raises(AIGatewayError):
                await client.complete("x")
