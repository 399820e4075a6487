from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from openai import APIConnectionError, APIStatusError

from llm.base import GatewayConfig, UpstreamRejected, UpstreamUnavailable
from llm.openai_chat import OpenAIGateway

_REQ = httpx.Request("POST", "https://api.openai.test/v1/chat/completions")


def _status_error(status: int) -> APIStatusError:
    return APIStatusError("error", response=httpx.Response(status, request=_REQ), body=None)


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _mock_client(create) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = create
    return client


def _gateway() -> OpenAIGateway:
    return OpenAIGateway(GatewayConfig(model="gpt-4.1-mini", api_key="sk-test"))


# ── Chat completions ─────────────────────────────────────────────────────


class TestOpenAIGenerate:
    async def test_returns_message_content(self):
        create = AsyncMock(return_value=_completion("db.user.count()"))

        with patch("llm.openai_chat.AsyncOpenAI", return_value=_mock_client(create)) as mock_cls:
            text = await _gateway().generate("prompt", max_output_tokens=1024, temperature=0.2)

        assert text == "db.user.count()"
        assert mock_cls.call_args.kwargs["max_retries"] == 0
        assert mock_cls.call_args.kwargs["api_key"] == "sk-test"
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "gpt-4.1-mini"
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]
        assert kwargs["max_completion_tokens"] == 1024
        assert kwargs["temperature"] == 0.2

    async def test_none_content_returns_empty_string(self):
        create = AsyncMock(return_value=_completion(None))

        with patch("llm.openai_chat.AsyncOpenAI", return_value=_mock_client(create)):
            text = await _gateway().generate("prompt", max_output_tokens=10, temperature=0.0)

        assert text == ""

    async def test_server_error_is_retried(self):
        create = AsyncMock(side_effect=[_status_error(502), _completion("ok")])

        with (
            patch("llm.openai_chat.AsyncOpenAI", return_value=_mock_client(create)),
            patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
        ):
            text = await _gateway().generate("prompt", max_output_tokens=10, temperature=0.0)

        assert text == "ok"
        assert create.await_count == 2
        mock_sleep.assert_awaited_once_with(2.0)

    async def test_client_error_is_terminal(self):
        create = AsyncMock(side_effect=[_status_error(401)])

        with (
            patch("llm.openai_chat.AsyncOpenAI", return_value=_mock_client(create)),
            patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
        ):
            with pytest.raises(UpstreamRejected):
                await _gateway().generate("prompt", max_output_tokens=10, temperature=0.0)

        assert create.await_count == 1
        mock_sleep.assert_not_called()

    async def test_connection_errors_exhaust_retries(self):
        create = AsyncMock(side_effect=[APIConnectionError(request=_REQ)] * 3)

        with (
            patch("llm.openai_chat.AsyncOpenAI", return_value=_mock_client(create)),
            patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
        ):
            with pytest.raises(UpstreamUnavailable):
                await _gateway().generate("prompt", max_output_tokens=10, temperature=0.0)

        assert create.await_count == 3
        assert [c.args[0] for c in mock_sleep.await_args_list] == [2.5, 4.5]


# ── Model listing ────────────────────────────────────────────────────────


class TestOpenAIListModels:
    async def test_keeps_chat_model_families(self):
        page = SimpleNamespace(data=[
            SimpleNamespace(id="gpt-4.1-mini", created=1700000000),
            SimpleNamespace(id="text-embedding-3-small", created=1700000001),
            SimpleNamespace(id="o3-mini", created=1700000002),
        ])
        client = MagicMock()
        client.models.list = AsyncMock(return_value=page)

        with patch("llm.openai_chat.AsyncOpenAI", return_value=client):
            models = await _gateway().list_models()

        assert [m.name for m in models] == ["gpt-4.1-mini", "o3-mini"]
