from unittest.mock import AsyncMock, call, patch

import pytest

from llm.base import (
    GatewayConfig,
    ModelGateway,
    UpstreamConnectionError,
    UpstreamRejected,
    UpstreamStatusError,
    UpstreamUnavailable,
    network_backoff,
    status_backoff,
)


class _ScriptedGateway(ModelGateway):
    """Replays a list of outcomes: strings are completions, exceptions are raised."""

    def __init__(self, outcomes, api_key="test-key", max_retries=3):
        super().__init__(GatewayConfig(model="test-model", api_key=api_key, max_retries=max_retries))
        self.outcomes = list(outcomes)
        self.calls = 0

    def provider_name(self) -> str:
        return "Test"

    async def _complete(self, prompt, max_output_tokens, temperature):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def list_models(self):
        return []


# ── Backoff schedule ─────────────────────────────────────────────────────


class TestBackoff:
    def test_status_backoff_is_power_of_two(self):
        assert [status_backoff(a) for a in (1, 2, 3)] == [2.0, 4.0, 8.0]

    def test_network_backoff_adds_half_second(self):
        assert [network_backoff(a) for a in (1, 2, 3)] == [2.5, 4.5, 8.5]

    def test_backoff_never_decreases(self):
        waits = [status_backoff(a) for a in range(1, 6)]
        assert waits == sorted(waits)


# ── Success path ─────────────────────────────────────────────────────────


class TestGenerateSuccess:
    async def test_returns_completion_without_sleeping(self):
        gateway = _ScriptedGateway(["db.course.count()"])

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            text = await gateway.generate("prompt", max_output_tokens=1024, temperature=0.2)

        assert text == "db.course.count()"
        assert gateway.calls == 1
        mock_sleep.assert_not_called()

    async def test_missing_api_key_is_rejected_without_a_call(self):
        gateway = _ScriptedGateway(["unused"], api_key=None)

        with pytest.raises(UpstreamRejected, match="API key"):
            await gateway.generate("prompt", max_output_tokens=10, temperature=0.0)

        assert gateway.calls == 0


# ── Retry behaviour ──────────────────────────────────────────────────────


class TestGenerateRetries:
    async def test_retries_5xx_then_succeeds(self):
        gateway = _ScriptedGateway([UpstreamStatusError(503), "ok"])

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            text = await gateway.generate("prompt", max_output_tokens=10, temperature=0.0)

        assert text == "ok"
        assert gateway.calls == 2
        mock_sleep.assert_awaited_once_with(2.0)

    async def test_three_consecutive_503s_exhaust_retries(self):
        gateway = _ScriptedGateway([UpstreamStatusError(503)] * 3)

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(UpstreamUnavailable):
                await gateway.generate("prompt", max_output_tokens=10, temperature=0.0)

        assert gateway.calls == 3
        assert mock_sleep.await_args_list == [call(2.0), call(4.0)]

    async def test_4xx_is_terminal(self):
        gateway = _ScriptedGateway([UpstreamStatusError(400, "bad request"), "never"])

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(UpstreamRejected, match="400"):
                await gateway.generate("prompt", max_output_tokens=10, temperature=0.0)

        assert gateway.calls == 1
        mock_sleep.assert_not_called()

    async def test_429_is_not_retried(self):
        gateway = _ScriptedGateway([UpstreamStatusError(429), "never"])

        with patch("asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(UpstreamRejected):
                await gateway.generate("prompt", max_output_tokens=10, temperature=0.0)

        assert gateway.calls == 1

    async def test_network_failure_uses_longer_backoff(self):
        gateway = _ScriptedGateway([
            UpstreamConnectionError("reset"),
            UpstreamConnectionError("reset"),
            "ok",
        ])

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            text = await gateway.generate("prompt", max_output_tokens=10, temperature=0.0)

        assert text == "ok"
        assert mock_sleep.await_args_list == [call(2.5), call(4.5)]

    async def test_network_failures_exhaust_retries(self):
        gateway = _ScriptedGateway([UpstreamConnectionError("down")] * 3)

        with patch("asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(UpstreamUnavailable, match="Could not reach"):
                await gateway.generate("prompt", max_output_tokens=10, temperature=0.0)

        assert gateway.calls == 3

    async def test_respects_configured_max_retries(self):
        gateway = _ScriptedGateway([UpstreamStatusError(500)] * 5, max_retries=5)

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(UpstreamUnavailable):
                await gateway.generate("prompt", max_output_tokens=10, temperature=0.0)

        assert gateway.calls == 5
        waits = [c.args[0] for c in mock_sleep.await_args_list]
        assert waits == [2.0, 4.0, 8.0, 16.0]


# ── Configuration ────────────────────────────────────────────────────────


class TestGatewayConfig:
    def test_from_env_reads_key_and_limits(self, monkeypatch):
        monkeypatch.setenv("TEST_KEY", "secret-value")
        monkeypatch.setenv("LLM_MAX_RETRIES", "5")
        monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "12.5")
        monkeypatch.delenv("TEST_BASE", raising=False)

        config = GatewayConfig.from_env("m", "TEST_KEY", "TEST_BASE", default_base_url="https://x")

        assert config.api_key == "secret-value"
        assert config.base_url == "https://x"
        assert config.max_retries == 5
        assert config.timeout == 12.5

    def test_from_env_defaults(self, monkeypatch):
        monkeypatch.delenv("TEST_KEY", raising=False)
        monkeypatch.delenv("LLM_MAX_RETRIES", raising=False)
        monkeypatch.delenv("LLM_TIMEOUT_SECONDS", raising=False)

        config = GatewayConfig.from_env("m", "TEST_KEY", "TEST_BASE")

        assert config.api_key is None
        assert config.max_retries == 3
        assert config.timeout == 60.0
