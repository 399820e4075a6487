from typing import Any

import httpx

from .base import (
    GatewayConfig,
    ModelGateway,
    ModelInfo,
    UpstreamConnectionError,
    UpstreamRejected,
    UpstreamStatusError,
    UpstreamUnavailable,
)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def _model_path(model: str) -> str:
    """Gemini addresses models as `models/<name>`; accept either spelling."""
    return model if model.startswith("models/") else f"models/{model}"


def _first_candidate_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    if not parts:
        return ""
    return parts[0].get("text") or ""


class GeminiGateway(ModelGateway):
    """Google Generative Language REST API over httpx."""

    def __init__(
        self,
        config: GatewayConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config)
        self.base_url = (config.base_url or GEMINI_BASE_URL).rstrip("/")
        self._transport = transport

    def provider_name(self) -> str:
        return "Gemini"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport)

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.config.api_key or "",
        }

    async def _complete(self, prompt: str, max_output_tokens: int, temperature: float) -> str:
        url = f"{self.base_url}/{_model_path(self.config.model)}:generateContent"
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_output_tokens,
            },
        }

        async with self._client() as client:
            try:
                response = await client.post(url, headers=self._headers(), json=body)
            except httpx.TransportError as exc:
                raise UpstreamConnectionError(str(exc) or type(exc).__name__) from exc

        if response.status_code >= 400:
            raise UpstreamStatusError(response.status_code, response.text[:200])
        try:
            payload = response.json()
        except ValueError as exc:
            # proxy pages and truncated bodies count as a bad gateway
            raise UpstreamStatusError(502, f"non-JSON body: {response.text[:200]}") from exc
        return _first_candidate_text(payload)

    async def list_models(self) -> list[ModelInfo]:
        async with self._client() as client:
            try:
                response = await client.get(f"{self.base_url}/models", headers=self._headers())
            except httpx.TransportError as exc:
                raise UpstreamUnavailable(f"Could not reach Gemini: {exc}") from exc

        if response.status_code >= 500:
            raise UpstreamUnavailable(f"Gemini API error: {response.status_code}")
        if response.status_code >= 400:
            raise UpstreamRejected(f"Gemini API error: {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable("Gemini returned an unreadable model list") from exc

        models: list[ModelInfo] = []
        for model in payload.get("models", []):
            name = model.get("name", "")
            methods = model.get("supportedGenerationMethods") or []
            if "generateContent" not in methods or "gemini" not in name:
                continue
            models.append(
                ModelInfo(
                    name=name,
                    display_name=model.get("displayName") or name.split("/")[-1],
                    description=model.get("description") or "",
                    version=model.get("version") or "",
                )
            )
        return models
