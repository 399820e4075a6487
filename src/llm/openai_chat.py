from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from .base import (
    ModelGateway,
    ModelInfo,
    UpstreamConnectionError,
    UpstreamRejected,
    UpstreamStatusError,
    UpstreamUnavailable,
)

OPENAI_MODEL_PREFIXES = ("gpt-", "o1", "o3", "o4", "chatgpt-")


class OpenAIGateway(ModelGateway):
    """OpenAI chat completions. The SDK's own retries are disabled so the
    shared backoff policy in ModelGateway.generate applies."""

    def provider_name(self) -> str:
        return "OpenAI"

    def _client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            max_retries=0,
            timeout=self.config.timeout,
        )

    async def _complete(self, prompt: str, max_output_tokens: int, temperature: float) -> str:
        client = self._client()
        try:
            response = await client.chat.completions.create(
                model=self.config.model,
                messages=[{"role": "user", "content": prompt}],
                max_completion_tokens=max_output_tokens,
                temperature=temperature,
            )
        except APIStatusError as exc:
            raise UpstreamStatusError(exc.status_code, exc.message) from exc
        except APIConnectionError as exc:
            raise UpstreamConnectionError(str(exc)) from exc

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def list_models(self) -> list[ModelInfo]:
        client = self._client()
        try:
            page = await client.models.list()
        except APIStatusError as exc:
            if exc.status_code >= 500:
                raise UpstreamUnavailable(f"OpenAI API error: {exc.status_code}") from exc
            raise UpstreamRejected(f"OpenAI API error: {exc.status_code}") from exc
        except APIConnectionError as exc:
            raise UpstreamUnavailable(f"Could not reach OpenAI: {exc}") from exc

        return [
            ModelInfo(name=m.id, display_name=m.id, version=str(m.created))
            for m in page.data
            if m.id.startswith(OPENAI_MODEL_PREFIXES)
        ]
