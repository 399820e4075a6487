import os

from dotenv import load_dotenv

from .base import GatewayConfig, ModelGateway
from .gemini import GEMINI_BASE_URL, GeminiGateway
from .openai_chat import OPENAI_MODEL_PREFIXES, OpenAIGateway

load_dotenv()

DEFAULT_MODEL = "gemini-2.0-flash"


def resolve_model(model: str | None) -> str:
    """Pick the model selector: explicit argument, then LLM_MODEL, then the default."""
    return model or os.getenv("LLM_MODEL", DEFAULT_MODEL)


def is_openai_model(model: str) -> bool:
    return model.startswith(OPENAI_MODEL_PREFIXES)


def build_gateway(model: str | None = None) -> ModelGateway:
    """Construct the gateway for a model selector with credentials from the environment."""
    model = resolve_model(model)
    if is_openai_model(model):
        return OpenAIGateway(
            GatewayConfig.from_env(model, "OPENAI_API_KEY", "OPENAI_BASE_URL"),
        )
    return GeminiGateway(
        GatewayConfig.from_env(
            model, "GEMINI_API_KEY", "GEMINI_BASE_URL", default_base_url=GEMINI_BASE_URL,
        ),
    )
