"""Model Gateway.

Maps a logical model id from the client to a provider client and the
system prompt used for that model. Resolution is a pure function of the
id; only the client objects are cached, per resolved id, on the gateway
instance.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from shared.config import LLMSettings
from shared.logging import get_logger
from orchestrator.llm import LLMProvider, create_llm_provider

logger = get_logger(__name__)

DEFAULT_MODEL_ID = "gpt-4o"

MODEL_ALIASES = {
    "gpt-4.1.mini": "gpt-4.1-mini",
    "o4-mini": "gpt-4o-mini",
}

BASE_SYSTEM_PROMPT = (
    "You are a helpful STEM assistant. Focus on providing accurate, educational "
    "information about science, technology, engineering, and mathematics. Explain "
    "concepts clearly and provide examples where appropriate."
)

MODEL_PROMPT_ADDENDA = {
    "gemini-1.5-flash-latest": "You are powered by Gemini 1.5 Flash.",
    "claude-3-haiku-20240307": "You are powered by Claude 3 Haiku.",
    "gpt-4o": "You are powered by GPT-4o.",
    "o4-mini": "You are powered by o4-mini with advanced reasoning capabilities.",
    "o3": "You are powered by O3.",
}

ProviderFactory = Callable[[str, str, LLMSettings], LLMProvider]


@dataclass(frozen=True)
class ModelConfig:
    """Result of resolving a model id."""
    requested_id: str
    model_id: str
    vendor: str
    client: LLMProvider
    system_prompt: str


def normalize_model_id(model_id: Optional[str]) -> str:
    """Apply aliases; a missing id becomes the default model."""
    safe_id = model_id or DEFAULT_MODEL_ID
    return MODEL_ALIASES.get(safe_id, safe_id)


def vendor_for(model_id: str) -> Optional[str]:
    """Vendor serving ``model_id``, or None when no prefix rule matches."""
    if model_id.startswith("gpt-") or model_id.startswith("o"):
        return "openai"
    if model_id.startswith("claude-"):
        return "anthropic"
    if model_id.startswith("gemini-"):
        return "google"
    if model_id.startswith("grok-"):
        return "xai"
    if "deepseek" in model_id.lower():
        return "together"
    return None


def build_system_prompt(requested_id: str, model_id: str) -> str:
    """Base persona plus the addendum for the model, if it has one."""
    addendum = MODEL_PROMPT_ADDENDA.get(model_id) or MODEL_PROMPT_ADDENDA.get(requested_id)
    if not addendum:
        return BASE_SYSTEM_PROMPT
    return f"{BASE_SYSTEM_PROMPT}\n\n{addendum}"


class ModelGateway:
    """
    Resolves model ids to configured clients.

    Unknown ids never fail a request: they fall back to the default model
    with a warning.
    """

    def __init__(
        self,
        settings: LLMSettings,
        provider_factory: Optional[ProviderFactory] = None,
    ) -> None:
        self.settings = settings
        self._provider_factory = provider_factory or create_llm_provider
        self._clients: dict[str, LLMProvider] = {}

    def resolve(self, model_id: Optional[str] = None) -> ModelConfig:
        requested_id = model_id or self.settings.default_model or DEFAULT_MODEL_ID
        resolved_id = normalize_model_id(requested_id)

        if resolved_id != requested_id:
            logger.debug("Resolved model alias", requested=requested_id, resolved=resolved_id)

        vendor = vendor_for(resolved_id)
        if vendor is None:
            logger.warning(
                "Unknown model id, falling back",
                requested=requested_id,
                fallback=DEFAULT_MODEL_ID,
            )
            resolved_id = DEFAULT_MODEL_ID
            vendor = "openai"

        return ModelConfig(
            requested_id=requested_id,
            model_id=resolved_id,
            vendor=vendor,
            client=self._get_client(vendor, resolved_id),
            system_prompt=build_system_prompt(requested_id, resolved_id),
        )

    def _get_client(self, vendor: str, model_id: str) -> LLMProvider:
        client = self._clients.get(model_id)
        if client is None:
            client = self._provider_factory(vendor, model_id, self.settings)
            self._clients[model_id] = client
        return client
