"""Model routing: which backend family serves a given model id."""

import logging
import re
from enum import Enum
from typing import Optional

import httpx

from crewgate.config import ProviderConfigMap
from crewgate.constants import CLAUDE_MODEL_MAP, SUPPORTED_MODELS
from crewgate.models import InstallationStatus, ModelDefinition
from crewgate.providers.base import BaseProvider

logger = logging.getLogger(__name__)

_OPENAI_REASONING = re.compile(r"^o\d")


class Protocol(str, Enum):
    """How a backend handles tools."""

    NATIVE_SESSION = "native-session"  # backend runs tools server-side
    CHAT_COMPLETIONS = "chat-completions"  # local tool loop


class Backend(str, Enum):
    """Closed set of backend families."""

    CLAUDE = "claude"
    OPENAI = "openai"
    OPENROUTER = "openrouter"

    @property
    def protocol(self) -> Protocol:
        if self is Backend.CLAUDE:
            return Protocol.NATIVE_SESSION
        return Protocol.CHAT_COMPLETIONS


def classify_model(model_id: str) -> Backend:
    """Map a model id to its backend family.

    Unknown ids fall back to Claude, with a warning.

    Args:
        model_id: Model identifier, e.g. "claude-opus-4-5-20251101", "gpt-4o",
            "openrouter/auto" or an alias such as "sonnet"

    Returns:
        Backend for the model
    """
    lower = model_id.strip().lower()

    if lower.startswith("claude-") or lower in CLAUDE_MODEL_MAP:
        return Backend.CLAUDE
    if lower.startswith("openrouter/"):
        return Backend.OPENROUTER
    if lower.startswith(("gpt-", "chatgpt-")) or _OPENAI_REASONING.match(lower):
        return Backend.OPENAI

    logger.warning('Unknown model prefix for "%s", defaulting to Claude', model_id)
    return Backend.CLAUDE


class ProviderFactory:
    """Builds providers from per-backend settings."""

    def __init__(
        self,
        configs: Optional[ProviderConfigMap] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the factory.

        Args:
            configs: Per-backend settings
            transport: Optional httpx transport for the chat-completions backends
        """
        self.configs = configs or ProviderConfigMap()
        self.transport = transport

    def get_provider_for_model(self, model_id: str) -> BaseProvider:
        return self.create(classify_model(model_id))

    def create(self, backend: Backend) -> BaseProvider:
        # Deferred: the adapters import list_models from this module
        if backend is Backend.CLAUDE:
            from crewgate.providers.claude import ClaudeProvider

            return ClaudeProvider(self.configs.claude)
        if backend is Backend.OPENROUTER:
            from crewgate.providers.openai_compat import OpenRouterProvider

            return OpenRouterProvider(self.configs.openrouter, transport=self.transport)

        from crewgate.providers.openai_compat import OpenAIProvider

        return OpenAIProvider(self.configs.openai, transport=self.transport)

    def get_all_providers(self) -> list[BaseProvider]:
        return [self.create(backend) for backend in Backend]

    def get_provider_by_name(self, name: str) -> Optional[BaseProvider]:
        """Look up a provider by name ("anthropic" is accepted for Claude)."""
        lower = name.lower()
        if lower == "anthropic":
            lower = Backend.CLAUDE.value
        try:
            return self.create(Backend(lower))
        except ValueError:
            return None

    async def check_all_providers(self) -> dict[str, InstallationStatus]:
        statuses = {}
        for provider in self.get_all_providers():
            statuses[provider.name] = await provider.detect_installation()
        return statuses

    def get_all_available_models(self) -> list[ModelDefinition]:
        models = []
        for provider in self.get_all_providers():
            models.extend(provider.available_models())
        return models


def list_models(provider: str) -> list[ModelDefinition]:
    """Catalog entries for one provider name."""
    return [
        ModelDefinition(provider=provider, **entry)
        for entry in SUPPORTED_MODELS.get(provider, [])
    ]
