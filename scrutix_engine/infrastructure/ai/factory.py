"""Provider construction by tag"""

from typing import Dict, Type

from scrutix_engine.domain.exceptions import ConfigurationError
from scrutix_engine.infrastructure.ai.base import BaseAIProvider
from scrutix_engine.infrastructure.ai.claude import ClaudeProvider
from scrutix_engine.infrastructure.ai.mistral import MistralProvider
from scrutix_engine.infrastructure.ai.ollama import OllamaProvider
from scrutix_engine.infrastructure.ai.types import ProviderTag

PROVIDERS: Dict[ProviderTag, Type[BaseAIProvider]] = {
    ProviderTag.CLAUDE: ClaudeProvider,
    ProviderTag.MISTRAL: MistralProvider,
    ProviderTag.OLLAMA: OllamaProvider,
}


def create_provider(tag: ProviderTag | str, **kwargs) -> BaseAIProvider:
    """
    Build a provider from its tag; keyword arguments override settings.

    Raises:
        ConfigurationError: If the tag is unknown
    """
    try:
        provider_tag = ProviderTag(tag)
    except ValueError as e:
        raise ConfigurationError(f"Unknown AI provider: {tag}") from e
    return PROVIDERS[provider_tag](**kwargs)
