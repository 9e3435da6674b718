from config.models import ModelConfig
from core.contracts.provider import LLMProvider
from core.registry import provider_registry
from utils.errors import ProviderError

# Imported for their registration side effect.
from core.llm.providers import anthropic, dummy_provider, openai, openrouter  # noqa: F401


def get_provider(config: ModelConfig) -> LLMProvider:
    """
    Factory function to get an LLM provider instance based on the config.

    Args:
        config: The model configuration.

    Returns:
        An instance of a class that implements the LLMProvider protocol.

    Raises:
        ProviderError: If the provider is not found or fails to be created.
    """
    try:
        return provider_registry.create(config.provider, config=config)
    except KeyError:
        raise ProviderError(
            f"Unknown provider '{config.provider}'. "
            f"Available providers: {provider_registry.available()}"
        )
    except ProviderError:
        raise
    except Exception as e:
        # Catch other potential instantiation errors from the provider's __init__
        raise ProviderError(f"Failed to create provider '{config.provider}': {e}") from e
