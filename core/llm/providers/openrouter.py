from typing import Dict

from core.llm.providers.openai import OpenAIProvider
from core.registry import provider_registry


@provider_registry.register("openrouter")
class OpenRouterProvider(OpenAIProvider):
    """
    OpenRouter speaks the OpenAI chat completions protocol, so only the endpoint,
    the key and the attribution headers differ. Model names look like
    'anthropic/claude-3-sonnet' or 'meta-llama/llama-3-70b-instruct'.
    """

    display_name = "OpenRouter"
    api_key_env = "OPENROUTER_API_KEY"
    default_base_url = "https://openrouter.ai/api/v1"

    def _build_headers(self) -> Dict[str, str]:
        headers = super()._build_headers()
        headers["HTTP-Referer"] = "https://github.com/aireview/aireview"
        headers["X-Title"] = "AI Code Review"
        return headers
