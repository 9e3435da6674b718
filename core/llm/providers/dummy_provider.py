import json
from typing import List, Optional

from core.contracts.provider import LLMProvider
from config.models import ModelConfig
from core.registry import provider_registry

DEFAULT_RESPONSE = json.dumps({
    "summary": "No problems spotted by the offline reviewer.",
    "issues": [],
    "suggestions": [],
    "score": 100,
    "strengths": [],
    "concerns": [],
})


@provider_registry.register("dummy")
class DummyProvider(LLMProvider):
    """An offline provider for tests and dry runs; returns a canned response and records prompts."""

    def __init__(self, config: ModelConfig, response: str = DEFAULT_RESPONSE):
        self.config = config
        self._response = response
        self.prompts: List[str] = []

    async def generate(self, prompt: str, *, system: Optional[str] = None) -> str:
        self.prompts.append(prompt)
        return self._response

    async def aclose(self) -> None:
        return None
