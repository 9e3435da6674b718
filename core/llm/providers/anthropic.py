import os
import httpx
import json
from typing import Optional

from core.contracts.provider import LLMProvider
from config.models import ModelConfig
from core.registry import provider_registry
from utils.errors import ProviderError

DEFAULT_MODEL = "claude-3-sonnet-20240229"
DEFAULT_PARAMETERS = {"temperature": 0.1, "max_tokens": 2000}


@provider_registry.register("anthropic")
class AnthropicProvider(LLMProvider):
    """
    A provider for the Anthropic Messages API.
    """

    def __init__(self, config: ModelConfig):
        self.config = config
        self._api_key = config.api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self._api_key:
            raise ProviderError("Anthropic API key not found. Please set it in the config or as an environment variable ANTHROPIC_API_KEY.")

        self._client = httpx.AsyncClient(
            base_url=self.config.base_url or "https://api.anthropic.com/v1",
            headers={
                "x-api-key": self._api_key,
                "anthropic-version": "2023-06-01",
                "Content-Type": "application/json",
            },
            timeout=self.config.timeout_sec,
        )

    @property
    def model_name(self) -> str:
        # The shared default model name is an OpenAI one.
        if self.config.name == "gpt-4":
            return DEFAULT_MODEL
        return self.config.name

    async def _request(self, payload: dict) -> httpx.Response:
        """
        Sends an HTTP request to the Messages API.
        """
        try:
            response = await self._client.post("/messages", json=payload)
            response.raise_for_status()
            return response
        except httpx.TimeoutException as e:
            raise ProviderError(f"Request to Anthropic timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            try:
                error_details = e.response.json()
                error_message = error_details.get("error", {}).get("message", e.response.text)
            except json.JSONDecodeError:
                error_message = e.response.text
            raise ProviderError(f"Anthropic API error ({e.response.status_code}): {error_message}") from e
        except httpx.RequestError as e:
            raise ProviderError(f"An unexpected network error occurred: {e}") from e

    def _build_payload(self, prompt: str, system: Optional[str]) -> dict:
        payload = {
            "model": self.model_name,
            "messages": [{"role": "user", "content": prompt}],
            **DEFAULT_PARAMETERS,  # Anthropic requires max_tokens
        }
        if system:
            payload["system"] = system
        payload.update(self.config.parameters)
        return payload

    async def generate(self, prompt: str, *, system: Optional[str] = None) -> str:
        """
        Sends one message and returns the concatenated text blocks of the reply.
        """
        response = await self._request(self._build_payload(prompt, system))
        data = response.json()
        blocks = data.get("content") or []
        return "".join(block.get("text", "") for block in blocks if block.get("type", "text") == "text")

    async def aclose(self) -> None:
        await self._client.aclose()
