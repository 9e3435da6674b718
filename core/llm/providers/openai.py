import os
import httpx
import json
from typing import Any, Dict, List, Optional

from core.contracts.provider import LLMProvider
from config.models import ModelConfig
from core.registry import provider_registry
from utils.errors import ProviderError

DEFAULT_PARAMETERS = {"temperature": 0.1, "max_tokens": 2000}


@provider_registry.register("openai")
class OpenAIProvider(LLMProvider):
    """
    A provider for OpenAI's chat completions API.
    """

    display_name = "OpenAI"
    api_key_env = "OPENAI_API_KEY"
    default_base_url = "https://api.openai.com/v1"

    def __init__(self, config: ModelConfig):
        self.config = config
        self._api_key = config.api_key or os.getenv(self.api_key_env)
        if not self._api_key:
            raise ProviderError(f"{self.display_name} API key not found. Please set it in the config or as an environment variable {self.api_key_env}.")

        self._client = httpx.AsyncClient(
            base_url=self.config.base_url or self.default_base_url,
            headers=self._build_headers(),
            timeout=self.config.timeout_sec,
        )

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, payload: dict) -> httpx.Response:
        try:
            response = await self._client.post("/chat/completions", json=payload)
            response.raise_for_status()
            return response
        except httpx.TimeoutException as e:
            raise ProviderError(f"Request to {self.display_name} timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            try:
                error_details = e.response.json()
                error_message = error_details.get("error", {}).get("message", e.response.text)
            except json.JSONDecodeError:
                error_message = e.response.text
            raise ProviderError(f"{self.display_name} API error ({e.response.status_code}): {error_message}") from e
        except httpx.RequestError as e:
            raise ProviderError(f"An unexpected network error occurred: {e}") from e

    def _build_payload(self, prompt: str, system: Optional[str]) -> dict:
        messages: List[Dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return {
            "model": self.config.name,
            "messages": messages,
            **DEFAULT_PARAMETERS,
            **self.config.parameters,
        }

    async def generate(self, prompt: str, *, system: Optional[str] = None) -> str:
        """
        Sends one chat completion request and returns the assistant's message text.
        """
        response = await self._request(self._build_payload(prompt, system))
        data = response.json()
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Unexpected {self.display_name} response shape: {data}") from e

    async def aclose(self) -> None:
        await self._client.aclose()
