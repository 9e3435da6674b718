from typing import Optional, Protocol


class LLMProvider(Protocol):
    """A protocol for LLM providers."""

    async def generate(self, prompt: str, *, system: Optional[str] = None) -> str:
        """
        Generates a response from the LLM.

        Args:
            prompt: The user prompt to send to the LLM.
            system: Optional system prompt.

        Returns:
            The raw text of the LLM's response.
        """
        ...

    async def aclose(self) -> None:
        """Releases the underlying HTTP client."""
        ...
