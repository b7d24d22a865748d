"""Abstract base class for LLM service providers.

Defines the contract for the chat-completion backend the query expander
uses to turn a vague request into concrete candidate titles.
Implementations wrap the Anthropic API or any OpenAI-compatible API.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations: AnthropicLLMProvider, OpenAILLMProvider
# Located in: bookresolver/providers/llm/
class ILLMProvider(ABC):
    """Contract for LLM text completion."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 300,
    ) -> str:
        """Generate a text completion from the model.

        Parameters
        ----------
        system_prompt:
            The system/instruction message that sets the model's behaviour.
        user_prompt:
            The user-facing prompt containing the actual request.
        temperature:
            Sampling temperature (0.0 = deterministic, higher = more varied).
        max_tokens:
            Upper bound on the number of tokens in the response.

        Returns
        -------
        str
            The model's text response.

        Raises
        ------
        bookresolver.utils.errors.LLMError
            If the API call fails or returns an empty response.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this LLM provider.

        Example return values: ``"anthropic"``, ``"openai"``.
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured with credentials."""
