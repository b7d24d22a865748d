"""LLM provider adapters.

Two concrete implementations of ILLMProvider (bookresolver/interfaces/llm_provider.py):
    - AnthropicLLMProvider — Claude via the Messages API
    - OpenAILLMProvider    — gpt-4o-mini (also supports OpenAI-compatible APIs)

At startup, main.py creates the provider matching the available API key
and hands it to the QueryExpander.  With no key configured the expander
runs on its fixed fallback titles only.
"""

from bookresolver.providers.llm.anthropic_provider import AnthropicLLMProvider
from bookresolver.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["AnthropicLLMProvider", "OpenAILLMProvider"]
