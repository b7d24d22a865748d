"""LLM query expansion: turn a vague request into concrete candidate titles.

Users write things like "něco o čarodějích pro děti" or "a sad book about
the sea".  Neither phrase is close to any catalog title in embedding
space, so the expander asks an LLM for a handful of concrete titles and
themes first; each suggestion is then searched on its own.

Expansion never fails the recommendation flow.  When no LLM is
configured, when the call errors or times out, or when the answer
contains no usable line, :meth:`QueryExpander.expand` returns a fixed
list of broadly popular titles instead.
"""

from __future__ import annotations

from bookresolver.interfaces.llm_provider import ILLMProvider
from bookresolver.utils.concurrency import call_with_timeout
from bookresolver.utils.errors import BookResolverError
from bookresolver.utils.logging import get_logger
from bookresolver.utils.suggestion_parser import DEFAULT_MAX_SUGGESTIONS, SuggestionParser

DEFAULT_FALLBACK_TITLES: tuple[str, ...] = (
    "Harry Potter a kámen mudrců",
    "Malý princ",
    "Pán prstenů",
    "Hobit",
    "1984",
    "Stopařův průvodce po Galaxii",
)

_SYSTEM_PROMPT = (
    "You are a librarian for a Czech online bookstore. The user describes "
    "what they want to read, in Czech or English: a title fragment, an "
    "author, a genre or a mood. Answer with concrete book titles that best "
    "match the request, most relevant first, one title per line. Prefer "
    "the title under which the book is published in Czech when one exists. "
    "Output only the titles: no numbering, no commentary, no headings."
)

_USER_TEMPLATE = "Query: {query}\nSuggest up to {count} titles."


class QueryExpander:
    """Generates candidate titles for a user query with an LLM.

    Parameters
    ----------
    llm_provider:
        Chat-completion backend; ``None`` means expansion always returns
        the fallback titles.
    parser:
        Rules for splitting the model's answer into suggestions.
    fallback_titles:
        Returned when expansion produces nothing.  The resolver searches
        them like any other suggestion, so a catalog book matching one of
        them is returned ahead of the popularity list.
    base_temperature:
        Sampling temperature of the first attempt.
    temperature_step:
        Added per regeneration attempt, capped at 1.0.
    max_tokens:
        Response token limit.
    timeout:
        Per-call timeout in seconds.
    """

    def __init__(
        self,
        llm_provider: ILLMProvider | None,
        parser: SuggestionParser | None = None,
        fallback_titles: tuple[str, ...] | list[str] = DEFAULT_FALLBACK_TITLES,
        base_temperature: float = 0.7,
        temperature_step: float = 0.15,
        max_tokens: int = 300,
        timeout: float | None = 20.0,
    ) -> None:
        self._llm = llm_provider
        self._parser = parser or SuggestionParser()
        self._fallback_titles = list(fallback_titles)
        self._base_temperature = base_temperature
        self._temperature_step = temperature_step
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._logger = get_logger(__name__)

    @property
    def fallback_titles(self) -> list[str]:
        return list(self._fallback_titles)

    def temperature_for(self, attempt: int) -> float:
        """Sampling temperature for the given 0-based regeneration attempt."""
        return min(1.0, self._base_temperature + self._temperature_step * max(0, attempt))

    async def expand(self, query: str, attempt: int = 0) -> list[str]:
        """Return candidate suggestions for *query*, best first.

        Later attempts sample at a higher temperature so that a retry after
        an empty search explores different titles.
        """
        if self._llm is None or not query.strip():
            return self.fallback_titles

        temperature = self.temperature_for(attempt)
        try:
            raw = await call_with_timeout(
                self._llm.complete(
                    system_prompt=_SYSTEM_PROMPT,
                    user_prompt=_USER_TEMPLATE.format(query=query.strip(), count=DEFAULT_MAX_SUGGESTIONS),
                    temperature=temperature,
                    max_tokens=self._max_tokens,
                ),
                self._timeout,
                operation="query expansion",
                provider_name=self._llm.get_provider_name(),
            )
        except BookResolverError as exc:
            self._logger.warning(
                "query_expansion_failed",
                provider=self._llm.get_provider_name(),
                attempt=attempt,
                error=str(exc),
            )
            return self.fallback_titles

        suggestions = self._parser.parse(raw)
        if not suggestions:
            self._logger.warning(
                "query_expansion_empty",
                attempt=attempt,
                response_preview=raw[:200],
            )
            return self.fallback_titles

        self._logger.debug(
            "query_expanded",
            attempt=attempt,
            temperature=temperature,
            suggestions=len(suggestions),
        )
        return suggestions
