"""Parser for newline-delimited LLM suggestion lists.

The query expander asks the model for one concrete title or theme per
line.  Models still decorate their output: numbered or bulleted lists,
markdown bold, quotes, code fences, and sometimes an echo of the prompt's
own ``Query:`` / ``Suggestions:`` markers.  :class:`SuggestionParser`
applies one fixed set of rules so no call site does its own string
surgery:

1. Split on newlines; drop blank lines.
2. Drop code fences and lines that echo a prompt marker.
3. Strip list markers, markdown emphasis and wrapping quotes.
4. Drop lines that are empty after stripping, deduplicate
   case-insensitively (first occurrence wins), cap the count.
"""

from __future__ import annotations

import re

# Prompt markers the expander's own instructions use.  A line starting
# with one of these is an echo, not a suggestion.
PROMPT_MARKERS: tuple[str, ...] = (
    "query:",
    "user query:",
    "request:",
    "suggestions:",
    "titles:",
    "dotaz:",
    "návrhy:",
    "tituly:",
)

_LIST_MARKER_RE = re.compile(r"^\s*(?:\d{1,2}\s*[.)]|[-*•–—]+)\s*")
_EMPHASIS_RE = re.compile(r"(\*\*|__|\*|`)")
_QUOTES = "\"'„“”‘’«»"

DEFAULT_MAX_SUGGESTIONS = 10


class SuggestionParser:
    """Turn raw LLM text into an ordered, deduplicated suggestion list."""

    def __init__(
        self,
        max_suggestions: int = DEFAULT_MAX_SUGGESTIONS,
        prompt_markers: tuple[str, ...] = PROMPT_MARKERS,
        max_length: int = 200,
    ) -> None:
        self._max_suggestions = max_suggestions
        self._prompt_markers = tuple(m.lower() for m in prompt_markers)
        self._max_length = max_length

    def parse(self, raw: str) -> list[str]:
        """Return at most ``max_suggestions`` cleaned suggestions, in model order."""
        suggestions: list[str] = []
        seen: set[str] = set()

        for line in raw.splitlines():
            cleaned = self._clean_line(line)
            if cleaned is None:
                continue
            key = cleaned.casefold()
            if key in seen:
                continue
            seen.add(key)
            suggestions.append(cleaned)
            if len(suggestions) >= self._max_suggestions:
                break

        return suggestions

    def _clean_line(self, line: str) -> str | None:
        stripped = line.strip()
        if not stripped or stripped.startswith("```"):
            return None
        if self._is_prompt_echo(stripped):
            return None

        text = _LIST_MARKER_RE.sub("", stripped)
        text = _EMPHASIS_RE.sub("", text).strip()
        text = text.strip(_QUOTES).strip()
        # A second pass catches markers hidden behind emphasis ("**1.** Dune").
        text = _LIST_MARKER_RE.sub("", text).strip()

        if not text or self._is_prompt_echo(text):
            return None
        if len(text) > self._max_length:
            return None
        return text

    def _is_prompt_echo(self, text: str) -> bool:
        lowered = text.lower()
        return any(lowered.startswith(marker) for marker in self._prompt_markers)
