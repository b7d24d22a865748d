"""Text normalization and keyword-relevance helpers for catalog titles.

This module handles three concerns shared by the keyword search paths:

1. **Query normalization** -- trims and collapses whitespace so that
   ``"  The   Hobbit "`` and ``"the hobbit"`` produce the same cache key.

2. **Keyword term extraction** -- splits a suggestion into the full phrase
   plus its significant words (at least three characters), which is the
   order the keyword fallback tries them in.

3. **Keyword relevance scoring** -- a cheap title-vs-query score used to
   rank ILIKE hits, since the store returns them unordered.  Czech titles
   inflect heavily ("kouzelník" / "kouzelníci"), so partial word matches
   also accept near-identical words via rapidfuzz.
"""

import re
import unicodedata

from rapidfuzz import fuzz

_WHITESPACE_RE = re.compile(r"\s+")

# Punctuation stripped from the edges of words before comparison.
_EDGE_PUNCT = ".,;:!?\"'()[]{}«»„“”‘’"

MIN_SIGNIFICANT_WORD_LENGTH = 3

# rapidfuzz ratio (0-100) at which two words count as a partial match.
_FUZZY_WORD_CUTOFF = 80.0


def normalize_query(text: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return _WHITESPACE_RE.sub(" ", text.strip()).lower()


def fold_diacritics(text: str) -> str:
    """Strip combining accents ("Hobit, aneb Cesta tam a zase zpátky" -> "...zpatky")."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _words(text: str) -> list[str]:
    words = [w.strip(_EDGE_PUNCT) for w in normalize_query(text).split(" ")]
    return [w for w in words if w]


def keyword_terms(phrase: str) -> list[str]:
    """Return the search terms for *phrase*: the full phrase, then each significant word.

    Words shorter than three characters are dropped, duplicates are
    removed, and the full phrase is not repeated when it is a single word.
    """
    normalized = normalize_query(phrase)
    if not normalized:
        return []

    terms = [normalized]
    for word in _words(normalized):
        if len(word) >= MIN_SIGNIFICANT_WORD_LENGTH and word not in terms:
            terms.append(word)
    return terms


def _is_partial_word_match(word: str, title_word: str) -> bool:
    if word in title_word or title_word in word:
        return True
    return fuzz.ratio(fold_diacritics(word), fold_diacritics(title_word)) >= _FUZZY_WORD_CUTOFF


def keyword_relevance(query: str, title: str) -> float:
    """Score how well *title* matches *query* on a 0.1-1.0 scale.

    - exact match (case-insensitive): 1.0
    - title contains the query: 0.8
    - whole-word overlap: ``0.6 * common / query_words``
    - partial word overlap: 0.3
    - otherwise: 0.1
    """
    query_norm = normalize_query(query)
    title_norm = normalize_query(title)
    if not query_norm or not title_norm:
        return 0.1

    if title_norm == query_norm:
        return 1.0
    if query_norm in title_norm:
        return 0.8

    query_words = _words(query_norm)
    title_words = _words(title_norm)
    if not query_words:
        return 0.1

    title_set = set(title_words)
    common = [w for w in query_words if w in title_set]
    if common:
        return 0.6 * (len(common) / len(query_words))

    significant = [w for w in query_words if len(w) >= MIN_SIGNIFICANT_WORD_LENGTH]
    title_significant = [w for w in title_words if len(w) >= MIN_SIGNIFICANT_WORD_LENGTH]
    for word in significant:
        for title_word in title_significant:
            if _is_partial_word_match(word, title_word):
                return 0.3
    return 0.1
