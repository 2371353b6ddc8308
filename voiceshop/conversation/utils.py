"""Text helpers shared by the turn pipeline."""

from __future__ import annotations

import re
from typing import Iterable, Sequence

from .contracts import ProductQuery, SearchResult


EXIT_PHRASES: tuple[str, ...] = ("goodbye", "exit", "stop", "quit", "bye", "end")

GOODBYE_MESSAGE = (
    "Goodbye! Feel free to come back anytime you need help finding the best prices."
)
CLOSING_MESSAGE = "Thank you for using our service. Goodbye!"
APOLOGY_MESSAGE = (
    "I apologize, but I encountered an error processing your request. "
    "Could you please try again?"
)
REPEAT_MESSAGE = "Could you please repeat that?"
IDLE_PROMPT = "Are you still there? Let me know if you need help finding product prices."
SEARCH_UNAVAILABLE_MESSAGE = (
    "I couldn't reach the stores right now. Would you like me to try that search again?"
)

FIXED_REPLIES: tuple[str, ...] = (
    GOODBYE_MESSAGE,
    CLOSING_MESSAGE,
    APOLOGY_MESSAGE,
    REPEAT_MESSAGE,
    IDLE_PROMPT,
    SEARCH_UNAVAILABLE_MESSAGE,
)


def normalize_text(text: str) -> str:
    """Lower-case the text and collapse runs of whitespace."""

    return " ".join(text.lower().split())


def _exit_pattern(phrases: Iterable[str]) -> re.Pattern[str]:
    alternatives = "|".join(
        re.escape(normalize_text(phrase)) for phrase in phrases if phrase.strip()
    )
    return re.compile(rf"(?<![\w'-])(?:{alternatives})(?![\w'-])")


_DEFAULT_EXIT_PATTERN = _exit_pattern(EXIT_PHRASES)


def contains_exit_phrase(text: str, phrases: Sequence[str] | None = None) -> bool:
    """Return ``True`` when a whole exit phrase occurs anywhere in ``text``.

    ``"okay goodbye then"`` matches while ``"recommend"`` does not match
    ``end``.
    """

    normalized = normalize_text(text)
    if not normalized:
        return False
    if phrases is None:
        pattern = _DEFAULT_EXIT_PATTERN
    elif not any(phrase.strip() for phrase in phrases):
        return False
    else:
        pattern = _exit_pattern(phrases)
    return pattern.search(normalized) is not None


def format_inr(amount: float) -> str:
    """Format a rupee amount using Indian digit grouping (``₹1,99,900``)."""

    whole = int(round(amount))
    sign = "-" if whole < 0 else ""
    digits = str(abs(whole))
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        digits = ",".join(groups + [tail])
    return f"{sign}₹{digits}"


def fallback_summary(query: ProductQuery, ranked: Sequence[SearchResult]) -> str:
    """Build a deterministic price summary from the two cheapest ranked offers."""

    if not ranked:
        return (
            f"I couldn't find any results for {query.product_name} with the specifications "
            "you mentioned. Would you like to try a different product or modify the "
            "specifications?"
        )

    lowest = ranked[0]
    summary = (
        f"I found the {query.product_name} for {format_inr(lowest.price)} on {lowest.platform}"
    )
    if len(ranked) > 1:
        second = ranked[1]
        return (
            f"{summary}, and {format_inr(second.price)} on {second.platform}. "
            "Would you like to search for another product?"
        )
    return f"{summary}. Would you like to search for another product?"


__all__ = [
    "APOLOGY_MESSAGE",
    "CLOSING_MESSAGE",
    "EXIT_PHRASES",
    "FIXED_REPLIES",
    "GOODBYE_MESSAGE",
    "IDLE_PROMPT",
    "REPEAT_MESSAGE",
    "SEARCH_UNAVAILABLE_MESSAGE",
    "contains_exit_phrase",
    "fallback_summary",
    "format_inr",
    "normalize_text",
]
