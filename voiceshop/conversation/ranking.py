"""Specification matching and ranking of noisy search results."""

from __future__ import annotations

import re
from typing import Iterable, Mapping, Sequence

import logfire

from .contracts import SearchResult, SpecValue


DEFAULT_MIN_CONFIDENCE = 0.6

_WHITESPACE = re.compile(r"\s+")
_KEY_SEPARATORS = re.compile(r"[\s_\-]+")


def _normalize_value(value: SpecValue) -> str:
    return _WHITESPACE.sub("", str(value)).lower()


def _normalize_key(key: str) -> str:
    return _KEY_SEPARATORS.sub("", key).lower()


def _lookup(specs: Mapping[str, SpecValue], key: str) -> SpecValue | None:
    """Return the value for ``key`` ignoring case and separators."""

    if key in specs:
        return specs[key]
    wanted = _normalize_key(key)
    for candidate, value in specs.items():
        if _normalize_key(candidate) == wanted:
            return value
    return None


class ResultRanker:
    """Scores results against requested specifications and keeps the best offers."""

    def __init__(self, min_confidence: float = DEFAULT_MIN_CONFIDENCE) -> None:
        self.min_confidence = min_confidence

    def score(self, result: SearchResult, required_specs: Mapping[str, SpecValue]) -> float:
        """Return the average per-specification match in ``[0, 1]``.

        Exact matches count 1, containment in either direction 0.5. An empty
        requirement set scores 0; callers treat it as an automatic match.
        """

        if not required_specs:
            return 0.0

        total = 0.0
        for key, requested in required_specs.items():
            observed = _lookup(result.specifications, key)
            if observed is None:
                continue
            wanted = _normalize_value(requested)
            found = _normalize_value(observed)
            if not wanted or not found:
                continue
            if wanted == found:
                total += 1.0
            elif wanted in found or found in wanted:
                total += 0.5
        return total / len(required_specs)

    def filter_and_rank(
        self,
        results: Iterable[SearchResult],
        required_specs: Mapping[str, SpecValue] | None = None,
        min_confidence: float | None = None,
    ) -> list[SearchResult]:
        """Drop weak or unavailable offers, keep the cheapest per platform.

        The returned results carry their computed match confidence and are
        ordered by ascending price; equal prices keep encounter order.
        """

        threshold = self.min_confidence if min_confidence is None else min_confidence
        specs = dict(required_specs or {})
        scored: list[SearchResult] = []
        for result in results:
            confidence = self.score(result, specs) if specs else 1.0
            scored.append(result.model_copy(update={"match_confidence": confidence}))

        eligible = [
            result
            for result in scored
            if result.match_confidence >= threshold and result.availability != "out_of_stock"
        ]

        cheapest: dict[str, SearchResult] = {}
        for result in eligible:
            current = cheapest.get(result.platform)
            if current is None or result.price < current.price:
                cheapest[result.platform] = result

        ranked = sorted(cheapest.values(), key=lambda item: item.price)
        logfire.info(
            "ranking.filtered",
            total=len(scored),
            eligible=len(eligible),
            platforms=len(ranked),
            has_required_specs=bool(specs),
            min_confidence=threshold,
        )
        return ranked


def top_offers(results: Sequence[SearchResult], limit: int = 3) -> list[SearchResult]:
    """Return the cheapest offers not marked out of stock, at most ``limit`` of them."""

    available = [result for result in results if result.availability != "out_of_stock"]
    return sorted(available, key=lambda item: item.price)[:limit]


__all__ = ["DEFAULT_MIN_CONFIDENCE", "ResultRanker", "top_offers"]
