"""Bounded cache of synthesized audio keyed by normalised text."""

from __future__ import annotations

import hashlib
import re
import time
from dataclasses import dataclass
from threading import Lock
from typing import Awaitable, Callable, Sequence

import logfire
from cachetools import Cache


DEFAULT_MAX_ENTRIES = 100
DEFAULT_TTL_SECONDS = 24 * 60 * 60.0
DEFAULT_VOICE = "default"
DEFAULT_FORMAT = "mp3"

# Fixed replies spoken by the assistant; they dominate repeat traffic.
COMMON_PHRASES: tuple[str, ...] = (
    "Hello! I am your shopping assistant.",
    "I can help you find the best prices for products.",
    "Could you please repeat that?",
    "Let me search for that.",
    "I found the best prices for you.",
    "Would you like me to search for another product?",
    "Thank you for using our service.",
    "Goodbye!",
    "I did not understand that. Could you please try again?",
    "Please wait while I search.",
)

SynthesizeFn = Callable[[str, "str | None", "str | None"], Awaitable[bytes]]


@dataclass(slots=True)
class CacheEntry:
    """Stored audio plus the bookkeeping used for expiry and eviction."""

    key: str
    text: str
    audio: bytes
    created_at: float
    hit_count: int = 0


@dataclass(frozen=True, slots=True)
class CacheStats:
    hits: int
    misses: int
    size: int
    hit_rate: float


class _UsageWeightedCache(Cache):
    """``cachetools`` cache that evicts the least requested, then oldest, entry."""

    def popitem(self):
        try:
            victim = min(
                self,
                key=lambda key: (self[key].hit_count, self[key].created_at),
            )
        except ValueError:
            raise KeyError(f"{type(self).__name__} is empty") from None
        entry = self.pop(victim)
        logfire.debug(
            "cache.evict",
            hit_count=entry.hit_count,
            text=entry.text[:50],
        )
        return victim, entry


def normalize_text(text: str) -> str:
    return text.strip().lower()


def fingerprint(text: str, voice: str | None = None, audio_format: str | None = None) -> str:
    """Return the fixed-length key for a (text, voice, format) request."""

    raw = f"{normalize_text(text)}:{voice or DEFAULT_VOICE}:{audio_format or DEFAULT_FORMAT}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class ResponseCache:
    """Process-wide audio cache shared by every session.

    Every public operation runs inside one critical section.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
        phrases: Sequence[str] = COMMON_PHRASES,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be greater than zero")
        self._entries: _UsageWeightedCache = _UsageWeightedCache(maxsize=max_entries)
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = Lock()
        self._hits = 0
        self._misses = 0
        self.phrases = tuple(phrases)

    @property
    def max_entries(self) -> int:
        return int(self._entries.maxsize)

    def key(self, text: str, voice: str | None = None, audio_format: str | None = None) -> str:
        return fingerprint(text, voice, audio_format)

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at > self._ttl

    def get(
        self, text: str, voice: str | None = None, audio_format: str | None = None
    ) -> bytes | None:
        """Return cached audio, counting the lookup as a hit or a miss."""

        key = fingerprint(text, voice, audio_format)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._expired(entry, self._clock()):
                del self._entries[key]
                self._misses += 1
                logfire.debug("cache.expired", text=text[:50])
                return None

            entry.hit_count += 1
            self._hits += 1
            return entry.audio

    def set(
        self,
        text: str,
        audio: bytes,
        voice: str | None = None,
        audio_format: str | None = None,
    ) -> None:
        """Store audio, evicting the least used entry when the cache is full."""

        key = fingerprint(text, voice, audio_format)
        entry = CacheEntry(
            key=key,
            text=normalize_text(text),
            audio=audio,
            created_at=self._clock(),
        )
        with self._lock:
            previous = self._entries.get(key)
            if previous is not None:
                entry.hit_count = previous.hit_count
            self._entries[key] = entry

    def invalidate(
        self, text: str, voice: str | None = None, audio_format: str | None = None
    ) -> bool:
        key = fingerprint(text, voice, audio_format)
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_pattern(self, pattern: str | re.Pattern[str]) -> int:
        """Remove every entry whose normalised text matches ``pattern``."""

        regex = re.compile(pattern, re.IGNORECASE) if isinstance(pattern, str) else pattern
        with self._lock:
            doomed = [key for key, entry in self._entries.items() if regex.search(entry.text)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logfire.info("cache.invalidate_pattern", pattern=regex.pattern, removed=len(doomed))
        return len(doomed)

    def clear_expired(self) -> int:
        with self._lock:
            now = self._clock()
            doomed = [key for key, entry in self._entries.items() if self._expired(entry, now)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logfire.info("cache.clear_expired", removed=len(doomed))
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            size = len(self._entries)
            self._entries.clear()
            self._hits = 0
            self._misses = 0
        logfire.info("cache.cleared", removed=size)

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            rate = round(self._hits / total * 100, 2) if total else 0.0
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._entries),
                hit_rate=rate,
            )

    def memory_usage(self) -> int:
        """Return the number of audio bytes currently held."""

        with self._lock:
            return sum(len(entry.audio) for entry in self._entries.values())

    def is_common_phrase(self, text: str) -> bool:
        normalized = normalize_text(text)
        if not normalized:
            return False
        for phrase in self.phrases:
            candidate = normalize_text(phrase)
            if normalized == candidate or candidate in normalized or normalized in candidate:
                return True
        return False

    async def prewarm(
        self,
        synthesize: SynthesizeFn,
        voice: str | None = None,
        audio_format: str | None = None,
    ) -> int:
        """Synthesize and store the common phrase catalogue; return how many succeeded."""

        warmed = 0
        with logfire.span("cache.prewarm", phrases=len(self.phrases)):
            for phrase in self.phrases:
                try:
                    audio = await synthesize(phrase, voice, audio_format)
                except Exception as exc:
                    logfire.warning("cache.prewarm_failed", phrase=phrase[:50], error=str(exc))
                    continue
                self.set(phrase, audio, voice, audio_format)
                warmed += 1
        logfire.info("cache.prewarm_complete", warmed=warmed, total=len(self.phrases))
        return warmed


__all__ = [
    "COMMON_PHRASES",
    "CacheEntry",
    "CacheStats",
    "ResponseCache",
    "fingerprint",
]
