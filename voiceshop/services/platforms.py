"""Indian e-commerce platforms the search providers are restricted to."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Platform:
    name: str
    domain: str
    priority: int


PLATFORMS: tuple[Platform, ...] = (
    Platform("Flipkart", "flipkart.com", 1),
    Platform("Amazon India", "amazon.in", 2),
    Platform("Myntra", "myntra.com", 3),
    Platform("Croma", "croma.com", 4),
    Platform("Reliance Digital", "reliancedigital.in", 5),
    Platform("Vijay Sales", "vijaysales.com", 6),
    Platform("Tata Cliq", "tatacliq.com", 7),
    Platform("Snapdeal", "snapdeal.com", 8),
)

PLATFORM_NAMES: tuple[str, ...] = tuple(platform.name for platform in PLATFORMS)
PLATFORM_DOMAINS: tuple[str, ...] = tuple(platform.domain for platform in PLATFORMS)


def platform_for_host(host: str) -> Platform | None:
    """Return the platform whose domain the host belongs to."""

    host = host.lower()
    for platform in PLATFORMS:
        if host == platform.domain or host.endswith("." + platform.domain):
            return platform
    return None


def platforms_by_priority() -> list[Platform]:
    return sorted(PLATFORMS, key=lambda platform: platform.priority)


__all__ = [
    "PLATFORMS",
    "PLATFORM_DOMAINS",
    "PLATFORM_NAMES",
    "Platform",
    "platform_for_host",
    "platforms_by_priority",
]
