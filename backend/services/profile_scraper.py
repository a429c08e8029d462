"""Public profile scraping through the scraping backend.

One adapter instance per platform. ``scrape`` consults the ScrapeCache,
then walks a fixed list of actor input shapes until one of them yields
items, normalizes those items and caches the result.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from models.social_account import Platform
from services.errors import UpstreamError, UpstreamNotFound, UpstreamTimeout
from services.scrape_cache import ScrapeCache
from services.scrape_normalizer import (
    ScrapeResult,
    build_scrape_result,
    clean_handle,
    normalize_items,
)

logger = logging.getLogger(__name__)

PROFILE_URL_TEMPLATES = {
    Platform.INSTAGRAM: "https://www.instagram.com/{handle}/",
    Platform.TIKTOK: "https://www.tiktok.com/@{handle}",
    Platform.YOUTUBE: "https://www.youtube.com/@{handle}",
    Platform.TWITTER: "https://x.com/{handle}",
}

# Each actor names its item cap differently
MAX_ITEMS_FIELDS = {
    Platform.INSTAGRAM: "resultsLimit",
    Platform.TIKTOK: "maxVideosPerUser",
    Platform.YOUTUBE: "maxResults",
    Platform.TWITTER: "maxItems",
}

MAX_VARIANTS = 4


class ActorRunner(Protocol):
    async def run_actor(self, actor_id: str, run_input: dict) -> list[dict[str, Any]]: ...


@dataclass(frozen=True)
class InputVariant:
    label: str
    payload: dict


def profile_url(platform: Platform, handle: str) -> str:
    return PROFILE_URL_TEMPLATES[platform].format(handle=handle)


def build_input_variants(platform: Platform, handle: str, max_items: int) -> list[InputVariant]:
    """Actor input shapes in fallback order: handles, usernames, profiles, startUrls."""
    url = profile_url(platform, handle)
    common = {
        MAX_ITEMS_FIELDS[platform]: max_items,
        "includeUserStats": True,
        "includeVideoStats": True,
    }
    return [
        InputVariant("handles", {"handles": [handle], **common}),
        InputVariant("usernames", {"usernames": [handle], **common}),
        InputVariant("profiles", {"profiles": [url], **common}),
        InputVariant("startUrls", {"startUrls": [{"url": url}], **common}),
    ]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProfileScraperAdapter:
    """Scrapes one platform's public profiles into ScrapeResults."""

    def __init__(
        self,
        runner: ActorRunner,
        actor_id: str,
        platform: Platform,
        cache: ScrapeCache,
        max_items: int = 24,
        max_attempts: int = MAX_VARIANTS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.runner = runner
        self.actor_id = actor_id
        self.platform = platform
        self.cache = cache
        self.max_items = max_items
        self.max_attempts = max(1, min(max_attempts, MAX_VARIANTS))
        self._clock = clock

    def cache_key(self, handle: str) -> str:
        return f"{self.platform.value}:{clean_handle(handle)}"

    async def scrape(self, handle: str) -> ScrapeResult:
        """Return a ScrapeResult for ``handle``.

        Raises UpstreamNotFound when every input variant comes back empty or
        fails, UpstreamTimeout as soon as the backend times out.
        """
        username = clean_handle(handle)
        if not username:
            raise UpstreamNotFound(f"{self.platform.value} handle is required")

        key = self.cache_key(username)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"Using cached {self.platform.value} data for @{username}")
            return cached

        items: list[dict] = []
        tried: list[str] = []
        used: str | None = None

        for variant in build_input_variants(self.platform, username, self.max_items)[: self.max_attempts]:
            tried.append(variant.label)
            try:
                items = await self.runner.run_actor(self.actor_id, variant.payload)
            except UpstreamTimeout:
                logger.warning(
                    f"{self.platform.value} scrape for @{username} timed out on variant '{variant.label}'"
                )
                raise
            except UpstreamError as e:
                logger.warning(f"Variant '{variant.label}' failed for @{username}: {e}")
                continue

            if items:
                used = variant.label
                break

        if not items:
            raise UpstreamNotFound(
                f"No {self.platform.value} data found for @{username} (attempted inputs: [{', '.join(tried)}])"
            )

        profile, posts = normalize_items(items, username)
        if profile is None:
            raise UpstreamNotFound(
                f"No recognizable {self.platform.value} profile or content for @{username} "
                f"({len(items)} items from '{used}')"
            )

        result = build_scrape_result(profile, posts, scraped_at=self._clock(), source_variant=used)
        self.cache.put(key, result)
        logger.info(
            f"Scraped {self.platform.value} @{username} via '{used}': "
            f"{profile.followers} followers, {len(posts)} posts, {result.engagement_rate}% engagement"
        )
        return result
