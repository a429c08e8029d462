"""Heuristic normalization of scraping-backend items into canonical records.

Scraper actors return loosely structured JSON whose shape drifts between
actors and versions. Items are classified purely by field presence:

- ProfileRecord: exposes a handle plus a follower-count-like field
- ContentItem:   exposes an id plus any like/comment/share count
                 (or a view count on an item explicitly typed as a video)
- ContentBatch:  carries a nested list of content items
- Unrecognized:  anything else

Everything in this module is pure: no I/O, no clock except where a
reference time is passed in.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Union

HANDLE_KEYS = ("username", "handle", "uniqueId", "screen_name", "userName", "channelHandle")
FOLLOWER_KEYS = (
    "follower_count", "followers_count", "followersCount", "followerCount",
    "followers", "fans", "subscriberCount", "numberOfSubscribers", "stats.followerCount",
)
FOLLOWING_KEYS = (
    "following_count", "followingCount", "friends_count", "follows_count", "following", "stats.followingCount",
)
CONTENT_COUNT_KEYS = (
    "video_count", "videoCount", "postsCount", "posts_count", "media_count",
    "statuses_count", "channelTotalVideos", "stats.videoCount",
)
DISPLAY_NAME_KEYS = ("display_name", "fullName", "full_name", "nickName", "name", "channelName")
BIO_KEYS = ("bio_description", "biography", "bio", "signature", "description", "channelDescription")
AVATAR_KEYS = (
    "avatar_url", "avatar", "profilePicUrl", "profile_image_url_https", "profile_image_url",
    "channelAvatarUrl", "avatarLarger",
)
VERIFIED_KEYS = ("is_verified", "isVerified", "verified", "isChannelVerified")
USER_ID_KEYS = ("open_id", "user_id", "userId", "id_str", "channelId", "pk")

CONTENT_ID_KEYS = ("id", "id_str", "video_id", "tweet_id", "postId", "shortCode")
LIKE_KEYS = (
    "like_count", "likes", "likesCount", "likeCount", "favorite_count", "diggCount", "stats.diggCount",
)
COMMENT_KEYS = (
    "comment_count", "comments", "commentsCount", "commentCount", "reply_count", "stats.commentCount",
)
SHARE_KEYS = (
    "share_count", "shares", "shareCount", "sharesCount", "retweet_count", "stats.shareCount",
)
VIEW_KEYS = (
    "view_count", "views", "viewCount", "playCount", "videoViewCount", "videoPlayCount", "stats.playCount",
)
CAPTION_KEYS = ("video_description", "caption", "full_text", "text", "description", "title")
TIMESTAMP_KEYS = ("create_time", "createTime", "createTimeISO", "timestamp", "takenAtTimestamp", "created_at", "createdAt", "publishedAt", "date")
MEDIA_URL_KEYS = ("share_url", "url", "webVideoUrl", "pageUrl", "permalink")
THUMBNAIL_KEYS = ("cover_image_url", "thumbnailUrl", "thumbnail_url", "displayUrl", "cover", "video.cover")
DURATION_KEYS = ("duration", "videoDuration", "video.duration", "videoMeta.duration")
NESTED_CONTENT_KEYS = ("videos", "latestPosts", "posts", "tweets", "timeline")
EMBEDDED_PROFILE_KEYS = ("aboutChannelInfo", "authorMeta", "author", "owner", "user", "user_info")
VIDEO_TYPES = {"video", "short", "reel"}

HASHTAG_PATTERN = re.compile(r"#(\w+)")
RELATIVE_DATE_PATTERN = re.compile(r"(\d+)\s*(second|minute|hour|day|week|month|year)s?\s*ago")
ISO_DURATION_PATTERN = re.compile(r"^PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?$")
COUNT_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*([KMB])?")

_COUNT_MULTIPLIERS = {"K": 1_000, "M": 1_000_000, "B": 1_000_000_000}

_RELATIVE_UNITS = {
    "second": timedelta(seconds=1),
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}

RECENT_CONTENT_LIMIT = 12
TOP_HASHTAG_LIMIT = 10


@dataclass(frozen=True)
class ContentItem:
    """Canonical post/video."""
    external_id: str
    caption: str = ""
    posted_at: datetime | None = None
    likes: int = 0
    comments: int = 0
    shares: int = 0
    views: int = 0
    media_type: str | None = None
    media_url: str | None = None
    thumbnail_url: str | None = None
    duration_seconds: int | None = None
    is_repost: bool = False
    author: ProfileRecord | None = None

    @property
    def engagement(self) -> int:
        return self.likes + self.comments + self.shares


@dataclass(frozen=True)
class ProfileRecord:
    """Canonical profile."""
    handle: str
    external_user_id: str | None = None
    display_name: str | None = None
    bio: str = ""
    avatar_url: str | None = None
    followers: int = 0
    following: int = 0
    content_count: int = 0
    is_verified: bool = False
    is_private: bool = False
    external_url: str | None = None
    posts: tuple[ContentItem, ...] = ()


@dataclass(frozen=True)
class ContentBatch:
    """An item that only wraps a list of content items."""
    items: tuple[ContentItem, ...]


@dataclass(frozen=True)
class Unrecognized:
    raw_keys: tuple[str, ...] = ()


Classified = Union[ProfileRecord, ContentItem, ContentBatch, Unrecognized]


@dataclass
class ScrapeResult:
    """Transient outcome of one profile scrape (never persisted as-is)."""
    profile: ProfileRecord
    posts: list[ContentItem]
    engagement_rate: float
    top_hashtags: list[str]
    scraped_at: datetime
    source_variant: str | None = None
    averages: dict[str, int] = field(default_factory=dict)


# ============== Field access ==============

def _lookup(item: Mapping[str, Any], key: str) -> Any:
    """Read a possibly dotted key ("stats.followerCount")."""
    current: Any = item
    for part in key.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def _first(item: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = _lookup(item, key)
        if value is not None and value != "":
            return value
    return None


def _has_any(item: Mapping[str, Any], keys: Iterable[str]) -> bool:
    return any(_lookup(item, key) is not None for key in keys)


def _count(item: Mapping[str, Any], keys: Iterable[str]) -> int:
    """Counts may arrive as ints, floats, nested {"count": n} or strings."""
    value = _first(item, keys)
    if isinstance(value, Mapping):
        value = value.get("count")
    return parse_count(value)


def _text(item: Mapping[str, Any], keys: Iterable[str]) -> str | None:
    value = _first(item, keys)
    if value is None or isinstance(value, (Mapping, list)):
        return None
    return str(value)


# ============== Parsers ==============

def parse_count(value: Any) -> int:
    """Parse counts such as 1520, "1.5K", "3,400", "2.1M" into an int."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    if isinstance(value, (int, float)):
        return max(int(value), 0)
    if not isinstance(value, str):
        return 0

    match = COUNT_PATTERN.match(value.strip().upper().replace(",", ""))
    if not match:
        return 0
    number, suffix = float(match.group(1)), match.group(2)
    return round(number * _COUNT_MULTIPLIERS.get(suffix, 1))


def parse_duration(value: Any) -> int | None:
    """Parse "PT5M13S", "1:23:45", "5:13" or plain seconds into seconds."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value) if math.isfinite(value) else None

    text = str(value).strip()
    match = ISO_DURATION_PATTERN.match(text)
    if match:
        hours, minutes, seconds = (int(group or 0) for group in match.groups())
        return hours * 3600 + minutes * 60 + seconds

    if ":" in text:
        try:
            parts = [int(p or 0) for p in text.split(":")]
        except ValueError:
            return None
        if len(parts) == 3:
            return parts[0] * 3600 + parts[1] * 60 + parts[2]
        if len(parts) == 2:
            return parts[0] * 60 + parts[1]
        return None

    try:
        seconds = float(text)
    except ValueError:
        return None
    return int(seconds) if math.isfinite(seconds) else None


def parse_timestamp(value: Any, now: datetime | None = None) -> datetime | None:
    """Normalize epoch seconds/millis, ISO strings and "3 days ago" into aware UTC."""
    if value is None or value == "" or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        ts = float(value)
        # Some APIs return milliseconds
        if ts > 1_000_000_000_000:
            ts = ts / 1000.0
        try:
            return datetime.fromtimestamp(ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    text = str(value).strip()
    if text.isdigit():
        return parse_timestamp(int(text), now)

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    except ValueError:
        pass

    # Twitter v1.1 style: "Wed Oct 10 20:19:24 +0000 2018"
    try:
        return datetime.strptime(text, "%a %b %d %H:%M:%S %z %Y").astimezone(timezone.utc)
    except ValueError:
        pass

    match = RELATIVE_DATE_PATTERN.search(text.lower())
    if match:
        amount, unit = int(match.group(1)), match.group(2)
        return (now or datetime.now(timezone.utc)) - amount * _RELATIVE_UNITS[unit]
    return None


def clean_handle(handle: str) -> str:
    """Strip whitespace, a leading "@" and a profile-URL prefix."""
    cleaned = (handle or "").strip()
    if "/" in cleaned:
        cleaned = cleaned.rstrip("/").rsplit("/", 1)[-1]
    return cleaned.lstrip("@").strip()


# ============== Classification ==============

def _is_profile_like(item: Mapping[str, Any]) -> bool:
    return _first(item, HANDLE_KEYS) is not None and _has_any(item, FOLLOWER_KEYS)


def _is_content_like(item: Mapping[str, Any]) -> bool:
    if _first(item, CONTENT_ID_KEYS) is None:
        return False
    if _has_any(item, LIKE_KEYS + COMMENT_KEYS + SHARE_KEYS):
        return True
    item_type = str(item.get("type") or "").lower()
    return item_type in VIDEO_TYPES and _has_any(item, VIEW_KEYS)


def _nested_content(item: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    for key in NESTED_CONTENT_KEYS:
        value = item.get(key)
        if isinstance(value, list) and value:
            return [v for v in value if isinstance(v, Mapping)]
    return []


def build_profile(item: Mapping[str, Any], fallback_handle: str | None = None) -> ProfileRecord:
    handle = _text(item, HANDLE_KEYS) or fallback_handle or ""
    return ProfileRecord(
        handle=clean_handle(handle),
        external_user_id=_text(item, USER_ID_KEYS),
        display_name=_text(item, DISPLAY_NAME_KEYS),
        bio=_text(item, BIO_KEYS) or "",
        avatar_url=_text(item, AVATAR_KEYS),
        followers=_count(item, FOLLOWER_KEYS),
        following=_count(item, FOLLOWING_KEYS),
        content_count=_count(item, CONTENT_COUNT_KEYS),
        is_verified=bool(_first(item, VERIFIED_KEYS)),
        is_private=bool(item.get("isPrivate") or item.get("is_private") or item.get("protected")),
        external_url=_text(item, ("externalUrl", "external_url", "bioLink", "website")),
        posts=tuple(
            content for content in (build_content(v) for v in _nested_content(item))
            if content is not None
        ),
    )


def _embedded_profile(item: Mapping[str, Any]) -> ProfileRecord | None:
    for key in EMBEDDED_PROFILE_KEYS:
        nested = item.get(key)
        if isinstance(nested, Mapping) and _has_any(nested, FOLLOWER_KEYS):
            return build_profile(nested)
    return None


def build_content(item: Mapping[str, Any]) -> ContentItem | None:
    external_id = _first(item, CONTENT_ID_KEYS)
    if external_id is None:
        return None
    caption = _text(item, CAPTION_KEYS) or ""
    return ContentItem(
        external_id=str(external_id),
        caption=caption,
        posted_at=parse_timestamp(_first(item, TIMESTAMP_KEYS)),
        likes=_count(item, LIKE_KEYS),
        comments=_count(item, COMMENT_KEYS),
        shares=_count(item, SHARE_KEYS),
        views=_count(item, VIEW_KEYS),
        media_type=_text(item, ("type", "media_type", "mediaType")),
        media_url=_text(item, MEDIA_URL_KEYS),
        thumbnail_url=_text(item, THUMBNAIL_KEYS),
        duration_seconds=parse_duration(_first(item, DURATION_KEYS)),
        is_repost=bool(item.get("retweeted_status") or item.get("isRetweet") or caption.startswith("RT @")),
        author=_embedded_profile(item),
    )


def classify_item(item: Any) -> Classified:
    """Classify one raw backend item.

    Profile-like wins over content-like; a profile may carry nested posts.
    """
    if not isinstance(item, Mapping):
        return Unrecognized()

    if _is_profile_like(item):
        return build_profile(item)

    if _is_content_like(item):
        content = build_content(item)
        if content is not None:
            return content

    nested = _nested_content(item)
    if nested:
        items = tuple(c for c in (build_content(v) for v in nested) if c is not None)
        if items:
            return ContentBatch(items=items)

    return Unrecognized(raw_keys=tuple(sorted(str(k) for k in item.keys())))


def normalize_items(
    items: Sequence[Any], handle: str
) -> tuple[ProfileRecord | None, list[ContentItem]]:
    """Fold classified items into one profile and a de-duplicated post list.

    Returns (None, []) when nothing recognizable was found. Reposts are
    dropped; duplicates keep the first occurrence.
    """
    profile: ProfileRecord | None = None
    embedded: ProfileRecord | None = None
    collected: list[ContentItem] = []

    for item in items:
        classified = classify_item(item)
        if isinstance(classified, ProfileRecord):
            if profile is None:
                profile = classified
            collected.extend(classified.posts)
        elif isinstance(classified, ContentItem):
            collected.append(classified)
            if embedded is None and classified.author is not None:
                embedded = classified.author
        elif isinstance(classified, ContentBatch):
            collected.extend(classified.items)

    posts = dedupe_posts(c for c in collected if not c.is_repost)

    if profile is None and embedded is not None:
        profile = embedded
    if profile is None and not posts:
        return None, []
    if profile is None:
        profile = ProfileRecord(handle=clean_handle(handle), display_name=clean_handle(handle))
    if not profile.handle:
        profile = _replace_handle(profile, clean_handle(handle))
    return profile, posts


def _replace_handle(profile: ProfileRecord, handle: str) -> ProfileRecord:
    return replace(profile, handle=handle)


def dedupe_posts(posts: Iterable[ContentItem]) -> list[ContentItem]:
    seen: dict[str, ContentItem] = {}
    for post in posts:
        if post.external_id and post.external_id not in seen:
            seen[post.external_id] = post
    return list(seen.values())


# ============== Derived metrics ==============

def compute_engagement_rate(posts: Sequence[ContentItem], followers: int) -> float:
    """Average interactions per post relative to audience size, in percent.

    Uses likes+comments+shares; when no post carries any such signal
    (view-only platforms) falls back to average views.
    """
    if not posts:
        return 0.0
    denominator = max(followers or 0, 1)
    if any(post.engagement > 0 for post in posts):
        average = sum(post.engagement for post in posts) / len(posts)
    else:
        average = sum(post.views for post in posts) / len(posts)
    return round(average / denominator * 100, 2)


def extract_top_hashtags(captions: Iterable[str], limit: int = TOP_HASHTAG_LIMIT) -> list[str]:
    """Most frequent hashtags (lowercased, without "#"); ties keep first-seen order."""
    counts: dict[str, int] = {}
    for caption in captions:
        for tag in HASHTAG_PATTERN.findall(caption or ""):
            key = tag.lower()
            counts[key] = counts.get(key, 0) + 1
    # sorted() is stable, so insertion (first-seen) order breaks ties
    ranked = sorted(counts.items(), key=lambda pair: -pair[1])
    return [tag for tag, _ in ranked[:limit]]


def compute_averages(posts: Sequence[ContentItem]) -> dict[str, int]:
    if not posts:
        return {"averageLikes": 0, "averageComments": 0, "averageViews": 0}
    total = len(posts)
    return {
        "averageLikes": round(sum(p.likes for p in posts) / total),
        "averageComments": round(sum(p.comments for p in posts) / total),
        "averageViews": round(sum(p.views for p in posts) / total),
    }


def summarize_recent(posts: Sequence[ContentItem], limit: int = RECENT_CONTENT_LIMIT) -> list[dict]:
    """Compact JSON-safe summaries of the newest posts."""
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    ordered = sorted(posts, key=lambda p: p.posted_at or epoch, reverse=True)
    return [
        {
            "id": post.external_id,
            "caption": post.caption[:200],
            "likes": post.likes,
            "comments": post.comments,
            "shares": post.shares,
            "views": post.views,
            "postedAt": post.posted_at.isoformat() if post.posted_at else None,
            "url": post.media_url,
        }
        for post in ordered[:limit]
    ]


def build_scrape_result(
    profile: ProfileRecord,
    posts: list[ContentItem],
    scraped_at: datetime,
    source_variant: str | None = None,
) -> ScrapeResult:
    return ScrapeResult(
        profile=profile,
        posts=posts,
        engagement_rate=compute_engagement_rate(posts, profile.followers),
        top_hashtags=extract_top_hashtags(p.caption for p in posts),
        scraped_at=scraped_at,
        source_variant=source_variant,
        averages=compute_averages(posts),
    )
