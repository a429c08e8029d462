"""Tests for heuristic item classification and derived metrics.

Verifies that:
- Items are classified as profile / content / batch / unrecognized by field presence
- Loosely typed counts, timestamps and durations are parsed
- Posts are de-duplicated and reposts dropped
- Engagement rate and top hashtags follow the documented formulas
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import profile_item, scrape_items, video_item
from services.scrape_normalizer import (
    ContentBatch,
    ContentItem,
    ProfileRecord,
    Unrecognized,
    build_scrape_result,
    classify_item,
    clean_handle,
    compute_averages,
    compute_engagement_rate,
    extract_top_hashtags,
    normalize_items,
    parse_count,
    parse_duration,
    parse_timestamp,
    summarize_recent,
)


# ==============================================================================
# Classification
# ==============================================================================

@pytest.mark.unit
def test_profile_like_item():
    """Handle + follower-count field -> ProfileRecord."""
    result = classify_item(profile_item("@alice", followers=1200))

    assert isinstance(result, ProfileRecord)
    assert result.handle == "alice"
    assert result.followers == 1200
    assert result.following == 10
    assert result.content_count == 3
    assert result.bio == "hello"


@pytest.mark.unit
def test_handle_without_followers_is_not_a_profile():
    result = classify_item({"username": "alice", "display_name": "Alice"})

    assert isinstance(result, Unrecognized)
    assert result.raw_keys == ("display_name", "username")


@pytest.mark.unit
def test_content_like_item():
    """Id + any interaction count -> ContentItem."""
    result = classify_item(video_item("v1", likes=5, comments=2, shares=1, views=90, caption="hi"))

    assert isinstance(result, ContentItem)
    assert result.external_id == "v1"
    assert (result.likes, result.comments, result.shares, result.views) == (5, 2, 1, 90)
    assert result.engagement == 8
    assert result.posted_at == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)


@pytest.mark.unit
def test_views_only_item_needs_video_type():
    """A bare id + views is only content when typed as a video."""
    assert isinstance(classify_item({"id": "x", "viewCount": 10}), Unrecognized)

    result = classify_item({"id": "x", "viewCount": 10, "type": "video"})
    assert isinstance(result, ContentItem)
    assert result.views == 10


@pytest.mark.unit
def test_nested_content_list_is_a_batch():
    result = classify_item({"tweets": [{"id": "t1", "favorite_count": 3}, {"id": "t2", "retweet_count": 1}]})

    assert isinstance(result, ContentBatch)
    assert [item.external_id for item in result.items] == ["t1", "t2"]


@pytest.mark.unit
def test_profile_with_nested_posts():
    """Instagram-style profile with latestPosts."""
    item = {
        "username": "alice",
        "followersCount": "1.5K",
        "latestPosts": [
            {"id": "p1", "likesCount": 10, "commentsCount": 1, "caption": "#a"},
            {"id": "p2", "likesCount": 20, "commentsCount": 2},
        ],
    }

    profile = classify_item(item)

    assert isinstance(profile, ProfileRecord)
    assert profile.followers == 1500
    assert [p.external_id for p in profile.posts] == ["p1", "p2"]


@pytest.mark.unit
@pytest.mark.parametrize("item", [None, "string", 42, ["list"]])
def test_non_mapping_items_are_unrecognized(item):
    assert isinstance(classify_item(item), Unrecognized)


# ==============================================================================
# Parsing
# ==============================================================================

@pytest.mark.unit
@pytest.mark.parametrize(
    "value,expected",
    [
        (1520, 1520),
        (12.7, 12),
        ("3,400", 3400),
        ("1.5K", 1500),
        ("2.1M", 2_100_000),
        ("1B", 1_000_000_000),
        ("12 likes", 12),
        ("", 0),
        ("n/a", 0),
        (None, 0),
        (True, 0),
        ([1, 2], 0),
        (-5, 0),
        (float("nan"), 0),
        (float("inf"), 0),
    ],
)
def test_parse_count(value, expected):
    assert parse_count(value) == expected


@pytest.mark.unit
@pytest.mark.parametrize(
    "value,expected",
    [
        ("PT5M13S", 313),
        ("PT1H", 3600),
        ("1:23:45", 5025),
        ("5:13", 313),
        (42, 42),
        ("42", 42),
        ("", None),
        (None, None),
        ("soon", None),
        (float("nan"), None),
        ("inf", None),
    ],
)
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.unit
def test_parse_timestamp_formats():
    expected = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    assert parse_timestamp(1_700_000_000) == expected
    assert parse_timestamp(1_700_000_000_000) == expected
    assert parse_timestamp("1700000000") == expected
    assert parse_timestamp("2023-11-14T22:13:20Z") == expected
    assert parse_timestamp("2023-11-14T22:13:20") == expected
    assert parse_timestamp("Tue Nov 14 22:13:20 +0000 2023") == expected


@pytest.mark.unit
def test_parse_relative_timestamp():
    now = datetime(2026, 1, 10, tzinfo=timezone.utc)

    assert parse_timestamp("3 days ago", now) == now - timedelta(days=3)
    assert parse_timestamp("Streamed 2 weeks ago", now) == now - timedelta(weeks=2)
    assert parse_timestamp("1 hour ago", now) == now - timedelta(hours=1)


@pytest.mark.unit
@pytest.mark.parametrize("value", [None, "", "yesterday-ish", True])
def test_parse_timestamp_unparseable(value):
    assert parse_timestamp(value) is None


@pytest.mark.unit
@pytest.mark.parametrize(
    "raw,expected",
    [
        ("@alice", "alice"),
        ("  alice ", "alice"),
        ("https://www.tiktok.com/@alice", "alice"),
        ("https://www.instagram.com/alice/", "alice"),
    ],
)
def test_clean_handle(raw, expected):
    assert clean_handle(raw) == expected


# ==============================================================================
# Normalization
# ==============================================================================

@pytest.mark.unit
def test_normalize_dedupes_by_id():
    items = [
        profile_item("alice"),
        video_item("v1", likes=1),
        video_item("v1", likes=999),
        {"videos": [video_item("v2", likes=2), video_item("v1", likes=3)]},
    ]

    profile, posts = normalize_items(items, "alice")

    assert profile.handle == "alice"
    assert [p.external_id for p in posts] == ["v1", "v2"]
    assert posts[0].likes == 1


@pytest.mark.unit
def test_normalize_drops_reposts():
    items = [
        {"id": "t1", "favorite_count": 5, "full_text": "original"},
        {"id": "t2", "favorite_count": 9, "full_text": "RT @bob: something"},
        {"id": "t3", "favorite_count": 9, "retweeted_status": {"id": "x"}},
    ]

    _, posts = normalize_items(items, "alice")

    assert [p.external_id for p in posts] == ["t1"]


@pytest.mark.unit
def test_normalize_uses_embedded_author_profile():
    """Content items carrying a channel block supply the profile."""
    items = [
        {
            "id": "yt1",
            "type": "video",
            "viewCount": 500,
            "likes": 10,
            "aboutChannelInfo": {"channelName": "Alice TV", "numberOfSubscribers": "12K"},
        }
    ]

    profile, posts = normalize_items(items, "@alicetv")

    assert profile.followers == 12_000
    assert profile.display_name == "Alice TV"
    assert profile.handle == "alicetv"
    assert len(posts) == 1


@pytest.mark.unit
def test_normalize_falls_back_to_minimal_profile():
    profile, posts = normalize_items([video_item("v1", likes=1)], "@alice")

    assert profile == ProfileRecord(handle="alice", display_name="alice")
    assert len(posts) == 1


@pytest.mark.unit
def test_normalize_survives_non_finite_counters():
    """NaN and Infinity literals in a JSON payload read as zero."""
    item = profile_item("alice", followers=float("nan"), following_count=float("inf"))

    profile, _ = normalize_items([item, video_item("v1", likes=float("nan"), views=5)], "alice")

    assert profile.followers == 0
    assert profile.following == 0


@pytest.mark.unit
def test_normalize_nothing_recognizable():
    assert normalize_items([{"foo": "bar"}, "junk"], "alice") == (None, [])


# ==============================================================================
# Derived metrics
# ==============================================================================

@pytest.mark.unit
def test_engagement_rate_scenario():
    """likes 10/20/30, comments 1/2/3, shares 0, followers 100 -> 22.0."""
    profile, posts = normalize_items(scrape_items(followers=100), "creator")

    assert compute_engagement_rate(posts, profile.followers) == 22.0


@pytest.mark.unit
def test_engagement_falls_back_to_views():
    posts = [ContentItem("a", views=100), ContentItem("b", views=300)]

    assert compute_engagement_rate(posts, 1000) == 20.0


@pytest.mark.unit
def test_engagement_zero_followers_and_no_posts():
    assert compute_engagement_rate([ContentItem("a", likes=3)], 0) == 300.0
    assert compute_engagement_rate([], 100) == 0.0


@pytest.mark.unit
def test_engagement_rounds_to_two_decimals():
    posts = [ContentItem("a", likes=1), ContentItem("b", likes=1), ContentItem("c", likes=0)]

    assert compute_engagement_rate(posts, 3) == 22.22


@pytest.mark.unit
def test_top_hashtags_frequency_and_tie_order():
    captions = ["#b #a", "#A #c", "#c #d", "no tags", None]

    assert extract_top_hashtags(captions) == ["a", "c", "b", "d"]


@pytest.mark.unit
def test_top_hashtags_limited_to_ten():
    captions = [" ".join(f"#t{i}" for i in range(15))]

    assert extract_top_hashtags(captions) == [f"t{i}" for i in range(10)]


@pytest.mark.unit
def test_averages_and_recent_summary():
    old = datetime(2025, 1, 1, tzinfo=timezone.utc)
    new = datetime(2025, 2, 1, tzinfo=timezone.utc)
    posts = [
        ContentItem("old", likes=10, comments=2, views=100, posted_at=old),
        ContentItem("new", likes=20, comments=4, views=300, posted_at=new),
        ContentItem("undated", likes=0),
    ]

    assert compute_averages(posts[:2]) == {"averageLikes": 15, "averageComments": 3, "averageViews": 200}
    assert [s["id"] for s in summarize_recent(posts)] == ["new", "old", "undated"]
    assert summarize_recent(posts, limit=1)[0]["postedAt"] == new.isoformat()


@pytest.mark.unit
def test_build_scrape_result():
    profile, posts = normalize_items(scrape_items(followers=100), "creator")
    scraped_at = datetime(2026, 1, 1, tzinfo=timezone.utc)

    result = build_scrape_result(profile, posts, scraped_at, source_variant="handles")

    assert result.engagement_rate == 22.0
    assert result.top_hashtags == ["fun", "travel", "food"]
    assert result.scraped_at == scraped_at
    assert result.source_variant == "handles"
    assert result.averages["averageLikes"] == 20
