"""Tests for the TikTok OAuth client against a mocked HTTP transport."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from models.social_account import Platform
from services.errors import CredentialRefreshFailure, UpstreamError, UpstreamTimeout
from services.tiktok_service import (
    TIKTOK_SCOPES,
    TikTokOAuthClient,
    generate_oauth_state,
    verify_oauth_state,
)


def _client(handler, **kwargs) -> TikTokOAuthClient:
    return TikTokOAuthClient(
        client_key=kwargs.pop("client_key", "key-1"),
        client_secret="secret-1",
        redirect_uri="https://app.example.com/callback",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


TOKEN_BODY = {
    "access_token": "act.new",
    "refresh_token": "rft.new",
    "expires_in": 3600,
    "open_id": "open-1",
    "scope": "user.info.basic,video.list",
}


# ==============================================================================
# Authorization URL + state
# ==============================================================================

@pytest.mark.unit
def test_build_auth_url():
    client = _client(lambda r: httpx.Response(200))

    url = client.build_auth_url(state="abc")
    query = parse_qs(urlparse(url).query)

    assert url.startswith("https://www.tiktok.com/v2/auth/authorize/")
    assert query["client_key"] == ["key-1"]
    assert query["scope"] == [",".join(TIKTOK_SCOPES)]
    assert query["state"] == ["abc"]
    assert query["redirect_uri"] == ["https://app.example.com/callback"]


@pytest.mark.unit
def test_build_auth_url_requires_client_key():
    with pytest.raises(ValueError):
        _client(lambda r: httpx.Response(200), client_key="").build_auth_url()


@pytest.mark.unit
def test_oauth_state_is_single_use():
    state = generate_oauth_state(Platform.TIKTOK)

    assert verify_oauth_state(state, Platform.TIKTOK, "owner-1") is True
    assert verify_oauth_state(state, Platform.TIKTOK, "owner-1") is False
    assert verify_oauth_state("never-issued", Platform.TIKTOK, "owner-1") is False


@pytest.mark.unit
def test_oauth_state_bound_to_platform():
    state = generate_oauth_state(Platform.TIKTOK)

    assert verify_oauth_state(state, Platform.YOUTUBE, "owner-1") is False
    # a rejected state is still consumed
    assert verify_oauth_state(state, Platform.TIKTOK, "owner-1") is False


@pytest.mark.unit
def test_oauth_state_bound_to_owner():
    mine = generate_oauth_state(Platform.TIKTOK, owner_id="owner-1")
    theirs = generate_oauth_state(Platform.TIKTOK, owner_id="owner-1")

    assert verify_oauth_state(theirs, Platform.TIKTOK, "owner-2") is False
    assert verify_oauth_state(mine, Platform.TIKTOK, "owner-1") is True


# ==============================================================================
# Token endpoint
# ==============================================================================

@pytest.mark.unit
async def test_exchange_code():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=TOKEN_BODY)

    before = datetime.now(timezone.utc)
    grant = await _client(handler).exchange_code("code-1")

    form = _form(seen[0])
    assert seen[0].url.path == "/v2/oauth/token/"
    assert form["grant_type"] == "authorization_code"
    assert form["code"] == "code-1"
    assert form["client_key"] == "key-1"
    assert grant.access_token == "act.new"
    assert grant.refresh_token == "rft.new"
    assert grant.open_id == "open-1"
    assert 3590 <= (grant.expires_at - before).total_seconds() <= 3610


@pytest.mark.unit
async def test_exchange_code_accepts_nested_grant():
    grant = await _client(lambda r: httpx.Response(200, json={"data": TOKEN_BODY})).exchange_code("c")

    assert grant.access_token == "act.new"


@pytest.mark.unit
async def test_exchange_code_rejected():
    body = {"error": "invalid_request", "error_description": "Code expired"}
    client = _client(lambda r: httpx.Response(400, json=body))

    with pytest.raises(UpstreamError, match="Code expired"):
        await client.exchange_code("old")


@pytest.mark.unit
async def test_refresh_sends_refresh_grant():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=TOKEN_BODY)

    grant = await _client(handler).refresh_access_token("rft.old")

    assert _form(seen[0])["grant_type"] == "refresh_token"
    assert _form(seen[0])["refresh_token"] == "rft.old"
    assert grant.refresh_token == "rft.new"


@pytest.mark.unit
async def test_refresh_error_body_is_a_refresh_failure():
    """A 200 carrying an error is still a failed refresh."""
    client = _client(lambda r: httpx.Response(200, json={"error": "invalid_grant"}))

    with pytest.raises(CredentialRefreshFailure, match="invalid_grant"):
        await client.refresh_access_token("rft.old")


@pytest.mark.unit
async def test_refresh_timeout_is_a_refresh_failure():
    def handler(request):
        raise httpx.ConnectTimeout("slow", request=request)

    with pytest.raises(CredentialRefreshFailure):
        await _client(handler).refresh_access_token("rft.old")


@pytest.mark.unit
async def test_revoke():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={})

    await _client(handler).revoke("act.live")

    assert seen[0].url.path == "/v2/oauth/revoke/"
    assert _form(seen[0])["token"] == "act.live"


@pytest.mark.unit
async def test_revoke_failure():
    with pytest.raises(UpstreamError):
        await _client(lambda r: httpx.Response(500)).revoke("act.live")


# ==============================================================================
# Authenticated reads
# ==============================================================================

@pytest.mark.unit
async def test_fetch_profile():
    seen: list[httpx.Request] = []
    body = {
        "data": {
            "user": {
                "open_id": "open-1",
                "username": "alice",
                "display_name": "Alice",
                "avatar_url": "https://cdn.example.com/a.jpg",
                "follower_count": 500,
                "following_count": 3,
                "video_count": 7,
                "is_verified": True,
            }
        },
        "error": {"code": "ok", "message": ""},
    }

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=body)

    profile = await _client(handler).fetch_profile("act.live")

    assert seen[0].headers["Authorization"] == "Bearer act.live"
    assert "follower_count" in seen[0].url.params["fields"]
    assert profile.handle == "alice"
    assert profile.external_user_id == "open-1"
    assert profile.followers == 500
    assert profile.content_count == 7
    assert profile.is_verified is True


@pytest.mark.unit
async def test_fetch_profile_api_error():
    body = {"error": {"code": "access_token_invalid", "message": "The access token is invalid"}}
    client = _client(lambda r: httpx.Response(401, json=body))

    with pytest.raises(UpstreamError, match="access token is invalid"):
        await client.fetch_profile("act.dead")


@pytest.mark.unit
async def test_fetch_profile_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(UpstreamTimeout):
        await _client(handler).fetch_profile("act.live")


@pytest.mark.unit
async def test_fetch_content():
    seen: list[httpx.Request] = []
    body = {
        "data": {
            "videos": [
                {
                    "id": "7001",
                    "create_time": 1_700_000_000,
                    "video_description": "#dance",
                    "like_count": 5,
                    "comment_count": 1,
                    "share_count": 2,
                    "view_count": 100,
                    "duration": 15,
                    "share_url": "https://www.tiktok.com/@alice/video/7001",
                    "cover_image_url": "https://cdn.example.com/c.jpg",
                },
                "not-a-video",
            ],
            "has_more": False,
        },
        "error": {"code": "ok"},
    }

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=body)

    items = await _client(handler).fetch_content("act.live", max_count=50)

    assert json.loads(seen[0].content) == {"max_count": 20}
    assert len(items) == 1
    video = items[0]
    assert video.external_id == "7001"
    assert video.media_type == "video"
    assert (video.likes, video.comments, video.shares, video.views) == (5, 1, 2, 100)
    assert video.duration_seconds == 15
    assert video.thumbnail_url == "https://cdn.example.com/c.jpg"
