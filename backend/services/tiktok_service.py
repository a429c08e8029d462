"""TikTok Open API v2 OAuth client.

Handles the authorization-code flow, token refresh/revoke and the
authenticated profile + video fetches used for OAuth-linked accounts.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol
from urllib.parse import urlencode

import httpx

from models.social_account import Platform
from services.errors import CredentialRefreshFailure, UpstreamError, UpstreamTimeout
from services.scrape_normalizer import ContentItem, ProfileRecord, build_content, build_profile

logger = logging.getLogger(__name__)

TIKTOK_API_BASE = "https://open.tiktokapis.com"
TIKTOK_AUTH_URL = "https://www.tiktok.com/v2/auth/authorize/"
TIKTOK_SCOPES = ("user.info.basic", "user.info.profile", "user.info.stats", "video.list")

USER_FIELDS = (
    "open_id", "union_id", "username", "avatar_url", "display_name", "bio_description",
    "profile_deep_link", "is_verified", "follower_count", "following_count", "likes_count", "video_count",
)
VIDEO_FIELDS = (
    "id", "create_time", "cover_image_url", "share_url", "video_description", "duration",
    "title", "like_count", "comment_count", "share_count", "view_count",
)

FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


@dataclass(frozen=True)
class TokenGrant:
    """Plaintext tokens as issued by the provider (never persisted as-is)."""
    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None
    open_id: Optional[str] = None
    scope: Optional[str] = None


class OAuthProvider(Protocol):
    async def exchange_code(self, code: str) -> TokenGrant: ...

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant: ...

    async def revoke(self, access_token: str) -> None: ...

    async def fetch_profile(self, access_token: str) -> ProfileRecord: ...

    async def fetch_content(self, access_token: str, max_count: int = 20) -> list[ContentItem]: ...


# OAuth State Management (in-memory, expires after 10 minutes)
@dataclass(frozen=True)
class OAuthState:
    platform: Platform
    owner_id: Optional[str]
    expires_at: datetime


_oauth_states: dict[str, OAuthState] = {}


def generate_oauth_state(platform: Platform = Platform.TIKTOK, owner_id: Optional[str] = None) -> str:
    """Generate a state token for OAuth CSRF protection.

    The token is bound to the platform it was issued for and, when given,
    to the owner who started the flow.
    """
    state = secrets.token_urlsafe(24)
    now = datetime.now(timezone.utc)
    _oauth_states[state] = OAuthState(platform, owner_id, now + timedelta(minutes=10))
    for key in [k for k, v in _oauth_states.items() if v.expires_at < now]:
        _oauth_states.pop(key, None)
    return state


def verify_oauth_state(state: str, platform: Platform, owner_id: str) -> bool:
    """Consume a state token; False if unknown, expired or issued to another flow."""
    issued = _oauth_states.pop(state, None)
    if issued is None or datetime.now(timezone.utc) >= issued.expires_at:
        return False
    if issued.platform != platform:
        return False
    return issued.owner_id is None or issued.owner_id == owner_id


class TikTokOAuthClient:
    """OAuthProvider for TikTok."""

    def __init__(
        self,
        client_key: str,
        client_secret: str,
        redirect_uri: str,
        base_url: str = TIKTOK_API_BASE,
        timeout: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not client_key or not client_secret:
            logger.warning("TikTok client credentials are not configured")
        self.client_key = client_key
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def build_auth_url(self, state: Optional[str] = None) -> str:
        if not self.client_key:
            raise ValueError("TIKTOK_CLIENT_KEY not configured")
        params = {
            "client_key": self.client_key,
            "scope": ",".join(TIKTOK_SCOPES),
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "state": state or generate_oauth_state(),
        }
        return f"{TIKTOK_AUTH_URL}?{urlencode(params)}"

    async def _token_request(self, data: dict) -> TokenGrant:
        form = {"client_key": self.client_key, "client_secret": self.client_secret, **data}
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/v2/oauth/token/", data=form, headers=FORM_HEADERS
                )
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"TikTok token request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"TikTok token request failed: {e}") from e

        body = _json_or_empty(response)
        # v2 returns the grant at top level; older payloads nest it under "data"
        grant = body.get("data") if isinstance(body.get("data"), dict) else body
        if response.status_code >= 400 or _is_error(body.get("error")) or not grant.get("access_token"):
            description = body.get("error_description") or body.get("error") or f"HTTP {response.status_code}"
            raise UpstreamError(f"TikTok token request rejected: {description}")

        return TokenGrant(
            access_token=grant["access_token"],
            refresh_token=grant.get("refresh_token"),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(grant.get("expires_in") or 86400)),
            open_id=grant.get("open_id"),
            scope=grant.get("scope"),
        )

    async def exchange_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for tokens."""
        return await self._token_request({
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        })

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        try:
            return await self._token_request({
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            })
        except UpstreamError as e:
            raise CredentialRefreshFailure(f"Failed to refresh TikTok access token: {e}") from e

    async def revoke(self, access_token: str) -> None:
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/v2/oauth/revoke/",
                    data={
                        "client_key": self.client_key,
                        "client_secret": self.client_secret,
                        "token": access_token,
                    },
                    headers=FORM_HEADERS,
                )
        except httpx.HTTPError as e:
            raise UpstreamError(f"TikTok revoke failed: {e}") from e
        if response.status_code >= 400:
            raise UpstreamError(f"TikTok revoke failed: HTTP {response.status_code}")

    async def fetch_profile(self, access_token: str) -> ProfileRecord:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.base_url}/v2/user/info/",
                    params={"fields": ",".join(USER_FIELDS)},
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"TikTok user info timed out: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"TikTok user info failed: {e}") from e

        body = _json_or_empty(response)
        _raise_api_error(response, body, "user info")
        user = (body.get("data") or {}).get("user") or {}
        handle = user.get("username") or user.get("display_name") or user.get("open_id") or ""
        return build_profile(user, fallback_handle=handle)

    async def fetch_content(self, access_token: str, max_count: int = 20) -> list[ContentItem]:
        """Most recent videos, newest first. TikTok caps a page at 20."""
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/v2/video/list/",
                    params={"fields": ",".join(VIDEO_FIELDS)},
                    json={"max_count": min(max_count, 20)},
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"TikTok video list timed out: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"TikTok video list failed: {e}") from e

        body = _json_or_empty(response)
        _raise_api_error(response, body, "video list")
        videos = (body.get("data") or {}).get("videos") or []
        items = [build_content({**video, "type": "video"}) for video in videos if isinstance(video, dict)]
        return [item for item in items if item is not None]


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _raise_api_error(response: httpx.Response, body: dict, action: str) -> None:
    error = body.get("error")
    # Successful v2 responses carry {"error": {"code": "ok"}}
    if isinstance(error, dict) and error.get("code") not in (None, "ok"):
        raise UpstreamError(f"TikTok {action} failed: {error.get('message') or error.get('code')}")
    if response.status_code >= 400:
        raise UpstreamError(f"TikTok {action} failed: HTTP {response.status_code}")


def _is_error(error) -> bool:
    if isinstance(error, dict):
        return error.get("code") not in (None, "ok")
    return bool(error) and error != "ok"
