"""Shared pytest configuration and fixtures for the test suite.

This module centralizes:
- Environment + path setup (must run before config/database are imported)
- Pytest markers for test categorization (unit, integration)
- An in-memory async SQLite database per test
- Fakes for the scraping backend, the OAuth provider and the clock
"""
from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# ==============================================================================
# Environment + Path Setup
# ==============================================================================

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key-0123456789-abcdefghij"
os.environ["INTERNAL_API_KEY"] = "test-internal-key"
os.environ["APIFY_API_TOKEN"] = "test-apify-token"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["OWNER_DIRECTORY_URL"] = ""

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from models import Base, Platform, SocialAccount  # noqa: E402
from services.credential_vault import CredentialVault  # noqa: E402
from services.errors import CredentialRefreshFailure  # noqa: E402
from services.scrape_normalizer import ContentItem, ProfileRecord  # noqa: E402
from services.tiktok_service import TokenGrant  # noqa: E402

TEST_SECRET = os.environ["ENCRYPTION_KEY"]
T0 = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


# ==============================================================================
# Pytest Configuration
# ==============================================================================

def pytest_configure(config):
    """Register custom markers for test categorization."""
    config.addinivalue_line(
        "markers",
        "unit: Fast tests with no I/O (fakes only)",
    )
    config.addinivalue_line(
        "markers",
        "integration: Tests hitting the in-memory database or the ASGI app",
    )


# ==============================================================================
# Database Fixtures
# ==============================================================================

@pytest.fixture
async def engine():
    """Fresh in-memory database with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(scope="session")
def vault():
    return CredentialVault(TEST_SECRET)


# ==============================================================================
# Fakes
# ==============================================================================

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


class FakeRunner:
    """Stands in for ApifyClient.

    ``responses`` are consumed one per call (a list of items or an exception
    to raise); ``handler(actor_id, run_input)`` is used once they run out.
    """

    def __init__(self, responses=None, handler=None):
        self.responses = list(responses or [])
        self.handler = handler
        self.calls: list[tuple[str, dict]] = []

    async def run_actor(self, actor_id, run_input):
        self.calls.append((actor_id, run_input))
        if self.responses:
            response = self.responses.pop(0)
        elif self.handler is not None:
            response = self.handler(actor_id, run_input)
        else:
            response = []
        if isinstance(response, Exception):
            raise response
        return response


class FakeOAuthProvider:
    """Stands in for TikTokOAuthClient."""

    def __init__(
        self,
        profile: ProfileRecord | None = None,
        content: list[ContentItem] | None = None,
        grant: TokenGrant | None = None,
        refresh_error: Exception | None = None,
        revoke_error: Exception | None = None,
    ):
        self.profile = profile or ProfileRecord(
            handle="creator", external_user_id="open-123", display_name="Creator", followers=1000
        )
        self.content = content or []
        self.grant = grant or TokenGrant(
            access_token="new-access",
            refresh_token="new-refresh",
            expires_at=T0 + timedelta(days=1),
            open_id="open-123",
        )
        self.refresh_error = refresh_error
        self.revoke_error = revoke_error
        self.exchanged: list[str] = []
        self.refresh_calls: list[str] = []
        self.revoked: list[str] = []
        self.profile_calls: list[str] = []

    async def exchange_code(self, code):
        self.exchanged.append(code)
        return self.grant

    async def refresh_access_token(self, refresh_token):
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.grant

    async def revoke(self, access_token):
        self.revoked.append(access_token)
        if self.revoke_error is not None:
            raise self.revoke_error

    async def fetch_profile(self, access_token):
        self.profile_calls.append(access_token)
        return self.profile

    async def fetch_content(self, access_token, max_count=20):
        return list(self.content)[:max_count]


@pytest.fixture
def failing_provider():
    return FakeOAuthProvider(refresh_error=CredentialRefreshFailure("invalid_grant"))


# ==============================================================================
# Sample Payloads
# ==============================================================================

def profile_item(handle="creator", followers=100, **extra) -> dict:
    return {
        "username": handle,
        "follower_count": followers,
        "following_count": 10,
        "video_count": 3,
        "display_name": handle.title(),
        "bio_description": "hello",
        **extra,
    }


def video_item(video_id, likes=0, comments=0, shares=0, views=0, caption="", **extra) -> dict:
    return {
        "id": video_id,
        "like_count": likes,
        "comment_count": comments,
        "share_count": shares,
        "view_count": views,
        "video_description": caption,
        "create_time": 1_700_000_000,
        **extra,
    }


def scrape_items(handle="creator", followers=100) -> list[dict]:
    return [
        profile_item(handle, followers),
        video_item("v1", likes=10, comments=1, caption="#fun day"),
        video_item("v2", likes=20, comments=2, caption="#fun #travel"),
        video_item("v3", likes=30, comments=3, caption="#food"),
    ]


async def make_account(db, **overrides) -> SocialAccount:
    values = {
        "owner_id": "owner-1",
        "platform": Platform.INSTAGRAM,
        "external_user_id": "ext-1",
        "external_handle": "creator",
    }
    values.update(overrides)
    account = SocialAccount(**values)
    db.add(account)
    await db.commit()
    return account
