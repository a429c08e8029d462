"""Social accounts router - collaborator-facing account sync API.

Lists connected accounts, links public and OAuth accounts, disconnects
accounts and exposes manual triggers for the two scheduled jobs. Every
endpoint requires the internal X-API-Key.
"""

import logging
from datetime import datetime
from typing import Annotated, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from middleware.auth import verify_api_key
from middleware.rate_limit import MANUAL_TRIGGER_LIMIT, limiter
from models.social_account import Platform, SocialAccount
from services.account_directory import get_connected_accounts
from services.errors import (
    AccountAlreadyLinked,
    AccountNotFound,
    OwnerNotEligible,
    SyncError,
    UpstreamNotFound,
    UpstreamTimeout,
)
from services.runtime import SyncRuntime
from services.tiktok_service import generate_oauth_state, verify_oauth_state

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/social-accounts",
    tags=["social-accounts"],
    dependencies=[Depends(verify_api_key)],
)


def get_runtime(request: Request) -> SyncRuntime:
    return request.app.state.runtime


# Request/Response schemas
class SocialAccountResponse(BaseModel):
    id: str
    owner_id: str
    platform: Platform
    external_user_id: str
    external_handle: str
    display_name: str | None
    profile_url: str | None
    avatar_url: str | None
    is_active: bool
    deactivation_reason: str | None
    has_credential: bool
    token_expires_at: datetime | None
    last_synced_at: datetime | None
    followers_count: int
    following_count: int
    content_count: int
    engagement_rate: float
    metadata: dict

    @classmethod
    def from_account(cls, account: SocialAccount) -> "SocialAccountResponse":
        return cls(
            id=account.id,
            owner_id=account.owner_id,
            platform=account.platform,
            external_user_id=account.external_user_id,
            external_handle=account.external_handle,
            display_name=account.display_name,
            profile_url=account.profile_url,
            avatar_url=account.avatar_url,
            is_active=account.is_active,
            deactivation_reason=account.deactivation_reason,
            has_credential=account.has_credential,
            token_expires_at=account.token_expires_at,
            last_synced_at=account.last_synced_at,
            followers_count=account.followers_count or 0,
            following_count=account.following_count or 0,
            content_count=account.content_count or 0,
            engagement_rate=account.engagement_rate or 0.0,
            metadata=account.profile_metadata or {},
        )


class LinkAccountRequest(BaseModel):
    owner_id: str = Field(min_length=1)
    platform: Platform
    handle: str = Field(min_length=1, max_length=255)


class OAuthCallbackRequest(BaseModel):
    owner_id: str = Field(min_length=1)
    code: str = Field(min_length=1)
    state: str = Field(min_length=1)


class AuthorizeResponse(BaseModel):
    authorization_url: str


def raise_for_sync_error(exc: SyncError) -> NoReturn:
    """Translate a core error into the matching HTTP error."""
    if isinstance(exc, (AccountNotFound, UpstreamNotFound)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, OwnerNotEligible):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, AccountAlreadyLinked):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, UpstreamTimeout):
        code = status.HTTP_504_GATEWAY_TIMEOUT
    else:
        code = status.HTTP_502_BAD_GATEWAY
    raise HTTPException(status_code=code, detail=str(exc)) from exc


@router.get("", response_model=list[SocialAccountResponse])
async def list_connected_accounts(
    owner_id: Annotated[str, Query(min_length=1)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Get all connected social accounts for an owner."""
    accounts = await get_connected_accounts(db, owner_id)
    return [SocialAccountResponse.from_account(a) for a in accounts]


@router.post("/link", response_model=SocialAccountResponse, status_code=status.HTTP_201_CREATED)
async def link_public_account(
    body: LinkAccountRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    runtime: Annotated[SyncRuntime, Depends(get_runtime)],
):
    """Link a public (scrape-only) account by handle."""
    try:
        account = await runtime.accounts.link_public_account(db, body.owner_id, body.platform, body.handle)
    except SyncError as e:
        logger.warning(f"Linking {body.platform.value} @{body.handle} for {body.owner_id} failed: {e}")
        raise_for_sync_error(e)
    return SocialAccountResponse.from_account(account)


@router.get("/oauth/{platform}/authorize", response_model=AuthorizeResponse)
async def oauth_authorize(
    platform: Platform,
    runtime: Annotated[SyncRuntime, Depends(get_runtime)],
    owner_id: Annotated[str | None, Query(min_length=1)] = None,
):
    """Get the provider authorization URL (with a fresh state token)."""
    provider = runtime.providers.get(platform)
    if provider is None or not hasattr(provider, "build_auth_url"):
        raise HTTPException(status_code=400, detail=f"OAuth is not supported for {platform.value}")
    try:
        state = generate_oauth_state(platform, owner_id)
        return AuthorizeResponse(authorization_url=provider.build_auth_url(state=state))
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/oauth/{platform}/callback", response_model=SocialAccountResponse)
async def oauth_callback(
    platform: Platform,
    body: OAuthCallbackRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    runtime: Annotated[SyncRuntime, Depends(get_runtime)],
):
    """Complete the OAuth flow relayed by the product backend."""
    if not verify_oauth_state(body.state, platform, body.owner_id):
        raise HTTPException(status_code=400, detail="Invalid or expired OAuth state")
    try:
        account = await runtime.accounts.link_oauth_account(db, body.owner_id, platform, body.code)
    except SyncError as e:
        logger.warning(f"OAuth link for {platform.value} owner {body.owner_id} failed: {e}")
        raise_for_sync_error(e)
    return SocialAccountResponse.from_account(account)


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect_account(
    account_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    runtime: Annotated[SyncRuntime, Depends(get_runtime)],
):
    """Disconnect an account and delete its content posts."""
    try:
        await runtime.accounts.disconnect(db, account_id)
    except SyncError as e:
        raise_for_sync_error(e)


@router.post("/sync")
@limiter.limit(MANUAL_TRIGGER_LIMIT)
async def trigger_sync(
    request: Request,  # Required for rate limiting - must be named 'request'
    runtime: Annotated[SyncRuntime, Depends(get_runtime)],
):
    """Run the data sync now (no-op report if one is already running)."""
    report = await runtime.sync_scheduler.trigger_manual_sync()
    return report.to_dict()


@router.post("/tokens/refresh")
@limiter.limit(MANUAL_TRIGGER_LIMIT)
async def trigger_token_refresh(
    request: Request,  # Required for rate limiting - must be named 'request'
    runtime: Annotated[SyncRuntime, Depends(get_runtime)],
):
    """Refresh expiring credentials now (no-op report if one is already running)."""
    report = await runtime.credential_manager.trigger_manual_refresh()
    return report.to_dict()


@router.get("/cache/stats")
async def scrape_cache_stats(runtime: Annotated[SyncRuntime, Depends(get_runtime)]):
    """Scrape cache size and hit/miss counters."""
    return runtime.cache.get_stats()
