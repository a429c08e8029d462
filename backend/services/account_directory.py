"""Account-management operations exposed to collaborators.

Read connected accounts, link a public or OAuth account, and disconnect an
account together with its content posts.
"""

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models.content_post import ContentPost
from models.social_account import Platform, SocialAccount
from services.credential_vault import CredentialVault
from services.errors import AccountAlreadyLinked, AccountNotFound, OwnerNotEligible, SyncError
from services.owner_directory import OwnerDirectory
from services.profile_scraper import ProfileScraperAdapter, profile_url
from services.record_upserter import RecordUpserter
from services.scrape_cache import ScrapeCache
from services.scrape_normalizer import ScrapeResult, build_scrape_result, clean_handle, dedupe_posts
from services.sync_scheduler import apply_scrape_result
from services.tiktok_service import OAuthProvider

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def get_connected_accounts(db: AsyncSession, owner_id: str) -> list[SocialAccount]:
    """All non-deleted accounts of an owner (active or not), by platform."""
    result = await db.execute(
        select(SocialAccount)
        .where(SocialAccount.owner_id == owner_id, SocialAccount.deleted_at.is_(None))
        .order_by(SocialAccount.platform)
    )
    return list(result.scalars())


async def _current_account(db: AsyncSession, owner_id: str, platform: Platform) -> SocialAccount | None:
    result = await db.execute(
        select(SocialAccount).where(
            SocialAccount.owner_id == owner_id,
            SocialAccount.platform == platform,
            SocialAccount.deleted_at.is_(None),
        )
    )
    return result.scalar_one_or_none()


class AccountDirectory:
    """Links and unlinks social accounts for owners."""

    def __init__(
        self,
        owners: OwnerDirectory,
        scrapers: Mapping[Platform, ProfileScraperAdapter],
        providers: Mapping[Platform, OAuthProvider],
        vault: CredentialVault,
        cache: ScrapeCache,
        upserter: RecordUpserter | None = None,
        max_content_items: int = 25,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.owners = owners
        self.scrapers = dict(scrapers)
        self.providers = dict(providers)
        self.vault = vault
        self.cache = cache
        self.upserter = upserter or RecordUpserter()
        self.max_content_items = max_content_items
        self._clock = clock

    async def _check_owner(self, owner_id: str) -> None:
        if not await self.owners.is_eligible(owner_id):
            raise OwnerNotEligible(f"Owner {owner_id} may not hold a creator account")

    async def link_public_account(
        self,
        db: AsyncSession,
        owner_id: str,
        platform: Platform,
        handle: str,
    ) -> SocialAccount:
        """Scrape a public profile and create or refresh the owner's account for it."""
        await self._check_owner(owner_id)
        scraper = self.scrapers.get(platform)
        if scraper is None:
            raise SyncError(f"Scraping is not configured for {platform.value}")

        username = clean_handle(handle)
        result = await scraper.scrape(username)

        account = await _current_account(db, owner_id, platform)
        if account is None:
            account = SocialAccount(owner_id=owner_id, platform=platform)
            db.add(account)

        account.external_handle = result.profile.handle or username
        account.external_user_id = result.profile.external_user_id or account.external_handle
        account.profile_url = profile_url(platform, account.external_handle)
        # Public links never carry credentials
        account.access_token = None
        account.refresh_token = None
        account.token_expires_at = None
        self._reactivate(account)

        return await self._persist(db, account, result, "apify")

    async def link_oauth_account(
        self,
        db: AsyncSession,
        owner_id: str,
        platform: Platform,
        code: str,
    ) -> SocialAccount:
        """Complete an OAuth grant and store the encrypted credentials."""
        await self._check_owner(owner_id)
        provider = self.providers.get(platform)
        if provider is None:
            raise SyncError(f"OAuth is not supported for {platform.value}")

        grant = await provider.exchange_code(code)
        profile = await provider.fetch_profile(grant.access_token)
        content = await provider.fetch_content(grant.access_token, self.max_content_items)
        posts = dedupe_posts(item for item in content if not item.is_repost)
        result = build_scrape_result(profile, posts, scraped_at=self._clock(), source_variant="oauth")

        account = await _current_account(db, owner_id, platform)
        if account is None:
            account = SocialAccount(owner_id=owner_id, platform=platform)
            db.add(account)

        account.external_user_id = profile.external_user_id or grant.open_id or profile.handle
        account.external_handle = profile.handle or account.external_user_id
        account.profile_url = profile.external_url or profile_url(platform, account.external_handle)
        account.access_token = self.vault.encrypt(grant.access_token)
        account.refresh_token = self.vault.encrypt_optional(grant.refresh_token)
        account.token_expires_at = grant.expires_at
        self._reactivate(account)

        return await self._persist(db, account, result, "oauth")

    def _reactivate(self, account: SocialAccount) -> None:
        account.is_active = True
        account.deactivation_reason = None
        account.deactivated_at = None

    async def _persist(
        self, db: AsyncSession, account: SocialAccount, result: ScrapeResult, method: str
    ) -> SocialAccount:
        label = f"{account.platform.value} account @{account.external_handle}"
        try:
            await db.flush()
            await self.upserter.upsert(db, account.id, result.posts)
            apply_scrape_result(account, result, method, self._clock())
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise AccountAlreadyLinked(f"{label} is already linked") from e
        except Exception:
            await db.rollback()
            raise

        await db.refresh(account)
        logger.info(
            f"Linked {account.platform.value} @{account.external_handle} for owner {account.owner_id} "
            f"via {method}: {account.followers_count} followers"
        )
        return account

    async def disconnect(self, db: AsyncSession, account_id: str) -> None:
        """Delete an account and all its content posts."""
        account = await db.get(SocialAccount, account_id)
        if account is None or account.deleted_at is not None:
            raise AccountNotFound(f"Social account {account_id} not found")

        platform = account.platform
        handle = account.external_handle
        access_token = account.access_token

        await db.execute(delete(ContentPost).where(ContentPost.account_id == account_id))
        await db.delete(account)
        await db.commit()

        self.cache.invalidate(f"{platform.value}:{clean_handle(handle)}")

        provider = self.providers.get(platform)
        if access_token and provider is not None:
            try:
                await provider.revoke(self.vault.decrypt(access_token))
            except SyncError as e:
                logger.warning(f"Failed to revoke {platform.value} credentials for account {account_id}: {e}")

        logger.info(f"Disconnected {platform.value} @{handle} (account {account_id})")
