"""Scheduled re-sync of stale social accounts.

Selects active accounts whose data is older than the cache TTL and walks
them one at a time behind a fixed-interval gate. OAuth-backed accounts go
through their provider's authenticated API; everything else is scraped.
One account failing never stops the batch.
"""

import logging
import threading
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.social_account import Platform, SocialAccount
from services.credential_vault import CredentialVault
from services.errors import SyncError
from services.events import EventChannel, EventType, SyncEvent
from services.profile_scraper import ProfileScraperAdapter
from services.rate_gate import FixedIntervalGate
from services.record_upserter import RecordUpserter
from services.reports import SyncFailure, SyncReport
from services.run_guard import SingleFlight
from services.scrape_normalizer import (
    ScrapeResult,
    build_scrape_result,
    dedupe_posts,
    summarize_recent,
)
from services.tiktok_service import OAuthProvider

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def apply_scrape_result(
    account: SocialAccount,
    result: ScrapeResult,
    method: str,
    synced_at: datetime,
) -> None:
    """Copy profile metrics and normalized extras onto the account."""
    profile = result.profile
    account.followers_count = profile.followers
    account.following_count = profile.following
    account.content_count = profile.content_count or len(result.posts)
    account.engagement_rate = result.engagement_rate
    if profile.display_name:
        account.display_name = profile.display_name
    if profile.avatar_url:
        account.avatar_url = profile.avatar_url

    account.profile_metadata = {
        **(account.profile_metadata or {}),
        "bio": profile.bio,
        "isVerified": profile.is_verified,
        "isPrivate": profile.is_private,
        "externalUrl": profile.external_url,
        "topHashtags": result.top_hashtags,
        "recentContent": summarize_recent(result.posts),
        **result.averages,
        "scrapingMethod": method,
        "lastScrapedAt": result.scraped_at.isoformat(),
    }
    account.mark_synced(synced_at)


class SyncScheduler:
    """Top-level data sync orchestrator (one instance per process)."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        scrapers: Mapping[Platform, ProfileScraperAdapter],
        providers: Mapping[Platform, OAuthProvider],
        vault: CredentialVault,
        upserter: RecordUpserter | None = None,
        gate: FixedIntervalGate | None = None,
        events: EventChannel | None = None,
        staleness: timedelta = timedelta(days=7),
        max_content_items: int = 25,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self.scrapers = dict(scrapers)
        self.providers = dict(providers)
        self.vault = vault
        self.upserter = upserter or RecordUpserter()
        self.gate = gate or FixedIntervalGate(2.0)
        self.events = events
        self.staleness = staleness
        self.max_content_items = max_content_items
        self._clock = clock
        self.guard = SingleFlight("data-sync")
        self._stop = threading.Event()

    @property
    def is_running(self) -> bool:
        return self.guard.in_flight

    def request_stop(self) -> None:
        """Ask the current run to stop before its next account."""
        self._stop.set()

    async def select_stale(self, db: AsyncSession) -> list[SocialAccount]:
        cutoff = self._clock() - self.staleness
        result = await db.execute(
            select(SocialAccount)
            .where(
                SocialAccount.is_active.is_(True),
                SocialAccount.deleted_at.is_(None),
                or_(
                    SocialAccount.last_synced_at.is_(None),
                    SocialAccount.last_synced_at <= cutoff,
                ),
            )
            .order_by(SocialAccount.last_synced_at.is_not(None), SocialAccount.last_synced_at)
        )
        return list(result.scalars())

    async def run_once(self) -> SyncReport:
        """Sync every stale account once.

        Returns ``SyncReport(skipped=True)`` with zero counts when a previous
        run is still in flight.
        """
        with self.guard.hold() as acquired:
            if not acquired:
                logger.info("Data sync already running, skipping")
                return SyncReport(skipped=True)

            self._stop.clear()
            self.gate.reset()
            started = time.monotonic()
            report = SyncReport()

            async with self.session_factory() as db:
                accounts = [(a.id, a.platform) for a in await self.select_stale(db)]
            logger.info(f"Found {len(accounts)} accounts to sync")

            for account_id, platform in accounts:
                if self._stop.is_set():
                    logger.warning("Data sync stopped on request")
                    report.cancelled = True
                    break

                await self.gate.wait()
                try:
                    await self.sync_account(account_id)
                    report.success += 1
                except Exception as e:
                    report.failed += 1
                    report.failures.append(
                        SyncFailure(account_id, platform.value, str(e), type(e).__name__)
                    )
                    if isinstance(e, SyncError):
                        logger.error(f"Failed to sync {platform.value} for account {account_id}: {e}")
                    else:
                        logger.exception(f"Failed to sync {platform.value} for account {account_id}")

            report.duration_ms = int((time.monotonic() - started) * 1000)
            logger.info(
                f"Data sync completed in {report.duration_ms}ms - "
                f"Success: {report.success}, Failed: {report.failed}"
            )
            if self.events is not None:
                self.events.publish(SyncEvent(
                    type=EventType.SYNC_COMPLETED,
                    payload={
                        "success": report.success,
                        "failed": report.failed,
                        "cancelled": report.cancelled,
                    },
                ))
            return report

    async def trigger_manual_sync(self) -> SyncReport:
        logger.info("Manual data sync triggered")
        return await self.run_once()

    async def sync_account(self, account_id: str) -> None:
        """Fetch, persist and stamp one account. Nothing is committed on failure."""
        async with self.session_factory() as db:
            try:
                account = await db.get(SocialAccount, account_id)
                if account is None or not account.is_active or account.deleted_at is not None:
                    raise SyncError(f"Account {account_id} is no longer eligible for sync")

                result, method = await self.fetch(account)
                upserted = await self.upserter.upsert(db, account.id, result.posts)
                apply_scrape_result(account, result, method, self._clock())
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        logger.info(
            f"{account.platform.value} sync completed for account {account_id} via {method}: "
            f"{upserted.created} new posts, {upserted.updated} updated"
        )

    async def fetch(self, account: SocialAccount) -> tuple[ScrapeResult, str]:
        """Dispatch to the platform-appropriate path."""
        if account.has_credential:
            provider = self.providers.get(account.platform)
            if provider is None:
                raise SyncError(f"No OAuth provider configured for {account.platform.value}")
            access_token = self.vault.decrypt(account.access_token)
            profile = await provider.fetch_profile(access_token)
            content = await provider.fetch_content(access_token, self.max_content_items)
            posts = dedupe_posts(item for item in content if not item.is_repost)
            return build_scrape_result(profile, posts, scraped_at=self._clock(), source_variant="oauth"), "oauth"

        scraper = self.scrapers.get(account.platform)
        if scraper is None:
            raise SyncError(f"No scraper configured for {account.platform.value}")
        return await scraper.scrape(account.external_handle), "apify"
