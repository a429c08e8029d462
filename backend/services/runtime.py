"""Process-wide wiring of the sync subsystem.

Exactly one SyncRuntime is built per process (in the app lifespan) and
handed to the scheduled jobs and the routers, so the cache, guards and
event channel are shared instead of living in module globals.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import Settings
from models.social_account import Platform
from services.account_directory import AccountDirectory
from services.apify_client import ApifyClient
from services.credential_lifecycle import CredentialLifecycleManager
from services.credential_vault import CredentialVault
from services.events import EventChannel
from services.owner_directory import HttpOwnerDirectory, OwnerDirectory, StaticOwnerDirectory
from services.profile_scraper import ActorRunner, ProfileScraperAdapter
from services.rate_gate import FixedIntervalGate
from services.record_upserter import RecordUpserter
from services.scrape_cache import ScrapeCache
from services.sync_scheduler import SyncScheduler
from services.tiktok_service import OAuthProvider, TikTokOAuthClient

logger = logging.getLogger(__name__)


@dataclass
class SyncRuntime:
    cache: ScrapeCache
    events: EventChannel
    vault: CredentialVault
    scrapers: dict[Platform, ProfileScraperAdapter]
    providers: dict[Platform, OAuthProvider]
    sync_scheduler: SyncScheduler
    credential_manager: CredentialLifecycleManager
    accounts: AccountDirectory


def build_owner_directory(settings: Settings) -> OwnerDirectory:
    if settings.owner_directory_url:
        return HttpOwnerDirectory(settings.owner_directory_url, settings.owner_directory_api_key)
    logger.warning("OWNER_DIRECTORY_URL not set - every owner is treated as eligible")
    return StaticOwnerDirectory(eligible=True)


def build_runtime(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    runner: ActorRunner | None = None,
    providers: dict[Platform, OAuthProvider] | None = None,
    owners: OwnerDirectory | None = None,
) -> SyncRuntime:
    """Construct every collaborator from settings. Test code passes fakes in."""
    vault = CredentialVault(settings.encryption_key)
    if not vault.is_configured:
        logger.warning("ENCRYPTION_KEY not set or too short - OAuth linking and token refresh will fail")
    cache = ScrapeCache(ttl=timedelta(days=settings.scrape_cache_ttl_days))
    events = EventChannel(maxsize=settings.event_queue_size)
    upserter = RecordUpserter()

    if runner is None:
        if not settings.apify_api_token:
            logger.warning("APIFY_API_TOKEN not set - public profile scraping will fail")
        runner = ApifyClient(
            token=settings.apify_api_token,
            base_url=settings.apify_base_url,
            run_timeout_seconds=settings.apify_run_timeout_seconds,
            poll_interval_seconds=settings.apify_poll_interval_seconds,
        )

    actor_ids = {
        Platform.INSTAGRAM: settings.apify_instagram_actor_id,
        Platform.TIKTOK: settings.apify_tiktok_actor_id,
        Platform.YOUTUBE: settings.apify_youtube_actor_id,
        Platform.TWITTER: settings.apify_twitter_actor_id,
    }
    scrapers = {
        platform: ProfileScraperAdapter(
            runner=runner,
            actor_id=actor_id,
            platform=platform,
            cache=cache,
            max_items=settings.scrape_max_items,
            max_attempts=settings.scrape_max_attempts,
        )
        for platform, actor_id in actor_ids.items()
        if actor_id
    }

    if providers is None:
        providers = {
            Platform.TIKTOK: TikTokOAuthClient(
                client_key=settings.tiktok_client_key,
                client_secret=settings.tiktok_client_secret,
                redirect_uri=settings.tiktok_redirect_uri,
            ),
        }

    sync_scheduler = SyncScheduler(
        session_factory=session_factory,
        scrapers=scrapers,
        providers=providers,
        vault=vault,
        upserter=upserter,
        gate=FixedIntervalGate(settings.sync_delay_seconds),
        events=events,
        staleness=timedelta(days=settings.scrape_cache_ttl_days),
        max_content_items=settings.sync_max_content_items,
    )
    credential_manager = CredentialLifecycleManager(
        session_factory=session_factory,
        vault=vault,
        providers=providers,
        events=events,
        default_horizon_days=settings.token_refresh_horizon_days,
    )
    accounts = AccountDirectory(
        owners=owners or build_owner_directory(settings),
        scrapers=scrapers,
        providers=providers,
        vault=vault,
        cache=cache,
        upserter=upserter,
        max_content_items=settings.sync_max_content_items,
    )
    return SyncRuntime(
        cache=cache,
        events=events,
        vault=vault,
        scrapers=scrapers,
        providers=providers,
        sync_scheduler=sync_scheduler,
        credential_manager=credential_manager,
        accounts=accounts,
    )
