"""Scheduled refresh of soon-to-expire OAuth credentials.

Per account: ACTIVE -> (expiry within horizon) -> REFRESHING -> ACTIVE with a
new expiry, or INACTIVE on the first failure. There is no retry within a
run; an inactive account only comes back through re-linking.
"""

import logging
import threading
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.social_account import OAUTH_PLATFORMS, Platform, SocialAccount
from services.credential_vault import CredentialVault
from services.errors import CredentialRefreshFailure
from services.events import EventChannel, EventType, SyncEvent
from services.reports import RefreshReport, SyncFailure
from services.run_guard import SingleFlight
from services.tiktok_service import OAuthProvider

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialLifecycleManager:
    """Finds accounts with expiring credentials and refreshes or deactivates them."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        vault: CredentialVault,
        providers: Mapping[Platform, OAuthProvider],
        events: EventChannel | None = None,
        default_horizon_days: int = 7,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self.vault = vault
        self.providers = dict(providers)
        self.events = events
        self.default_horizon_days = default_horizon_days
        self._clock = clock
        self.guard = SingleFlight("credential-refresh")
        self._stop = threading.Event()

    @property
    def is_running(self) -> bool:
        return self.guard.in_flight

    def request_stop(self) -> None:
        """Ask the current run to stop before its next account."""
        self._stop.set()

    async def select_expiring(self, db: AsyncSession, horizon_days: int) -> list[SocialAccount]:
        deadline = self._clock() + timedelta(days=horizon_days)
        result = await db.execute(
            select(SocialAccount)
            .where(
                SocialAccount.is_active.is_(True),
                SocialAccount.deleted_at.is_(None),
                SocialAccount.platform.in_(list(OAUTH_PLATFORMS)),
                SocialAccount.access_token.is_not(None),
                SocialAccount.token_expires_at.is_not(None),
                SocialAccount.token_expires_at <= deadline,
            )
            .order_by(SocialAccount.token_expires_at)
        )
        return list(result.scalars())

    async def refresh_expiring(self, horizon_days: int | None = None) -> RefreshReport:
        """Refresh every credential expiring within ``horizon_days``.

        Returns immediately with ``skipped=True`` if a run is already in flight.
        """
        horizon = self.default_horizon_days if horizon_days is None else horizon_days

        with self.guard.hold() as acquired:
            if not acquired:
                logger.info("Credential refresh already running, skipping")
                return RefreshReport(skipped=True)

            self._stop.clear()
            started = time.monotonic()
            report = RefreshReport()

            async with self.session_factory() as db:
                accounts = [(a.id, a.platform) for a in await self.select_expiring(db, horizon)]
            logger.info(f"Found {len(accounts)} accounts with credentials expiring within {horizon} days")

            for account_id, platform in accounts:
                if self._stop.is_set():
                    logger.warning("Credential refresh stopped on request")
                    report.cancelled = True
                    break
                try:
                    await self._refresh_account(account_id)
                    report.succeeded += 1
                except Exception as e:
                    report.failed += 1
                    report.failures.append(
                        SyncFailure(account_id, platform.value, str(e), type(e).__name__)
                    )
                    logger.exception(f"Failed to refresh {platform.value} credentials for account {account_id}")
                    await self._deactivate(account_id, str(e))

            report.duration_ms = int((time.monotonic() - started) * 1000)
            logger.info(
                f"Credential refresh completed in {report.duration_ms}ms - "
                f"Success: {report.succeeded}, Failed: {report.failed}"
            )
            return report

    async def trigger_manual_refresh(self) -> RefreshReport:
        logger.info("Manual credential refresh triggered")
        return await self.refresh_expiring()

    async def _refresh_account(self, account_id: str) -> None:
        async with self.session_factory() as db:
            account = await db.get(SocialAccount, account_id)
            if account is None or not account.is_active:
                raise CredentialRefreshFailure(f"Account {account_id} is no longer eligible for refresh")

            provider = self.providers.get(account.platform)
            if provider is None:
                raise CredentialRefreshFailure(f"No OAuth provider configured for {account.platform.value}")
            if not account.refresh_token:
                raise CredentialRefreshFailure(f"No refresh token available for {account.platform.value} account")

            current_refresh = self.vault.decrypt(account.refresh_token)
            grant = await provider.refresh_access_token(current_refresh)

            account.access_token = self.vault.encrypt(grant.access_token)
            # Keep the old refresh token if the provider did not rotate it
            if grant.refresh_token:
                account.refresh_token = self.vault.encrypt(grant.refresh_token)
            account.token_expires_at = grant.expires_at
            await db.commit()

            logger.info(
                f"{account.platform.value} credentials refreshed for account {account_id}. "
                f"New expiry: {grant.expires_at.isoformat()}"
            )
            self._publish(SyncEvent(
                type=EventType.CREDENTIALS_REFRESHED,
                account_id=account_id,
                owner_id=account.owner_id,
                payload={"expires_at": grant.expires_at.isoformat()},
            ))

    async def _deactivate(self, account_id: str, reason: str) -> None:
        try:
            async with self.session_factory() as db:
                account = await db.get(SocialAccount, account_id)
                if account is None:
                    return
                account.deactivate(reason, self._clock())
                await db.commit()
                owner_id = account.owner_id
        except SQLAlchemyError:
            logger.exception(f"Failed to deactivate account {account_id}")
            return

        logger.warning(f"Marked account {account_id} as inactive. Reason: {reason}")
        self._publish(SyncEvent(
            type=EventType.ACCOUNT_DEACTIVATED,
            account_id=account_id,
            owner_id=owner_id,
            payload={"reason": reason},
        ))

    def _publish(self, event: SyncEvent) -> None:
        if self.events is not None:
            self.events.publish(event)
