"""Idempotent create-or-update of content posts keyed by (account, external post id)."""

import logging
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.content_post import ContentPost
from services.errors import PersistenceError
from services.scrape_normalizer import ContentItem, dedupe_posts

logger = logging.getLogger(__name__)

COUNTER_FIELDS = (
    ("likes_count", "likes"),
    ("comments_count", "comments"),
    ("shares_count", "shares"),
    ("views_count", "views"),
)


@dataclass(frozen=True)
class UpsertResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0


class RecordUpserter:
    """Writes ContentItems as ContentPost rows.

    New posts are inserted with all descriptors. Existing posts only get
    their counters touched, and only when a value actually differs, so
    replaying the same batch leaves the rows (and updated_at) alone.
    The caller owns the transaction: this flushes but never commits.
    """

    async def upsert(
        self,
        db: AsyncSession,
        account_id: str,
        posts: Sequence[ContentItem],
    ) -> UpsertResult:
        unique = dedupe_posts(posts)
        if not unique:
            return UpsertResult()

        created = updated = unchanged = 0
        try:
            result = await db.execute(
                select(ContentPost).where(
                    ContentPost.account_id == account_id,
                    ContentPost.external_post_id.in_([p.external_id for p in unique]),
                )
            )
            existing = {row.external_post_id: row for row in result.scalars()}

            for post in unique:
                row = existing.get(post.external_id)
                if row is None:
                    db.add(
                        ContentPost(
                            account_id=account_id,
                            external_post_id=post.external_id,
                            caption=post.caption or None,
                            media_type=post.media_type,
                            media_url=post.media_url,
                            thumbnail_url=post.thumbnail_url,
                            duration_seconds=post.duration_seconds,
                            posted_at=post.posted_at,
                            likes_count=post.likes,
                            comments_count=post.comments,
                            shares_count=post.shares,
                            views_count=post.views,
                        )
                    )
                    created += 1
                    continue

                changed = False
                for column, attr in COUNTER_FIELDS:
                    value = getattr(post, attr)
                    if getattr(row, column) != value:
                        setattr(row, column, value)
                        changed = True
                if changed:
                    updated += 1
                else:
                    unchanged += 1

            await db.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to upsert posts for account {account_id}: {e}") from e

        logger.debug(
            f"Upserted posts for account {account_id}: "
            f"{created} created, {updated} updated, {unchanged} unchanged"
        )
        return UpsertResult(created=created, updated=updated, unchanged=unchanged)
