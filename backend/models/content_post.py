"""ContentPost model - canonical post/video records with engagement counters.

Rows are written only by the record upserter and removed in bulk when the
owning social account is disconnected.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from models.types import UTCDateTime, utcnow


class ContentPost(Base):
    """One piece of content published on an external platform."""

    __tablename__ = "content_posts"
    __table_args__ = (
        UniqueConstraint("account_id", "external_post_id", name="uix_content_posts_account_external"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    # Identity (never changes after insert)
    account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("social_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    external_post_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Content metadata
    caption: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    media_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # image, video, carousel, text
    media_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    posted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Engagement counters (the only mutable fields)
    likes_count: Mapped[int] = mapped_column(Integer, default=0)
    comments_count: Mapped[int] = mapped_column(Integer, default=0)
    shares_count: Mapped[int] = mapped_column(Integer, default=0)
    views_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    account = relationship("SocialAccount", back_populates="posts")

    def __repr__(self) -> str:
        return f"<ContentPost {self.external_post_id}: {self.likes_count} likes, {self.views_count} views>"
