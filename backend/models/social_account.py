"""Social accounts linked by creators to external platforms."""

import enum
from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, Enum, Float, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from models.types import JSONType, UTCDateTime, utcnow


class Platform(str, enum.Enum):
    """Supported external platforms."""
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"
    TWITTER = "twitter"


# Platforms with an OAuth grant flow (and therefore refreshable credentials).
# Every other platform is scrape-only.
OAUTH_PLATFORMS = frozenset({Platform.TIKTOK})


class SocialAccount(Base):
    """A creator's account on one external platform.

    Exactly one non-deleted row exists per (owner, platform). Accounts linked
    through OAuth carry encrypted credential envelopes; scrape-only accounts
    leave the credential columns empty.
    """

    __tablename__ = "social_accounts"
    __table_args__ = (
        Index(
            "uix_social_accounts_owner_platform",
            "owner_id",
            "platform",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index(
            "uix_social_accounts_platform_external",
            "platform",
            "external_user_id",
            "external_handle",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4())
    )
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    platform: Mapped[Platform] = mapped_column(
        Enum(Platform, values_callable=lambda enum: [e.value for e in enum]),
        nullable=False
    )

    # External identity
    external_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_handle: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    profile_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Credential envelopes (salt:nonce:ciphertext:tag)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    deactivation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Metrics
    followers_count: Mapped[int] = mapped_column(Integer, default=0)
    following_count: Mapped[int] = mapped_column(Integer, default=0)
    content_count: Mapped[int] = mapped_column(Integer, default=0)
    engagement_rate: Mapped[float] = mapped_column(Float, default=0.0)

    # "metadata" is reserved on declarative classes
    profile_metadata: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)

    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    posts = relationship(
        "ContentPost",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def has_credential(self) -> bool:
        """True when the account is backed by an OAuth grant."""
        return bool(self.access_token)

    def mark_synced(self, at: datetime) -> None:
        """Advance last_synced_at; never moves it backwards."""
        if self.last_synced_at is None or at > self.last_synced_at:
            self.last_synced_at = at

    def deactivate(self, reason: str, at: datetime | None = None) -> None:
        self.is_active = False
        self.deactivation_reason = reason[:500]
        self.deactivated_at = at or utcnow()

    def __repr__(self) -> str:
        return f"<SocialAccount {self.platform.value}:@{self.external_handle} active={self.is_active}>"
