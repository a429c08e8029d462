"""Database models."""

from database import Base

from models.social_account import OAUTH_PLATFORMS, Platform, SocialAccount
from models.content_post import ContentPost

__all__ = [
    "Base",
    "OAUTH_PLATFORMS",
    "Platform",
    "SocialAccount",
    "ContentPost",
]
