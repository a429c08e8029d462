"""Routers package."""

from .social_accounts import router as social_accounts_router

__all__ = [
    "social_accounts_router",
]
