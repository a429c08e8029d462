"""Collaborator authentication - shared X-API-Key check."""

import hmac
from typing import Annotated

from fastapi import Header, HTTPException, status

from config import get_settings


def verify_api_key(x_api_key: Annotated[str | None, Header()] = None) -> str:
    """Verify the internal API key sent by collaborator services."""
    expected = get_settings().internal_api_key
    if not x_api_key or not hmac.compare_digest(x_api_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
    return x_api_key
