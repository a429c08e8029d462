"""Owner eligibility lookups against the account directory service."""

import logging
from typing import Protocol

import httpx

from services.errors import UpstreamError, UpstreamTimeout

logger = logging.getLogger(__name__)


class OwnerDirectory(Protocol):
    async def is_eligible(self, owner_id: str) -> bool: ...


class HttpOwnerDirectory:
    """Asks ``GET {base_url}/owners/{owner_id}/eligibility`` -> {"eligible": bool}."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def is_eligible(self, owner_id: str) -> bool:
        headers = {"X-API-Key": self.api_key} if self.api_key else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{self.base_url}/owners/{owner_id}/eligibility", headers=headers
                )
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"Owner directory timed out: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Owner directory request failed: {e}") from e

        if response.status_code == 404:
            return False
        if response.status_code >= 400:
            raise UpstreamError(f"Owner directory returned HTTP {response.status_code}")
        return bool(response.json().get("eligible", False))


class StaticOwnerDirectory:
    """Fixed answer for every owner; used when no directory is configured."""

    def __init__(self, eligible: bool = True):
        self.eligible = eligible

    async def is_eligible(self, owner_id: str) -> bool:
        return self.eligible
