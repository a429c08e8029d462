"""Tests for owner eligibility lookups."""
from __future__ import annotations

import httpx
import pytest

from config import Settings
from services.errors import UpstreamError, UpstreamTimeout
from services.owner_directory import HttpOwnerDirectory, StaticOwnerDirectory
from services.runtime import build_owner_directory


def _directory(handler) -> HttpOwnerDirectory:
    return HttpOwnerDirectory(
        "https://accounts.internal/api/", api_key="dir-key", transport=httpx.MockTransport(handler)
    )


@pytest.mark.unit
async def test_eligible_owner():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"eligible": True})

    assert await _directory(handler).is_eligible("owner-1") is True
    assert seen[0].url.path == "/api/owners/owner-1/eligibility"
    assert seen[0].headers["X-API-Key"] == "dir-key"


@pytest.mark.unit
async def test_ineligible_owner():
    assert await _directory(lambda r: httpx.Response(200, json={"eligible": False})).is_eligible("o") is False


@pytest.mark.unit
async def test_unknown_owner_is_ineligible():
    assert await _directory(lambda r: httpx.Response(404)).is_eligible("nobody") is False


@pytest.mark.unit
async def test_directory_failure_raises():
    with pytest.raises(UpstreamError):
        await _directory(lambda r: httpx.Response(503)).is_eligible("owner-1")


@pytest.mark.unit
async def test_directory_timeout_raises():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(UpstreamTimeout):
        await _directory(handler).is_eligible("owner-1")


@pytest.mark.unit
async def test_static_directory():
    assert await StaticOwnerDirectory().is_eligible("anyone") is True
    assert await StaticOwnerDirectory(eligible=False).is_eligible("anyone") is False


@pytest.mark.unit
def test_build_owner_directory_from_settings():
    configured = build_owner_directory(Settings(owner_directory_url="https://accounts.internal"))
    unconfigured = build_owner_directory(Settings(owner_directory_url=""))

    assert isinstance(configured, HttpOwnerDirectory)
    assert isinstance(unconfigured, StaticOwnerDirectory)
