"""Apify REST client for running scraper actors.

Start a run, poll it until it leaves RUNNING/READY, then read the run's
default dataset. The whole run is bounded by ``run_timeout_seconds``.
"""

import asyncio
import logging
import time
from typing import Any

import httpx

from services.errors import UpstreamError, UpstreamNotFound, UpstreamTimeout

logger = logging.getLogger(__name__)

APIFY_API_BASE = "https://api.apify.com/v2"
PENDING_STATUSES = ("RUNNING", "READY")


class ApifyClient:
    """Runs one actor input to completion and returns its dataset items."""

    def __init__(
        self,
        token: str,
        base_url: str = APIFY_API_BASE,
        run_timeout_seconds: float = 120,
        poll_interval_seconds: float = 5,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep=asyncio.sleep,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.run_timeout_seconds = run_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._transport = transport
        self._sleep = sleep

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=30, transport=self._transport)

    @staticmethod
    def _actor_path(actor_id: str) -> str:
        # "apify/instagram-profile-scraper" -> "apify~instagram-profile-scraper"
        return actor_id.replace("/", "~")

    async def run_actor(self, actor_id: str, run_input: dict) -> list[dict[str, Any]]:
        """Run ``actor_id`` with ``run_input`` and return the dataset items.

        Raises UpstreamTimeout when the run outlives the timeout or a request
        times out, UpstreamNotFound on 404, UpstreamError otherwise.
        """
        if not self.token:
            raise UpstreamError("APIFY_API_TOKEN is not configured")

        params = {"token": self.token}
        started = time.monotonic()

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/acts/{self._actor_path(actor_id)}/runs",
                    params=params,
                    json=run_input,
                )
                self._raise_for_status(response, f"start actor {actor_id}")
                run = self._run_data(response, f"start actor {actor_id}")
                run_id = run.get("id")
                if not run_id:
                    raise UpstreamError("Apify run did not return a run id")

                status = run.get("status") or "RUNNING"
                while status in PENDING_STATUSES:
                    if time.monotonic() - started > self.run_timeout_seconds:
                        raise UpstreamTimeout(
                            f"Apify run {run_id} exceeded {self.run_timeout_seconds}s"
                        )
                    await self._sleep(self.poll_interval_seconds)
                    check = await client.get(f"{self.base_url}/actor-runs/{run_id}", params=params)
                    self._raise_for_status(check, f"poll run {run_id}")
                    run = self._run_data(check, f"poll run {run_id}")
                    status = run.get("status")

                if status != "SUCCEEDED":
                    if status in ("TIMED-OUT", "TIMING-OUT"):
                        raise UpstreamTimeout(f"Apify run {run_id} timed out upstream")
                    raise UpstreamError(f"Apify run {run_id} failed with status: {status}")

                dataset_id = run.get("defaultDatasetId")
                if not dataset_id:
                    raise UpstreamError(f"Apify run {run_id} missing dataset id")

                items = await client.get(
                    f"{self.base_url}/datasets/{dataset_id}/items",
                    params={**params, "clean": "true", "format": "json"},
                )
                self._raise_for_status(items, f"read dataset {dataset_id}")
                payload = self._json(items, f"read dataset {dataset_id}")
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(f"Apify request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Apify request failed: {exc}") from exc

        if isinstance(payload, dict):
            payload = [payload]
        if not isinstance(payload, list):
            raise UpstreamError(f"Apify dataset {dataset_id} is not a list of items")
        result = [item for item in payload if isinstance(item, dict)]
        logger.info(f"Apify actor {actor_id} returned {len(result)} items")
        return result

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.status_code == 404:
            raise UpstreamNotFound(f"Apify could not {action}: not found")
        if response.status_code >= 400:
            logger.warning(f"Apify failed to {action}: {response.status_code} - {response.text[:200]}")
            raise UpstreamError(f"Apify failed to {action}: HTTP {response.status_code}")

    @staticmethod
    def _json(response: httpx.Response, action: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            logger.warning(f"Apify returned a non-JSON body to {action}: {response.text[:200]}")
            raise UpstreamError(f"Apify returned an invalid body to {action}") from exc

    @classmethod
    def _run_data(cls, response: httpx.Response, action: str) -> dict[str, Any]:
        body = cls._json(response, action)
        run = body.get("data") if isinstance(body, dict) else None
        if run is None:
            return {}
        if not isinstance(run, dict):
            raise UpstreamError(f"Apify returned a malformed run to {action}")
        return run
