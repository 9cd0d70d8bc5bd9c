from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Any

import httpx

from .config import FootballConfig
from .exceptions import (
    FootballAPIError,
    FootballAuthError,
    FootballNotFoundError,
    FootballRateLimitError,
)
from .models import FixtureSnapshot

logger = logging.getLogger(__name__)


class FootballClient:
    """Read-only Outcome Source client for football-data.org."""

    def __init__(
        self,
        config: FootballConfig | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or FootballConfig()
        self.api_key = api_key or ""
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        logger.info(
            f"Initialized FootballClient ({len(self.config.supported_competitions)} competitions)"
        )

    async def __aenter__(self) -> FootballClient:
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.timeout_seconds,
            headers={"X-Auth-Token": self.api_key},
            transport=self._transport,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Closed FootballClient")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "FootballClient must be used as async context manager"
            )
        return self._client

    async def _request(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        retry = self.config.retry
        last_error: FootballAPIError | None = None

        for attempt in range(retry.max_attempts):
            try:
                response = await self.client.get(endpoint, params=params)
            except httpx.TimeoutException as e:
                last_error = FootballAPIError(f"Timeout on {endpoint}: {e}", retryable=True)
            except httpx.TransportError as e:
                last_error = FootballAPIError(f"Network error on {endpoint}: {e}", retryable=True)
            else:
                if response.status_code in (401, 403):
                    raise FootballAuthError(
                        "Football API rejected the API key",
                        status_code=response.status_code,
                    )
                if response.status_code == 404:
                    raise FootballNotFoundError(
                        f"Resource not found: {endpoint}", status_code=404
                    )
                if response.status_code == 429:
                    last_error = FootballRateLimitError(
                        "Football API rate limit exceeded",
                        status_code=429,
                        retryable=True,
                    )
                elif retry.is_retryable_status(response.status_code):
                    last_error = FootballAPIError(
                        f"Football API error {response.status_code}",
                        status_code=response.status_code,
                        retryable=True,
                    )
                elif response.is_error:
                    raise FootballAPIError(
                        f"Football API error {response.status_code}: {response.text[:200]}",
                        status_code=response.status_code,
                    )
                else:
                    return response.json()

            if attempt + 1 < retry.max_attempts:
                wait_time = retry.delay_for(attempt)
                logger.warning(
                    f"{last_error} (attempt {attempt + 1}/{retry.max_attempts}), "
                    f"retrying in {wait_time:.1f}s..."
                )
                await asyncio.sleep(wait_time)

        assert last_error is not None
        raise last_error

    async def fetch_batch(self, date_from: date, date_to: date) -> list[FixtureSnapshot]:
        """Fetch every supported competition's matches in the date window."""
        params = {"dateFrom": date_from.isoformat(), "dateTo": date_to.isoformat()}
        snapshots: list[FixtureSnapshot] = []
        failures = 0
        last_error: FootballAPIError | None = None

        for competition_id in self.config.supported_competitions:
            try:
                data = await self._request(
                    f"competitions/{competition_id}/matches", params=params
                )
            except FootballAPIError as e:
                logger.warning(f"Failed to fetch matches for competition {competition_id}: {e}")
                failures += 1
                last_error = e
                continue

            raw_matches = data.get("matches", [])
            valid = [
                snapshot
                for snapshot in (FixtureSnapshot.from_api(m) for m in raw_matches)
                if snapshot is not None
            ]
            if len(valid) != len(raw_matches):
                logger.warning(
                    f"Competition {competition_id}: "
                    f"{len(raw_matches) - len(valid)} invalid matches filtered out"
                )
            snapshots.extend(valid)

        if last_error is not None and failures == len(self.config.supported_competitions):
            raise last_error

        logger.info(f"Fetched {len(snapshots)} matches from {date_from} to {date_to}")
        return snapshots

    async def fetch_single(self, external_id: int) -> FixtureSnapshot:
        data = await self._request(f"matches/{external_id}")
        snapshot = FixtureSnapshot.from_api(data.get("match", data))
        if snapshot is None:
            raise FootballAPIError(f"Malformed match payload for {external_id}")
        return snapshot
