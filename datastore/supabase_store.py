"""Reading store backed by a hosted Postgres exposed through PostgREST."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, List, Optional, Sequence, Tuple

import httpx

from datastore.feed import ChangeFeed, ReadingCallback, Subscription
from models.errors import StoreQueryFailed
from models.records import READING_COLUMNS, Reading, StoreStats
from models.timeutils import isoformat_utc, parse_timestamp

LOGGER = logging.getLogger(__name__)

QueryParams = List[Tuple[str, str]]


def parse_content_range_total(header: Optional[str]) -> int:
    """Extract the total from a ``Content-Range`` header such as ``0-24/3573``."""
    if not header or "/" not in header:
        return 0
    total = header.rsplit("/", 1)[1].strip()
    if total == "*":
        return 0
    try:
        return int(total)
    except ValueError:
        return 0


class SupabaseReadingStore:
    """Queries the readings table over REST.

    Insert notifications do not travel over this client: the database posts
    them to the service's webhook route, which hands them to :attr:`feed`.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        table: str = "temperature_readings",
        feed: Optional[ChangeFeed] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self.table = table
        self.feed = feed or ChangeFeed()
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }
        self._client = client or httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/v1",
            timeout=timeout,
        )
        self._path = f"/{table}"

    async def insert(self, reading: Reading) -> None:
        await self._request(
            "POST",
            params=[],
            json=[reading.to_row()],
            headers={"Prefer": "return=minimal"},
        )

    async def query(
        self,
        device_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Reading]:
        params: QueryParams = [
            ("select", ",".join(READING_COLUMNS)),
            ("device_id", f"eq.{device_id}"),
            ("order", "ts_utc.desc"),
        ]
        if start is not None:
            params.append(("ts_utc", f"gte.{isoformat_utc(start)}"))
        if end is not None:
            params.append(("ts_utc", f"lte.{isoformat_utc(end)}"))
        if limit is not None:
            params.append(("limit", str(limit)))

        response = await self._request("GET", params=params)
        try:
            payload = response.json()
        except ValueError as exc:
            raise StoreQueryFailed("Reading store returned invalid JSON") from exc
        if not isinstance(payload, list):
            raise StoreQueryFailed("Reading store returned a non-list payload")

        readings: List[Reading] = []
        for row in payload:
            try:
                readings.append(Reading.from_row(row))
            except ValueError as exc:
                LOGGER.warning(
                    "Skipping malformed reading row",
                    extra={"device_id": device_id, "reason": str(exc)},
                )
        return readings

    def subscribe(self, device_id: str, callback: ReadingCallback) -> Subscription:
        return self.feed.subscribe(device_id, callback)

    async def delete_older_than(self, cutoff: datetime) -> int:
        filters: QueryParams = [("ts_utc", f"lt.{isoformat_utc(cutoff)}")]
        deleted = await self._count(filters)
        await self._request("DELETE", params=filters)
        return deleted

    async def stats(self, now: datetime) -> StoreStats:
        total = await self._count([])
        oldest = await self._edge_timestamp("asc")
        newest = await self._edge_timestamp("desc")
        last_7 = await self._count(
            [("ts_utc", f"gte.{isoformat_utc(now - timedelta(days=7))}")]
        )
        last_30 = await self._count(
            [("ts_utc", f"gte.{isoformat_utc(now - timedelta(days=30))}")]
        )
        return StoreStats(
            total_count=total,
            oldest_reading=oldest,
            newest_reading=newest,
            last_7_days=last_7,
            last_30_days=last_30,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _count(self, filters: Sequence[Tuple[str, str]]) -> int:
        params: QueryParams = [("select", "ts_utc"), *filters]
        response = await self._request(
            "HEAD", params=params, headers={"Prefer": "count=exact"}
        )
        return parse_content_range_total(response.headers.get("content-range"))

    async def _edge_timestamp(self, direction: str) -> Optional[datetime]:
        params: QueryParams = [
            ("select", "ts_utc"),
            ("order", f"ts_utc.{direction}"),
            ("limit", "1"),
        ]
        response = await self._request("GET", params=params)
        try:
            rows = response.json()
            if not rows:
                return None
            return parse_timestamp(rows[0]["ts_utc"])
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as exc:
            raise StoreQueryFailed("Reading store returned an unexpected edge row") from exc

    async def _request(
        self,
        method: str,
        params: QueryParams,
        json: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                self._path,
                params=params,
                json=json,
                headers={**self._headers, **(headers or {})},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text.strip() or "no detail provided."
            raise StoreQueryFailed(
                f"Reading store request failed with status {exc.response.status_code}: {detail}"
            ) from exc
        except httpx.HTTPError as exc:
            raise StoreQueryFailed(f"Reading store unreachable: {exc}") from exc
        return response
