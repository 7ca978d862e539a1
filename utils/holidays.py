"""
Holiday Gate - Cached Indonesian Public Holiday Calendar

Answers "is this date a holiday?" for the scheduler. The full calendar is fetched
from a public JSON source, trimmed to the requested year and cached in SQLite for
one month. Every failure resolves toward *not* a holiday so scheduled runs are
never blocked by the calendar.

Source format:
    {"2025-01-01": {"summary": "Tahun Baru 2025 Masehi"}, ..., "info": {...}}
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import httpx
import orjson
from dateutil.relativedelta import relativedelta
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from utils.config import local_now, settings
from utils.db import connect

logger = logging.getLogger(__name__)

INFO_KEY = "info"
FALLBACK_AUTHOR = "cache-fallback"
CACHE_TTL = relativedelta(months=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _fallback_calendar() -> dict[str, Any]:
    return {INFO_KEY: {"author": FALLBACK_AUTHOR, "link": "", "updated": ""}}


def _holiday_count(calendar: dict[str, Any]) -> int:
    return sum(1 for key in calendar if key != INFO_KEY)


class HolidayGate:
    """Holiday lookups backed by the ``holiday_cache`` table."""

    def __init__(
        self,
        db_path: str | Path | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db_path = db_path
        self.api_url = api_url or settings.HOLIDAY_API_URL
        self.timeout = timeout or settings.HOLIDAY_API_TIMEOUT
        self._transport = transport
        self._clock = clock

    def _now_iso(self) -> str:
        return self._clock().astimezone(timezone.utc).isoformat(timespec="seconds")

    def clean_expired_cache(self) -> int:
        """
        Delete cache entries whose expiry has passed.

        Returns:
            Number of removed entries (0 when nothing expired)
        """
        with connect(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM holiday_cache WHERE expires_at <= ?", (self._now_iso(),))
            removed = cursor.rowcount

        if removed > 0:
            logger.info("Cleaned %d expired holiday cache entries", removed)
        return removed

    def _get_cached(self, year: int) -> dict[str, Any] | None:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT data, cached_at, expires_at FROM holiday_cache WHERE year = ? AND expires_at > ?",
                (year, self._now_iso()),
            ).fetchone()

        if row is None:
            return None

        logger.debug(
            "Using cached holiday data for year %d",
            year,
            extra={"cached_at": row["cached_at"], "expires_at": row["expires_at"]},
        )
        return orjson.loads(row["data"])

    def _cache(self, year: int, calendar: dict[str, Any]) -> None:
        cached_at = self._clock().astimezone(timezone.utc)
        expires_at = cached_at + CACHE_TTL

        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO holiday_cache (year, data, cached_at, expires_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(year) DO UPDATE SET
                    data = excluded.data,
                    cached_at = excluded.cached_at,
                    expires_at = excluded.expires_at
                """,
                (
                    year,
                    orjson.dumps(calendar).decode("utf-8"),
                    cached_at.isoformat(timespec="seconds"),
                    expires_at.isoformat(timespec="seconds"),
                ),
            )

        logger.info(
            "Cached holiday data for year %d",
            year,
            extra={"expires_at": expires_at.isoformat(), "holiday_count": _holiday_count(calendar)},
        )

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def _fetch_from_api(self) -> dict[str, Any]:
        logger.info("Fetching holidays from API", extra={"url": self.api_url})

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(self.api_url)
            response.raise_for_status()

        data = orjson.loads(response.content)
        if not isinstance(data, dict):
            raise ValueError("Holiday API returned a non-object payload")

        logger.info(
            "Successfully fetched holiday data from API",
            extra={
                "holiday_count": _holiday_count(data),
                "last_updated": (data.get(INFO_KEY) or {}).get("updated"),
            },
        )
        return data

    async def get_holidays(self, year: int) -> dict[str, Any]:
        """
        Holiday calendar for one year.

        Served from cache while the entry is valid; otherwise fetched, trimmed to
        the year and cached. A failed fetch returns an empty calendar tagged with
        the ``cache-fallback`` author and is not cached.

        Args:
            year: Calendar year

        Returns:
            Mapping of ISO date -> {"summary": ...} plus the ``info`` metadata key
        """
        cached = self._get_cached(year)
        if cached is not None:
            return cached

        try:
            data = await self._fetch_from_api()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to fetch holidays from API", extra={"error": str(e), "year": year})
            return _fallback_calendar()

        prefix = str(year)
        yearly: dict[str, Any] = {INFO_KEY: data.get(INFO_KEY) or {}}
        for key, entry in data.items():
            if key != INFO_KEY and key.startswith(prefix):
                yearly[key] = entry

        self._cache(year, yearly)
        return yearly

    async def is_holiday(self, day: date) -> bool:
        """True if ``day`` is in the calendar; any error counts as a working day."""
        date_key = day.isoformat()
        try:
            holidays = await self.get_holidays(day.year)
        except Exception as e:
            logger.error("Error checking holiday status", extra={"error": str(e), "date": date_key})
            return False

        return date_key != INFO_KEY and date_key in holidays

    async def get_holiday_info(self, day: date) -> str | None:
        """Holiday description for ``day``, or None."""
        date_key = day.isoformat()
        try:
            holidays = await self.get_holidays(day.year)
        except Exception as e:
            logger.error("Error getting holiday info", extra={"error": str(e), "date": date_key})
            return None

        entry = holidays.get(date_key)
        if isinstance(entry, dict):
            return entry.get("summary")
        return None

    async def get_upcoming_holidays(self, today: date | None = None) -> list[dict[str, str]]:
        """Holidays from ``today`` through one month ahead, in date order."""
        today = today or local_now().date()
        until = today + relativedelta(months=1)

        try:
            holidays = await self.get_holidays(today.year)
            if until.year != today.year:
                holidays = {**holidays, **(await self.get_holidays(until.year))}
        except Exception as e:
            logger.error("Error getting upcoming holidays", extra={"error": str(e)})
            return []

        upcoming = []
        for key, entry in sorted(holidays.items()):
            if key == INFO_KEY:
                continue
            try:
                holiday_date = date.fromisoformat(key)
            except ValueError:
                continue
            if today <= holiday_date <= until:
                summary = entry.get("summary", "") if isinstance(entry, dict) else str(entry)
                upcoming.append({"date": key, "name": summary})
        return upcoming
