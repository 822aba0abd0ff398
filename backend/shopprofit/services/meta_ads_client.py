"""Meta (Facebook) Ads spend adapter.

WHAT:
    Reads daily ad spend from the Graph API insights edge of an ad account
    and lists the ad accounts a user token can see.

WHY:
    Meta reports spend as decimal strings in the account currency, one row
    per day when `time_increment=1`, and pages through `paging.next` URLs.
    This module turns that into canonical DailySpend rows.

RATE LIMITS:
    - 200 API calls per hour per ad account
    - Enforced with the @rate_limit(calls_per_hour=200) decorator, keyed by
      ad account for insights calls

REFERENCES:
    - shopprofit/services/spend_adapter.py (interface, paging rules)
    - https://developers.facebook.com/docs/marketing-api/insights
"""

import asyncio
import json
import logging
from collections import defaultdict, deque
from datetime import date
from decimal import Decimal, InvalidOperation
from functools import wraps
from time import time
from typing import Dict, List, Optional

import httpx

from shopprofit.deps import get_settings
from shopprofit.models import PlatformEnum
from shopprofit.services.errors import CredentialRefreshFailedError, ParseError, ProviderError
from shopprofit.services.spend_adapter import AdAccount, DailySpend, PageCallback, SpendAdapter, TokenGrant

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.facebook.com"
INSIGHTS_FIELDS = "spend,date_start,date_stop"
INSIGHTS_PAGE_SIZE = 90


def rate_limit(calls_per_hour: int):
    """Sliding-window limiter for async Graph API calls, one window per key.

    The wrapped coroutine takes a `rate_key` keyword (the ad account id for
    insights). Calls without one share a single app-level window. Once a key
    reaches `calls_per_hour`, its next call sleeps until the oldest call
    leaves the one-hour window.
    """
    windows: Dict[Optional[str], deque] = defaultdict(lambda: deque(maxlen=calls_per_hour))

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, rate_key: Optional[str] = None, **kwargs):
            call_times = windows[rate_key]
            now = time()

            while call_times and call_times[0] < now - 3600:
                call_times.popleft()

            if len(call_times) >= calls_per_hour:
                sleep_time = 3600 - (now - call_times[0]) + 1
                logger.warning(
                    "[META_SPEND] Rate limit reached for %s (%d calls/hour). Sleeping for %.1fs",
                    rate_key or "app", calls_per_hour, sleep_time,
                )
                await asyncio.sleep(sleep_time)

            call_times.append(time())
            return await func(*args, **kwargs)
        return wrapper
    return decorator


def normalize_account_id(account_id: str) -> str:
    """Graph API account ids carry an `act_` prefix; users often paste the bare number."""
    account_id = account_id.strip()
    return account_id if account_id.startswith("act_") else f"act_{account_id}"


class MetaSpendAdapter(SpendAdapter):
    """Spend adapter for the Meta Graph API.

    Usage:
        adapter = MetaSpendAdapter()
        spend = await adapter.fetch_daily_spend(creds, "act_123", date(2024, 1, 1), date(2024, 3, 31))
    """

    platform = PlatformEnum.facebook
    supports_auto_select = True

    def __init__(
        self,
        api_version: Optional[str] = None,
        app_id: Optional[str] = None,
        app_secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_pages: Optional[int] = None,
    ):
        settings = get_settings()
        super().__init__(transport=transport, max_pages=max_pages or settings.MAX_SPEND_PAGES)
        self.api_version = api_version or settings.META_GRAPH_API_VERSION
        self.app_id = app_id or settings.META_APP_ID
        self.app_secret = app_secret or settings.META_APP_SECRET
        self.base_url = f"{GRAPH_BASE_URL}/{self.api_version}"

    @rate_limit(calls_per_hour=200)
    async def _get(self, client: httpx.AsyncClient, url: str, params: Optional[Dict] = None) -> httpx.Response:
        return await client.get(url, params=params)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def list_accounts(self, credentials) -> List[AdAccount]:
        params = {"fields": "id,name", "access_token": credentials.access_token}
        try:
            async with self._client() as client:
                response = await self._get(client, f"{self.base_url}/me/adaccounts", params)
            payload = self._parse_json(response, "listing ad accounts")
        except (ProviderError, ParseError, httpx.HTTPError) as exc:
            logger.warning("[META_SPEND] Could not list ad accounts: %s", exc)
            return []

        accounts = [
            AdAccount(id=item["id"], name=item.get("name"))
            for item in payload.get("data") or []
            if isinstance(item, dict) and item.get("id")
        ]
        logger.info("[META_SPEND] Found %d ad accounts", len(accounts))
        return accounts

    # ------------------------------------------------------------------
    # Daily spend
    # ------------------------------------------------------------------

    async def fetch_daily_spend(
        self,
        credentials,
        account_id: str,
        start: date,
        end: date,
        on_page: Optional[PageCallback] = None,
    ) -> List[DailySpend]:
        account_id = normalize_account_id(account_id)
        first_url = f"{self.base_url}/{account_id}/insights"
        first_params = {
            "fields": INSIGHTS_FIELDS,
            "time_range": json.dumps({"since": start.isoformat(), "until": end.isoformat()}),
            "time_increment": 1,
            "limit": INSIGHTS_PAGE_SIZE,
            "access_token": credentials.access_token,
        }

        logger.info("[META_SPEND] Fetching insights for %s from %s to %s", account_id, start, end)

        async with self._client() as client:

            async def fetch_page(cursor):
                # `paging.next` is a complete URL including the token
                url, params = (cursor, None) if cursor else (first_url, first_params)
                try:
                    response = await self._get(client, url, params, rate_key=account_id)
                except httpx.HTTPError as exc:
                    raise ProviderError(f"Graph API request failed: {exc}", platform=self.platform.value) from exc
                payload = self._parse_json(response, "fetching insights")
                rows = payload.get("data")
                if not isinstance(rows, list):
                    raise ParseError("Insights response has no data list", platform=self.platform.value)
                return rows, (payload.get("paging") or {}).get("next")

            rows = await self._collect_pages(fetch_page, "fetching insights", on_page)

        # One row per day; a repeated day overwrites the earlier value
        by_day: Dict[date, float] = {}
        for row in rows:
            day, amount = self._parse_row(row)
            by_day[day] = amount

        result = [DailySpend(day, amount) for day, amount in sorted(by_day.items()) if amount > 0]
        logger.info(
            "[META_SPEND] %d insight rows, %d days with spend for %s",
            len(rows), len(result), account_id,
        )
        return result

    def _parse_row(self, row) -> tuple:
        if not isinstance(row, dict) or not row.get("date_start"):
            raise ParseError("Insights row without date_start", platform=self.platform.value)
        try:
            day = date.fromisoformat(row["date_start"])
            amount = float(Decimal(str(row.get("spend") or "0")))
        except (ValueError, InvalidOperation) as exc:
            raise ParseError(f"Malformed insights row: {row!r}", platform=self.platform.value) from exc
        return day, amount

    # ------------------------------------------------------------------
    # Token refresh
    # ------------------------------------------------------------------

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a still-valid token for a new long-lived one.

        Meta has no refresh-token grant; `fb_exchange_token` is the closest
        equivalent and needs the app id and secret.
        """
        if not self.app_id or not self.app_secret:
            raise CredentialRefreshFailedError(
                "META_APP_ID and META_APP_SECRET are required to refresh Meta tokens",
                platform=self.platform.value,
            )

        params = {
            "grant_type": "fb_exchange_token",
            "client_id": self.app_id,
            "client_secret": self.app_secret,
            "fb_exchange_token": refresh_token,
        }
        try:
            async with self._client() as client:
                response = await self._get(client, f"{self.base_url}/oauth/access_token", params)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Token exchange request failed: {exc}", platform=self.platform.value) from exc

        payload = self._parse_json(response, "exchanging token")
        if not payload.get("access_token"):
            raise ParseError("Token exchange response has no access_token", platform=self.platform.value)

        logger.info("[META_SPEND] Access token exchanged (expires_in=%s)", payload.get("expires_in"))
        return TokenGrant(
            access_token=payload["access_token"],
            expires_in=payload.get("expires_in"),
            # The new long-lived token is also what the next exchange uses
            refresh_token=payload["access_token"],
        )
