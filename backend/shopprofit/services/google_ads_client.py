"""Google Ads spend adapter.

WHAT:
    Runs a GAQL report over the Google Ads REST API to get per-day cost for
    a customer account, lists accessible customers and refreshes OAuth
    access tokens.

WHY:
    Google reports one row per campaign per day with cost in micros
    (1/1,000,000 of the currency unit) and pages with `nextPageToken`.
    Rows are summed per day and converted to currency units here so the
    ledger only ever sees canonical DailySpend.

REFERENCES:
    - shopprofit/services/spend_adapter.py (interface, paging rules)
    - https://developers.google.com/google-ads/api/rest/reference/rest/latest/customers.googleAds/search
    - https://developers.google.com/identity/protocols/oauth2/web-server#offline
"""

import asyncio
import logging
import random
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional

import httpx

from shopprofit.deps import get_settings
from shopprofit.models import PlatformEnum
from shopprofit.services.errors import CredentialRefreshFailedError, ParseError, ProviderError
from shopprofit.services.spend_adapter import AdAccount, DailySpend, PageCallback, SpendAdapter, TokenGrant

logger = logging.getLogger(__name__)

GOOGLE_ADS_BASE_URL = "https://googleads.googleapis.com"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
MICROS_PER_UNIT = 1_000_000

DAILY_COST_QUERY = (
    "SELECT segments.date, metrics.cost_micros "
    "FROM campaign "
    "WHERE segments.date BETWEEN '{start}' AND '{end}'"
)

# Statuses worth another attempt; quota exhaustion is not retried
RETRYABLE_STATUS_CODES = {500, 502, 503, 504}


def micros_to_units(micros) -> float:
    return int(micros) / MICROS_PER_UNIT


def normalize_customer_id(customer_id: str) -> str:
    """Google shows ids as 123-456-7890; the API wants digits only."""
    return customer_id.replace("-", "").replace("customers/", "").strip()


class GoogleSpendAdapter(SpendAdapter):
    """Spend adapter for the Google Ads REST API.

    Auto-selection is not supported: a manager login often sees many client
    accounts, so the merchant has to pick one.
    """

    platform = PlatformEnum.google
    supports_auto_select = False

    def __init__(
        self,
        api_version: Optional[str] = None,
        developer_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        login_customer_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_pages: Optional[int] = None,
        max_attempts: int = 3,
    ):
        settings = get_settings()
        super().__init__(transport=transport, max_pages=max_pages or settings.MAX_SPEND_PAGES)
        self.api_version = api_version or settings.GOOGLE_ADS_API_VERSION
        self.developer_token = developer_token if developer_token is not None else settings.GOOGLE_ADS_DEVELOPER_TOKEN
        self.client_id = client_id or settings.GOOGLE_ADS_CLIENT_ID
        self.client_secret = client_secret or settings.GOOGLE_ADS_CLIENT_SECRET
        self.login_customer_id = login_customer_id or settings.GOOGLE_ADS_LOGIN_CUSTOMER_ID
        self.max_attempts = max_attempts
        self.base_url = f"{GOOGLE_ADS_BASE_URL}/{self.api_version}"

    def _headers(self, credentials) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {credentials.access_token}",
            "developer-token": self.developer_token or "",
            "Content-Type": "application/json",
        }
        login_customer_id = getattr(credentials, "login_customer_id", None) or self.login_customer_id
        if login_customer_id:
            headers["login-customer-id"] = normalize_customer_id(login_customer_id)
        return headers

    async def _send(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
        """Send with retries on transport errors and 5xx, exponential backoff with jitter."""
        base = 0.5
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                if attempt == self.max_attempts:
                    raise ProviderError(f"Google Ads request failed: {exc}", platform=self.platform.value) from exc
                logger.warning("[GOOGLE_SPEND] Transport error (attempt %d/%d): %s", attempt, self.max_attempts, exc)
            else:
                if response.status_code not in RETRYABLE_STATUS_CODES or attempt == self.max_attempts:
                    return response
                logger.warning(
                    "[GOOGLE_SPEND] HTTP %d (attempt %d/%d)", response.status_code, attempt, self.max_attempts,
                )
            await asyncio.sleep(base * (2 ** (attempt - 1)) + random.uniform(0, 0.1))
        raise ProviderError("Google Ads request failed", platform=self.platform.value)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def list_accounts(self, credentials) -> List[AdAccount]:
        try:
            async with self._client() as client:
                response = await self._send(
                    client, "GET", f"{self.base_url}/customers:listAccessibleCustomers",
                    headers=self._headers(credentials),
                )
            payload = self._parse_json(response, "listing accessible customers")
        except (ProviderError, ParseError) as exc:
            logger.warning("[GOOGLE_SPEND] Could not list customers: %s", exc)
            return []

        accounts = [
            AdAccount(id=normalize_customer_id(name))
            for name in payload.get("resourceNames") or []
            if isinstance(name, str)
        ]
        logger.info("[GOOGLE_SPEND] Found %d accessible customers", len(accounts))
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
        customer_id = normalize_customer_id(account_id)
        url = f"{self.base_url}/customers/{customer_id}/googleAds:search"
        query = DAILY_COST_QUERY.format(start=start.isoformat(), end=end.isoformat())
        headers = self._headers(credentials)

        logger.info("[GOOGLE_SPEND] Fetching cost for customer %s from %s to %s", customer_id, start, end)

        async with self._client() as client:

            async def fetch_page(cursor):
                body = {"query": query}
                if cursor:
                    body["pageToken"] = cursor
                response = await self._send(client, "POST", url, json=body, headers=headers)
                payload = self._parse_json(response, "searching daily cost")
                rows = payload.get("results", [])
                if not isinstance(rows, list):
                    raise ParseError("Search response results is not a list", platform=self.platform.value)
                return rows, payload.get("nextPageToken")

            rows = await self._collect_pages(fetch_page, "searching daily cost", on_page)

        # Several campaigns report the same day; sum them
        by_day: Dict[date, float] = defaultdict(float)
        for row in rows:
            try:
                day = date.fromisoformat(row["segments"]["date"])
                micros = row.get("metrics", {}).get("costMicros", 0)
                by_day[day] += micros_to_units(micros)
            except (KeyError, TypeError, ValueError) as exc:
                raise ParseError(f"Malformed search row: {row!r}", platform=self.platform.value) from exc

        result = [DailySpend(day, round(amount, 6)) for day, amount in sorted(by_day.items()) if amount > 0]
        logger.info(
            "[GOOGLE_SPEND] %d campaign rows, %d days with spend for customer %s",
            len(rows), len(result), customer_id,
        )
        return result

    # ------------------------------------------------------------------
    # Token refresh
    # ------------------------------------------------------------------

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        if not self.client_id or not self.client_secret:
            raise CredentialRefreshFailedError(
                "GOOGLE_ADS_CLIENT_ID and GOOGLE_ADS_CLIENT_SECRET are required to refresh Google tokens",
                platform=self.platform.value,
            )

        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        async with self._client() as client:
            response = await self._send(client, "POST", GOOGLE_TOKEN_URL, data=data)

        payload = self._parse_json(response, "refreshing access token")
        if not payload.get("access_token"):
            raise ParseError("Token response has no access_token", platform=self.platform.value)

        logger.info("[GOOGLE_SPEND] Access token refreshed (expires_in=%s)", payload.get("expires_in"))
        return TokenGrant(
            access_token=payload["access_token"],
            expires_in=payload.get("expires_in"),
            refresh_token=payload.get("refresh_token"),
        )
