"""Common interface for ad platform spend adapters.

WHAT:
    `SpendAdapter` is the capability set every ad platform implements:
    list the accounts a credential can see, fetch per-day spend for one
    account, and exchange a refresh token for a new access token. Shared
    here are the canonical result types, the JSON error mapping and the
    cursor pagination loop with its page cap.

WHY:
    Platforms differ in paging style (Graph `paging.next` URLs vs Google
    `nextPageToken`), units (decimal strings vs micros) and auth flows. The
    orchestrator must not branch on platform names; it talks to this
    interface only.

PAGINATION RULES:
    - Follow cursors until exhausted or `max_pages` pages were read.
    - Hitting the cap is not an error: the rows read so far are returned.
    - An error on the first page is a hard failure (raised).
    - An error on a later page ends paging with the rows read so far.

REFERENCES:
    - shopprofit/services/meta_ads_client.py
    - shopprofit/services/google_ads_client.py
    - shopprofit/services/historical_sync_service.py (consumer)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from shopprofit.models import PlatformEnum
from shopprofit.services.errors import ParseError, ProviderError
from shopprofit.telemetry.sentry import capture_message

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 20
REQUEST_TIMEOUT_SECONDS = 30.0

# Called after each page with (page_number, rows_on_page)
PageCallback = Callable[[int, int], None]


@dataclass
class AdAccount:
    id: str
    name: Optional[str] = None


@dataclass(frozen=True)
class DailySpend:
    """Spend of one calendar day in standard currency units."""
    date: date
    amount: float


@dataclass
class TokenGrant:
    access_token: str
    expires_in: Optional[int] = None  # seconds
    refresh_token: Optional[str] = None


class SpendAdapter(ABC):
    """Capability interface implemented once per ad platform."""

    platform: PlatformEnum
    # Whether the first discovered account may be tracked without asking
    supports_auto_select: bool = False

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, max_pages: int = DEFAULT_MAX_PAGES):
        self._transport = transport
        self.max_pages = max_pages

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=REQUEST_TIMEOUT_SECONDS)

    @abstractmethod
    async def list_accounts(self, credentials) -> List[AdAccount]:
        """Accounts visible to the credential. Returns [] on any failure."""

    @abstractmethod
    async def fetch_daily_spend(
        self,
        credentials,
        account_id: str,
        start: date,
        end: date,
        on_page: Optional[PageCallback] = None,
    ) -> List[DailySpend]:
        """Per-day spend for [start, end], zero days dropped, sorted by date."""

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a fresh access token."""

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _parse_json(self, response: httpx.Response, context: str) -> Dict[str, Any]:
        """Decode a JSON body and map error payloads to ProviderError.

        Handles both `{"error": {"message": ...}}` (Graph, Google Ads) and
        OAuth style `{"error": "invalid_grant", "error_description": ...}`.
        """
        try:
            payload = response.json()
        except ValueError as exc:
            raise ParseError(
                f"{self.platform.value} returned non-JSON while {context} (HTTP {response.status_code})",
                platform=self.platform.value,
            ) from exc

        if not isinstance(payload, dict):
            raise ParseError(f"Unexpected {self.platform.value} response while {context}", platform=self.platform.value)

        error = payload.get("error")
        if error:
            if isinstance(error, dict):
                message = error.get("message") or error.get("status") or str(error)
            else:
                message = payload.get("error_description") or str(error)
            logger.error(
                "[%s] API error while %s: HTTP %s, %s",
                self.platform.value.upper(), context, response.status_code, message,
            )
            raise ProviderError(
                f"{self.platform.value} API error while {context}: {message}",
                status_code=response.status_code,
                platform=self.platform.value,
            )

        if response.status_code >= 400:
            raise ProviderError(
                f"{self.platform.value} API error while {context}: HTTP {response.status_code}",
                status_code=response.status_code,
                platform=self.platform.value,
            )

        return payload

    async def _collect_pages(
        self,
        fetch_page: Callable[[Optional[str]], Awaitable[Tuple[List[Any], Optional[str]]]],
        context: str,
        on_page: Optional[PageCallback] = None,
    ) -> List[Any]:
        """Drive `fetch_page(cursor) -> (rows, next_cursor)` until exhausted.

        See PAGINATION RULES in the module docstring.
        """
        rows: List[Any] = []
        cursor: Optional[str] = None
        page = 0

        while page < self.max_pages:
            try:
                page_rows, cursor = await fetch_page(cursor)
            except (ProviderError, ParseError) as exc:
                if page == 0:
                    raise
                logger.warning(
                    "[%s] Page %d failed while %s, keeping %d rows from earlier pages: %s",
                    self.platform.value.upper(), page + 1, context, len(rows), exc,
                )
                break

            page += 1
            rows.extend(page_rows)
            logger.debug("[%s] Page %d: %d rows (total %d)", self.platform.value.upper(), page, len(page_rows), len(rows))
            if on_page:
                on_page(page, len(page_rows))

            if not cursor:
                break
        else:
            logger.warning(
                "[%s] Stopped after %d pages while %s, result is partial",
                self.platform.value.upper(), self.max_pages, context,
            )
            capture_message(
                f"{self.platform.value} paging stopped at {self.max_pages} pages",
                level="warning",
                extra={"context": context, "rows": len(rows)},
            )

        return rows


def get_adapter(platform, **kwargs) -> SpendAdapter:
    """Return the adapter for an ad platform.

    Raises:
        ValueError: `platform` is not an ad platform.
    """
    platform = PlatformEnum(platform)
    if platform == PlatformEnum.facebook:
        from shopprofit.services.meta_ads_client import MetaSpendAdapter
        return MetaSpendAdapter(**kwargs)
    if platform == PlatformEnum.google:
        from shopprofit.services.google_ads_client import GoogleSpendAdapter
        return GoogleSpendAdapter(**kwargs)
    raise ValueError(f"{platform.value} is not an ad platform")
