"""
Historical Sync Telemetry
=========================

Structured, leveled events for the historical sync state machine.

WHY THIS FILE EXISTS
--------------------
A background sync that fails silently is indistinguishable from one that
found no spend. Every transition of a sync emits one event, so a log search
for a shop and platform shows exactly how far a run got.

TELEMETRY EVENTS
----------------
1. sync.started       - days requested
2. token.refreshed    - access token was expired and has been replaced
3. account.selected   - account_id, auto (True when picked automatically)
4. page.fetched       - page number and rows on that page
5. day.reconciled     - day and amount written to the cost ledger
6. sync.completed     - total_amount, stored_days, duration_ms
7. sync.failed        - error_code, error_message, duration_ms

LOGGING FORMAT:
    [HISTORICAL_SYNC] sync.completed | shop=demo.myshopify.com platform=google total_amount=41.5

USAGE
-----
```python
telemetry = SyncTelemetry("demo.myshopify.com", "google")
telemetry.started(days=90)
...
telemetry.completed(total_amount=41.5, stored_days=3)
```

RELATED FILES
-------------
- shopprofit/services/historical_sync_service.py: emits these events
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class SyncEventType(Enum):
    """Transitions of a historical sync."""
    SYNC_STARTED = "sync.started"
    TOKEN_REFRESHED = "token.refreshed"
    ACCOUNT_SELECTED = "account.selected"
    PAGE_FETCHED = "page.fetched"
    DAY_RECONCILED = "day.reconciled"
    SYNC_COMPLETED = "sync.completed"
    SYNC_FAILED = "sync.failed"


@dataclass
class SyncEvent:
    """Single telemetry event.

    PARAMETERS:
        event_type: Which transition happened
        shop: Tenant the sync runs for
        platform: Ad platform being synced
        timestamp: When it happened (ISO format, UTC)
        level: logging level used when the event is emitted
        data: Event specific fields
    """
    event_type: SyncEventType
    shop: str
    platform: str
    timestamp: str
    level: int = logging.INFO
    data: Dict[str, Any] = dataclass_field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "shop": self.shop,
            "platform": self.platform,
            "timestamp": self.timestamp,
            "data": self.data,
        }

    def to_log_line(self) -> str:
        parts = [f"shop={self.shop}", f"platform={self.platform}"]
        parts.extend(f"{key}={value}" for key, value in self.data.items())
        return f"{self.event_type.value} | " + " ".join(parts)


class SyncTelemetry:
    """Collects and logs the events of one sync invocation.

    Events are kept on `events` so callers and tests can inspect a run
    after it finished.
    """

    def __init__(self, shop: str, platform: str, log: Optional[logging.Logger] = None):
        self.shop = shop
        self.platform = platform
        self.events: List[SyncEvent] = []
        self._log = log or logger
        self._started_at = time.monotonic()

    def record(self, event_type: SyncEventType, level: int = logging.INFO, **data: Any) -> SyncEvent:
        event = SyncEvent(
            event_type=event_type,
            shop=self.shop,
            platform=self.platform,
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            data=data,
        )
        self.events.append(event)
        self._log.log(level, "[HISTORICAL_SYNC] %s", event.to_log_line())
        return event

    def _elapsed_ms(self) -> float:
        return round((time.monotonic() - self._started_at) * 1000, 2)

    # Transition helpers -------------------------------------------------

    def started(self, days: int) -> None:
        self._started_at = time.monotonic()
        self.record(SyncEventType.SYNC_STARTED, days=days)

    def token_refreshed(self) -> None:
        self.record(SyncEventType.TOKEN_REFRESHED)

    def account_selected(self, account_id: str, auto: bool) -> None:
        self.record(SyncEventType.ACCOUNT_SELECTED, account_id=account_id, auto=auto)

    def page_fetched(self, page: int, rows: int) -> None:
        self.record(SyncEventType.PAGE_FETCHED, logging.DEBUG, page=page, rows=rows)

    def day_reconciled(self, day: str, amount: float) -> None:
        self.record(SyncEventType.DAY_RECONCILED, logging.DEBUG, day=day, amount=round(amount, 2))

    def completed(self, total_amount: float, stored_days: int) -> None:
        self.record(
            SyncEventType.SYNC_COMPLETED,
            total_amount=round(total_amount, 2),
            stored_days=stored_days,
            duration_ms=self._elapsed_ms(),
        )

    def failed(self, error_code: str, error_message: str) -> None:
        self.record(
            SyncEventType.SYNC_FAILED,
            logging.WARNING,
            error_code=error_code,
            error_message=error_message,
            duration_ms=self._elapsed_ms(),
        )

    def of_type(self, event_type: SyncEventType) -> List[SyncEvent]:
        return [event for event in self.events if event.event_type is event_type]
