"""Single-flight gate for syncs keyed by (shop, platform).

WHAT:
    Runs at most one sync per (shop, platform) at a time. A caller arriving
    while a sync is in flight awaits that sync and gets its result, provided
    the running sync covers at least as many days. A wider request waits for
    the running one to finish and then runs itself.

WHY:
    A user pressing "Sync" while the dashboard's background auto-sync runs
    would otherwise have two writers racing on the same ledger days. A
    90-day backfill must not settle for the result of a 3-day auto-sync.

REFERENCES:
    - shopprofit/services/sync_scheduler.py (background auto-sync)
    - shopprofit/routers/integrations.py (manual sync)
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncGate:
    def __init__(self):
        self._in_flight: Dict[Tuple[str, str], Tuple[asyncio.Future, Optional[int]]] = {}

    def is_running(self, shop: str, platform: str) -> bool:
        return (shop, platform) in self._in_flight

    async def run(
        self,
        shop: str,
        platform: str,
        factory: Callable[[], Awaitable[T]],
        days: Optional[int] = None,
    ) -> T:
        """Run `factory()` unless an in-flight run for the key covers `days`; share its result.

        `days=None` joins any in-flight run. An in-flight run with unknown
        `days` is treated as covering every request.
        """
        key = (shop, platform)
        while key in self._in_flight:
            existing, running_days = self._in_flight[key]
            if days is None or running_days is None or running_days >= days:
                logger.info("[SYNC_GATE] Joining in-flight %s sync for %s", platform, shop)
                return await asyncio.shield(existing)

            logger.info(
                "[SYNC_GATE] Waiting for in-flight %d-day %s sync for %s before a %d-day run",
                running_days, platform, shop, days,
            )
            # Outcome belongs to the other caller; only wait for completion
            await asyncio.wait({existing})

        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = (future, days)
        try:
            result = await factory()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so an unjoined failure is not reported as never awaited
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._in_flight.pop(key, None)


# Process-wide gate shared by request handlers and background tasks
sync_gate = SyncGate()
