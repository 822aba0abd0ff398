"""Tests for sync triggering: single-flight gate, timeouts and auto-sync.

REFERENCES:
    shopprofit/services/sync_gate.py
    shopprofit/services/sync_scheduler.py
"""

import asyncio
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from shopprofit.schemas import SyncResult
from shopprofit.services import sync_scheduler
from shopprofit.services.sync_gate import SyncGate
from shopprofit.services.sync_scheduler import (
    run_gated_sync,
    schedule_auto_syncs,
    schedule_initial_backfill,
    should_auto_sync,
)

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# SyncGate
# ============================================================================

def test_concurrent_runs_share_one_sync():
    gate = SyncGate()
    calls = []

    async def factory():
        calls.append(1)
        await asyncio.sleep(0.01)
        return "done"

    async def main():
        first = asyncio.create_task(gate.run("shop", "google", factory))
        await asyncio.sleep(0)
        assert gate.is_running("shop", "google")
        second = asyncio.create_task(gate.run("shop", "google", factory))
        return await asyncio.gather(first, second)

    assert asyncio.run(main()) == ["done", "done"]
    assert len(calls) == 1
    assert not gate.is_running("shop", "google")


def test_different_platforms_run_independently():
    gate = SyncGate()
    calls = []

    async def factory():
        calls.append(1)
        await asyncio.sleep(0)
        return len(calls)

    async def main():
        return await asyncio.gather(
            gate.run("shop", "google", factory),
            gate.run("shop", "facebook", factory),
        )

    asyncio.run(main())
    assert len(calls) == 2


def test_failure_reaches_joiners_and_frees_the_key():
    gate = SyncGate()

    async def factory():
        await asyncio.sleep(0.01)
        raise RuntimeError("boom")

    async def main():
        first = asyncio.create_task(gate.run("shop", "google", factory))
        await asyncio.sleep(0)
        second = asyncio.create_task(gate.run("shop", "google", factory))
        return await asyncio.gather(first, second, return_exceptions=True)

    results = asyncio.run(main())
    assert all(isinstance(result, RuntimeError) for result in results)
    assert not gate.is_running("shop", "google")


def test_wider_request_waits_then_runs_its_own_sync():
    gate = SyncGate()
    calls = []

    def factory_for(days):
        async def factory():
            calls.append(days)
            await asyncio.sleep(0.01)
            return days
        return factory

    async def main():
        short = asyncio.create_task(gate.run("shop", "facebook", factory_for(3), days=3))
        await asyncio.sleep(0)
        backfill = asyncio.create_task(gate.run("shop", "facebook", factory_for(90), days=90))
        await asyncio.sleep(0)
        assert calls == [3]
        return await asyncio.gather(short, backfill)

    assert asyncio.run(main()) == [3, 90]
    assert calls == [3, 90]
    assert not gate.is_running("shop", "facebook")


def test_narrower_request_joins_wider_sync():
    gate = SyncGate()
    calls = []

    async def factory():
        calls.append(1)
        await asyncio.sleep(0.01)
        return "backfill"

    async def main():
        backfill = asyncio.create_task(gate.run("shop", "facebook", factory, days=90))
        await asyncio.sleep(0)
        auto = asyncio.create_task(gate.run("shop", "facebook", factory, days=3))
        return await asyncio.gather(backfill, auto)

    assert asyncio.run(main()) == ["backfill", "backfill"]
    assert len(calls) == 1


def test_wider_request_still_runs_after_failed_sync():
    gate = SyncGate()
    calls = []

    async def failing():
        calls.append(3)
        await asyncio.sleep(0.01)
        raise RuntimeError("boom")

    async def backfill():
        calls.append(90)
        return "ok"

    async def main():
        short = asyncio.create_task(gate.run("shop", "google", failing, days=3))
        await asyncio.sleep(0)
        wide = asyncio.create_task(gate.run("shop", "google", backfill, days=90))
        return await asyncio.gather(short, wide, return_exceptions=True)

    short_result, wide_result = asyncio.run(main())
    assert isinstance(short_result, RuntimeError)
    assert wide_result == "ok"
    assert calls == [3, 90]


# ============================================================================
# run_gated_sync
# ============================================================================

def test_run_gated_sync_times_out(monkeypatch, test_db_session, shop):
    async def slow_sync(db, shop, platform, days, **kwargs):
        await asyncio.sleep(5)

    monkeypatch.setattr(sync_scheduler, "sync_historical", slow_sync)

    result = asyncio.run(run_gated_sync(test_db_session, shop, "google", 3, timeout=0.05, gate=SyncGate()))

    assert not result.success
    assert result.error_code == "timeout"
    assert result.platform == "google"


def test_run_gated_sync_passes_result_through(monkeypatch, test_db_session, shop):
    async def fake_sync(db, shop, platform, days, **kwargs):
        return SyncResult(success=True, platform=platform, stored_days=days)

    monkeypatch.setattr(sync_scheduler, "sync_historical", fake_sync)

    result = asyncio.run(run_gated_sync(test_db_session, shop, "facebook", 7, timeout=1, gate=SyncGate()))

    assert result.success
    assert result.stored_days == 7


def test_backfill_during_auto_sync_reconciles_full_range(monkeypatch, test_db_session, shop):
    calls = []

    async def fake_sync(db, shop, platform, days, **kwargs):
        calls.append(days)
        await asyncio.sleep(0.01)
        return SyncResult(success=True, platform=platform, stored_days=days)

    monkeypatch.setattr(sync_scheduler, "sync_historical", fake_sync)
    gate = SyncGate()

    async def main():
        auto = asyncio.create_task(run_gated_sync(test_db_session, shop, "facebook", 3, timeout=1, gate=gate))
        await asyncio.sleep(0)
        backfill = asyncio.create_task(run_gated_sync(test_db_session, shop, "facebook", 90, timeout=1, gate=gate))
        return await asyncio.gather(auto, backfill)

    auto_result, backfill_result = asyncio.run(main())

    assert calls == [3, 90]
    assert auto_result.stored_days == 3
    assert backfill_result.stored_days == 90


# ============================================================================
# Auto-sync
# ============================================================================

def test_should_auto_sync():
    interval = timedelta(minutes=60)
    never = SimpleNamespace(last_sync=None)
    recent = SimpleNamespace(last_sync=datetime(2024, 3, 10, 11, 30))
    stale = SimpleNamespace(last_sync=datetime(2024, 3, 10, 10, 0))

    assert should_auto_sync(never, NOW, interval)
    assert not should_auto_sync(recent, NOW, interval)
    assert should_auto_sync(stale, NOW, interval)


def test_schedule_auto_syncs_only_for_stale_active_ad_integrations(monkeypatch, test_db_session, connect, shop):
    connect("google", selected_account_id="1")
    facebook = connect("facebook")
    facebook.last_sync = datetime(2024, 3, 10, 11, 45)
    test_db_session.commit()
    connect("shopify")

    started_runs = []

    async def fake_background_sync(shop, platform, days, session_factory):
        started_runs.append((shop, platform, days))

    monkeypatch.setattr(sync_scheduler, "_background_sync", fake_background_sync)

    async def main():
        started = schedule_auto_syncs(test_db_session, shop, now=NOW)
        await asyncio.sleep(0)
        return started

    assert asyncio.run(main()) == ["google"]
    assert started_runs == [(shop, "google", 3)]


def test_background_sync_uses_its_own_session(monkeypatch, session_factory, test_db_session, shop):
    used_sessions = []

    async def fake_sync(db, shop, platform, days, **kwargs):
        used_sessions.append(db)
        return SyncResult(success=False, platform=platform, error="Google is not connected", error_code="not_connected")

    monkeypatch.setattr(sync_scheduler, "sync_historical", fake_sync)

    @contextmanager
    def own_session():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    async def main():
        return await schedule_initial_backfill(shop, "google", 30, session_factory=own_session)

    result = asyncio.run(main())

    assert result.error_code == "not_connected"
    assert used_sessions and used_sessions[0] is not test_db_session


def test_background_sync_crash_is_contained(monkeypatch, shop):
    captured = []
    monkeypatch.setattr(sync_scheduler, "capture_exception", lambda exc, extra=None: captured.append(exc))

    @contextmanager
    def broken_session():
        raise RuntimeError("database unavailable")
        yield  # pragma: no cover

    async def main():
        return await schedule_initial_backfill(shop, "facebook", 5, session_factory=broken_session)

    assert asyncio.run(main()) is None
    assert isinstance(captured[0], RuntimeError)


def test_initial_backfill_rejects_unknown_platform(shop):
    with pytest.raises(ValueError):
        schedule_initial_backfill(shop, "tiktok")
