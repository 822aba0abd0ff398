"""
Sync Telemetry Tests (Unit)
===========================

WHAT: Events recorded by SyncTelemetry for each state transition of a sync.
WHY: Sync logs are the first thing read when a merchant reports missing spend.

REFERENCES:
- backend/shopprofit/telemetry/sync_telemetry.py
"""

import logging

from shopprofit.telemetry.sync_telemetry import SyncEventType, SyncTelemetry


def test_events_are_recorded_in_order() -> None:
    telemetry = SyncTelemetry("demo.myshopify.com", "google")

    telemetry.started(30)
    telemetry.page_fetched(1, 120)
    telemetry.day_reconciled("2024-03-01", 35.5)
    telemetry.completed(35.5, 1)

    assert [event.event_type for event in telemetry.events] == [
        SyncEventType.SYNC_STARTED,
        SyncEventType.PAGE_FETCHED,
        SyncEventType.DAY_RECONCILED,
        SyncEventType.SYNC_COMPLETED,
    ]
    completed = telemetry.of_type(SyncEventType.SYNC_COMPLETED)[0]
    assert completed.data["total_amount"] == 35.5
    assert completed.data["stored_days"] == 1
    assert telemetry.of_type(SyncEventType.PAGE_FETCHED)[0].level == logging.DEBUG


def test_failed_event_serializes() -> None:
    telemetry = SyncTelemetry("demo.myshopify.com", "facebook")

    telemetry.failed("provider_error", "quota exceeded")

    event = telemetry.events[0]
    assert event.level == logging.WARNING
    assert event.to_dict()["event_type"] == "sync.failed"
    assert event.to_dict()["data"]["error_code"] == "provider_error"
    assert event.to_log_line().startswith("sync.failed | shop=demo.myshopify.com platform=facebook")
    assert "error_code=provider_error" in event.to_log_line()


def test_events_are_logged(caplog) -> None:
    telemetry = SyncTelemetry("demo.myshopify.com", "google")

    with caplog.at_level(logging.INFO):
        telemetry.account_selected("act_1", auto=True)

    assert "account.selected | shop=demo.myshopify.com" in caplog.text
    assert "account_id=act_1" in caplog.text
