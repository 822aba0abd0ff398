"""
Telemetry Module
================

Observability for shopprofit.

Components:
- sentry.py: Error tracking for handled and unhandled failures
- sync_telemetry.py: Structured events emitted by the historical sync state machine

Environment Variables:
- SENTRY_DSN: Sentry project DSN

Usage:
    from shopprofit.telemetry import init_observability

    init_observability()  # once, on app startup
"""

from shopprofit.telemetry.sentry import (
    capture_exception,
    capture_message,
    init_sentry,
    set_shop_context,
)
from shopprofit.telemetry.sync_telemetry import SyncEvent, SyncEventType, SyncTelemetry


def init_observability() -> dict:
    """Initialize all observability tools and report which ones are active."""
    return {"sentry": init_sentry()}


__all__ = [
    "init_observability",
    "init_sentry",
    "set_shop_context",
    "capture_exception",
    "capture_message",
    "SyncEvent",
    "SyncEventType",
    "SyncTelemetry",
]
