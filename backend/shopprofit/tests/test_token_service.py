"""Tests for credential storage and token refresh.

REFERENCES:
    shopprofit/services/token_service.py
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from shopprofit.models import Integration, PlatformEnum
from shopprofit.services.errors import CredentialRefreshFailedError, NotConnectedError, ProviderError
from shopprofit.services.spend_adapter import TokenGrant
from shopprofit.services.token_service import (
    deactivate_integration,
    ensure_fresh_token,
    load_active_integration,
    load_credentials,
    select_account,
)

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class _RefreshAdapter:
    def __init__(self, grant=None, error=None):
        self.grant = grant
        self.error = error
        self.calls = []

    async def refresh_access_token(self, refresh_token):
        self.calls.append(refresh_token)
        if self.error:
            raise self.error
        return self.grant


def test_store_credentials_encrypts_and_activates(test_db_session, connect, shop):
    integration = connect("google", access_token="ya29-secret", refresh_token="r1")

    assert integration.is_active
    assert integration.last_sync is None
    assert "ya29-secret" not in integration.credentials
    assert load_credentials(integration).refresh_token == "r1"


def test_reconnect_updates_existing_row(test_db_session, connect, shop):
    first = connect("google", access_token="a")
    first.last_sync = datetime(2024, 3, 1)
    test_db_session.commit()

    second = connect("google", access_token="b")

    assert second.id == first.id
    assert second.last_sync is None
    assert test_db_session.query(Integration).count() == 1
    assert load_credentials(second).access_token == "b"


def test_load_active_integration_requires_active_row(test_db_session, connect, shop):
    with pytest.raises(NotConnectedError) as exc_info:
        load_active_integration(test_db_session, shop, "facebook")
    assert exc_info.value.to_user_message() == "Facebook is not connected"

    connect("facebook")
    assert deactivate_integration(test_db_session, shop, "facebook")
    with pytest.raises(NotConnectedError):
        load_active_integration(test_db_session, shop, PlatformEnum.facebook)

    assert not deactivate_integration(test_db_session, shop, "google")


def test_select_account_persists(test_db_session, connect, shop):
    integration = connect("google")

    select_account(test_db_session, integration, load_credentials(integration), "1234567890")

    test_db_session.expire_all()
    stored = load_active_integration(test_db_session, shop, "google")
    assert load_credentials(stored).selected_account_id == "1234567890"


def test_fresh_token_is_not_refreshed(test_db_session, connect):
    integration = connect("google", refresh_token="r1", expires_at=(NOW + timedelta(hours=1)).isoformat())
    adapter = _RefreshAdapter()

    creds, refreshed = asyncio.run(
        ensure_fresh_token(test_db_session, integration, load_credentials(integration), adapter, now=NOW)
    )

    assert not refreshed
    assert adapter.calls == []
    assert creds.access_token == "google-token"


def test_expired_token_is_refreshed_and_persisted(test_db_session, connect):
    integration = connect("google", refresh_token="r1", expires_at=(NOW - timedelta(minutes=1)).isoformat())
    adapter = _RefreshAdapter(grant=TokenGrant(access_token="fresh", expires_in=3600))

    creds, refreshed = asyncio.run(
        ensure_fresh_token(test_db_session, integration, load_credentials(integration), adapter, now=NOW)
    )

    assert refreshed
    assert adapter.calls == ["r1"]
    assert creds.access_token == "fresh"
    stored = load_credentials(integration)
    assert stored.access_token == "fresh"
    assert stored.refresh_token == "r1"
    assert stored.expires_at == NOW + timedelta(hours=1)


def test_expired_without_refresh_token_fails(test_db_session, connect):
    integration = connect("google", expires_at=(NOW - timedelta(minutes=1)).isoformat())

    with pytest.raises(CredentialRefreshFailedError):
        asyncio.run(ensure_fresh_token(
            test_db_session, integration, load_credentials(integration), _RefreshAdapter(), now=NOW,
        ))


def test_rejected_refresh_keeps_old_token(test_db_session, connect):
    integration = connect("google", refresh_token="r1", expires_at=(NOW - timedelta(minutes=1)).isoformat())
    adapter = _RefreshAdapter(error=ProviderError("invalid_grant", status_code=400, platform="google"))

    with pytest.raises(CredentialRefreshFailedError):
        asyncio.run(ensure_fresh_token(
            test_db_session, integration, load_credentials(integration), adapter, now=NOW,
        ))

    assert load_credentials(integration).access_token == "google-token"
