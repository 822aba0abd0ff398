"""Error taxonomy for syncing and reconciling costs.

WHAT:
    One exception class per failure kind a sync can end in. Adapters, the
    token service and the cost ledger raise these; the historical sync
    orchestrator catches them and turns them into a failed SyncResult.

WHY:
    Callers (UI, background auto-sync) only ever see a structured result with
    a stable `code`, so a failing platform never breaks the dashboard.

REFERENCES:
    - shopprofit/services/historical_sync_service.py: the catching boundary
"""

from typing import Any, Dict, Optional


class ProfitEngineError(Exception):
    """Base class for all handled sync and ledger errors."""

    code = "profit_engine_error"

    def __init__(self, message: str, *, platform: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.platform = platform
        self.details = details or {}

    def to_user_message(self) -> str:
        return self.message


class NotConnectedError(ProfitEngineError):
    """No active integration or no stored credentials."""

    code = "not_connected"

    def to_user_message(self) -> str:
        if self.platform:
            return f"{self.platform.capitalize()} is not connected"
        return self.message


class NoAccountSelectedError(ProfitEngineError):
    """No external ad account chosen and none could be picked automatically."""

    code = "no_account_selected"


class CredentialRefreshFailedError(ProfitEngineError):
    """Token was expired and could not be refreshed. The sync must not continue."""

    code = "credential_refresh_failed"


class ProviderError(ProfitEngineError):
    """Remote API returned an error payload or a non-success status."""

    code = "provider_error"

    def __init__(self, message: str, *, status_code: Optional[int] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class ParseError(ProfitEngineError):
    """Provider response or stored credentials could not be understood."""

    code = "parse_error"


class PersistenceError(ProfitEngineError):
    """A store operation failed."""

    code = "persistence_error"
