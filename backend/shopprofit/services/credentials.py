"""Typed platform credentials.

WHAT:
    Pydantic models for the credential blob stored on an Integration, one
    variant per platform, discriminated by `platform`. Blobs are encrypted
    JSON on disk and decoded here, at the boundary, into typed objects.

WHY:
    Each platform stores slightly different things (Google needs a refresh
    token, Meta has no real refresh flow, Shopify tokens never expire).
    Passing untyped dicts around hid missing keys until an API call failed.

    Blobs written by the older admin app use camelCase keys and epoch
    milliseconds for `expiresAt`; both shapes are accepted on decode.

REFERENCES:
    - shopprofit/security.py (encrypt_secret / decrypt_secret)
    - shopprofit/services/token_service.py (load / store / refresh)
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from shopprofit.security import decrypt_secret, encrypt_secret
from shopprofit.services.errors import NotConnectedError, ParseError

logger = logging.getLogger(__name__)


class _PlatformCredentials(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(validation_alias=AliasChoices("access_token", "accessToken"))
    refresh_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("refresh_token", "refreshToken")
    )
    expires_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("expires_at", "expiresAt")
    )
    scope: Optional[str] = None
    selected_account_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "selected_account_id", "selectedAccountId", "selectedAdAccountId", "selectedCustomerId"
        ),
    )

    @field_validator("expires_at", mode="before")
    @classmethod
    def _from_epoch(cls, value):
        # Legacy blobs store epoch milliseconds
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            seconds = value / 1000 if value > 10_000_000_000 else value
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        return value

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once `expires_at` has passed. No expiry means never expires."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now >= self.expires_at

    def with_token(self, access_token: str, expires_in: Optional[int], refresh_token: Optional[str] = None,
                   now: Optional[datetime] = None):
        """Copy with a newly issued access token."""
        now = now or datetime.now(timezone.utc)
        return self.model_copy(update={
            "access_token": access_token,
            "expires_at": now + timedelta(seconds=expires_in) if expires_in else None,
            "refresh_token": refresh_token or self.refresh_token,
        })

    def with_account(self, account_id: str):
        return self.model_copy(update={"selected_account_id": account_id})


class MetaCredentials(_PlatformCredentials):
    platform: Literal["facebook"] = "facebook"


class GoogleCredentials(_PlatformCredentials):
    platform: Literal["google"] = "google"
    login_customer_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("login_customer_id", "loginCustomerId")
    )


class ShopifyCredentials(_PlatformCredentials):
    platform: Literal["shopify"] = "shopify"


Credentials = Annotated[
    Union[MetaCredentials, GoogleCredentials, ShopifyCredentials],
    Field(discriminator="platform"),
]

_credentials_adapter = TypeAdapter(Credentials)


def parse_credentials(platform: str, data: dict) -> Credentials:
    """Validate a plain dict (e.g. from the credential provider) for `platform`.

    Raises:
        ParseError: Unknown platform or missing/invalid fields.
    """
    payload = dict(data)
    payload["platform"] = platform
    try:
        return _credentials_adapter.validate_python(payload)
    except ValidationError as exc:
        raise ParseError(f"Invalid {platform} credentials: {exc.error_count()} error(s)", platform=platform) from exc


def decode_credentials(platform: str, blob: Optional[str]) -> Credentials:
    """Decrypt and validate the credential blob stored on an Integration.

    Raises:
        NotConnectedError: Nothing stored.
        ParseError: Blob cannot be decrypted or does not match the platform shape.
    """
    if not blob:
        raise NotConnectedError(f"No credentials stored for {platform}", platform=platform)

    try:
        raw = json.loads(decrypt_secret(blob, context=f"{platform} credentials"))
    except ValueError as exc:
        # JSONDecodeError is a ValueError too
        raise ParseError(f"Stored {platform} credentials are unreadable", platform=platform) from exc

    if not isinstance(raw, dict):
        raise ParseError(f"Stored {platform} credentials are not an object", platform=platform)

    return parse_credentials(platform, raw)


def encode_credentials(credentials: Credentials) -> str:
    """Serialize and encrypt credentials for storage."""
    plaintext = credentials.model_dump_json(exclude_none=True)
    return encrypt_secret(plaintext, context=f"{credentials.platform} credentials")
