"""Symmetric encryption for stored platform credentials.

WHAT:
    Fernet wrapper used to encrypt the JSON credential blob of an
    Integration before it is written and to decrypt it when a sync runs.

WHY:
    Access and refresh tokens for ad accounts must not land in the database
    or in logs as plaintext.

REFERENCES:
    - shopprofit/services/credentials.py (encode/decode of the blob)
    - backend/generate_keys.py (creating a TOKEN_ENCRYPTION_KEY)
"""

import base64
import logging
import os

from cryptography.fernet import Fernet, InvalidToken


TOKEN_ENCRYPTION_KEY = os.getenv("TOKEN_ENCRYPTION_KEY", "")

logger = logging.getLogger(__name__)


if not TOKEN_ENCRYPTION_KEY:
    # Attempt to load from local .env if running in dev
    from shopprofit.utils.env import load_env_file
    load_env_file()
    TOKEN_ENCRYPTION_KEY = os.getenv("TOKEN_ENCRYPTION_KEY", "")

if not TOKEN_ENCRYPTION_KEY:
    raise RuntimeError(
        "TOKEN_ENCRYPTION_KEY is not set. Generate a Fernet key with "
        "backend/generate_keys.py and export it or add it to backend/.env."
    )

try:
    # Validate key length by decoding without storing plaintext material.
    base64.urlsafe_b64decode(TOKEN_ENCRYPTION_KEY.encode("utf-8"))
    _cipher = Fernet(TOKEN_ENCRYPTION_KEY)
except (ValueError, TypeError) as exc:
    raise RuntimeError(
        "TOKEN_ENCRYPTION_KEY must be a URL-safe base64-encoded 32-byte string. "
        "Generate with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
    ) from exc


def encrypt_secret(plaintext: str, *, context: str) -> str:
    """Encrypt a secret before persisting.

    Args:
        plaintext: Raw secret to encrypt (serialized credentials).
        context:   Friendly label for logs (shop/platform).

    Returns:
        URL-safe base64 ciphertext suitable for DB storage.
    """
    if not plaintext:
        raise ValueError("Cannot encrypt empty secret.")

    ciphertext = _cipher.encrypt(plaintext.encode("utf-8")).decode("utf-8")
    logger.debug("[TOKEN_ENCRYPT] Secret encrypted for %s (length=%d)", context, len(plaintext))
    return ciphertext


def decrypt_secret(ciphertext: str, *, context: str) -> str:
    """Reverse `encrypt_secret`.

    Raises:
        ValueError: If the stored value cannot be decrypted.
    """
    if not ciphertext:
        raise ValueError("Cannot decrypt empty secret.")

    try:
        plaintext = _cipher.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        logger.debug("[TOKEN_DECRYPT] Secret decrypted for %s (length=%d)", context, len(plaintext))
        return plaintext
    except InvalidToken as exc:
        logger.error("[TOKEN_DECRYPT] Invalid ciphertext for %s", context)
        raise ValueError("Unable to decrypt stored credentials.") from exc
