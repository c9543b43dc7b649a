"""Security utilities for Shopify session tokens and access-token encryption.

WHAT:
    - Symmetric encryption for merchant Admin API tokens (Fernet)
    - Verification of App Bridge session tokens (HS256 JWT)

WHY:
    - Tokens must never land in the database or logs as plaintext.
    - The embedded admin authenticates every request with a short-lived
      session token signed with the app's API secret.

REFERENCES:
    - https://shopify.dev/docs/apps/build/authentication-authorization/session-tokens
    - storechat/deps.py::get_current_shop
"""

import base64
import logging
import os
from typing import Any, Dict
from urllib.parse import urlparse

from cryptography.fernet import Fernet, InvalidToken
from jose import jwt, JWTError


ALGORITHM = "HS256"
# Clock skew tolerated on nbf/exp; App Bridge tokens live for one minute
SESSION_TOKEN_LEEWAY_SECONDS = 10
TOKEN_ENCRYPTION_KEY = os.getenv("TOKEN_ENCRYPTION_KEY", "")

logger = logging.getLogger(__name__)


if not TOKEN_ENCRYPTION_KEY:
    # Attempt to load from local .env if running in dev
    from storechat.utils.env import load_env_file
    load_env_file()
    TOKEN_ENCRYPTION_KEY = os.getenv("TOKEN_ENCRYPTION_KEY", "")

if not TOKEN_ENCRYPTION_KEY:
    raise RuntimeError(
        "TOKEN_ENCRYPTION_KEY is not set. Generate a 32-byte Fernet key and export it "
        "or add it to .env."
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
    """Encrypt a merchant secret before persisting.

    Args:
        plaintext: Raw secret to encrypt (e.g., Shopify offline access token).
        context:   Friendly label for logs (usually the shop domain).

    Returns:
        URL-safe base64 ciphertext suitable for DB storage.
    """
    if not plaintext:
        raise ValueError("Cannot encrypt empty secret.")

    ciphertext = _cipher.encrypt(plaintext.encode("utf-8")).decode("utf-8")
    logger.info("[TOKEN_ENCRYPT] Secret encrypted for %s (length=%d)", context, len(plaintext))
    return ciphertext


def decrypt_secret(ciphertext: str, *, context: str) -> str:
    """Decrypt a merchant secret for an Admin API call.

    Raises:
        ValueError: If the stored value cannot be decrypted.
    """
    if not ciphertext:
        raise ValueError("Cannot decrypt empty secret.")

    try:
        plaintext = _cipher.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        logger.info("[TOKEN_DECRYPT] Secret decrypted for %s (length=%d)", context, len(plaintext))
        return plaintext
    except InvalidToken as exc:
        logger.error("[TOKEN_DECRYPT] Invalid ciphertext for %s", context)
        raise ValueError("Unable to decrypt stored token.") from exc


def decode_session_token(token: str, *, api_secret: str, api_key: str) -> Dict[str, Any]:
    """Decode and validate an App Bridge session token.

    Checks the signature, expiry and audience. The caller still has to check
    that the `dest` host belongs to a tenant.

    Raises jose.JWTError on failure.
    """
    if not api_secret:
        raise JWTError("Session token secret is not configured")

    return jwt.decode(
        token,
        api_secret,
        algorithms=[ALGORITHM],
        audience=api_key or None,
        options={"leeway": SESSION_TOKEN_LEEWAY_SECONDS, "verify_aud": bool(api_key)},
    )


def shop_from_session_payload(payload: Dict[str, Any]) -> str:
    """Return the shop host from a decoded session token's `dest` claim."""
    dest = payload.get("dest") or ""
    host = urlparse(dest).hostname if "://" in dest else dest
    return (host or "").strip().lower()
