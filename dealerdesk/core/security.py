"""
core/security.py
----------------
Password hashing and bearer-token utilities.

Token format (shared with the existing web client):

    base64url(JSON(claims)) + "." + base64url(HMAC-SHA256(SECRET_KEY, <first part>))

Both parts are unpadded base64url. The codec itself is stateless and knows
nothing about expiry; access tokens are stamped with `iat` / `exp` by
create_access_token() and checked by verify_access_token().

Passwords are stored as "hex(salt):hex(scrypt key)".
"""

import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from datetime import timedelta
from typing import Any, Dict, Optional

from dealerdesk.core.config import settings

# scrypt parameters: N=2**14, r=8, p=1 with a 64-byte key
SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1
SCRYPT_KEY_LENGTH = 64
SALT_BYTES = 16

RESET_TOKEN_BYTES = 24


# ── base64url helpers ─────────────────────────────────────────────────────────

def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _signature(base: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), base.encode("utf-8"), hashlib.sha256).digest()
    return _b64url_encode(digest)


# ── Token codec ───────────────────────────────────────────────────────────────

def encode_token(claims: Dict[str, Any], secret: Optional[str] = None) -> str:
    """Sign a claims mapping into a compact bearer token."""
    secret = secret or settings.SECRET_KEY
    base = _b64url_encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
    return f"{base}.{_signature(base, secret)}"


def decode_token(token: Optional[str], secret: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Verify the signature and return the claims, or None.

    None is returned for empty or malformed tokens, signature mismatches
    (compared in constant time) and payloads that are not a JSON object.
    """
    if not token:
        return None
    base, sep, sig = token.partition(".")
    if not sep or not base or not sig:
        return None

    expected = _signature(base, secret or settings.SECRET_KEY)
    try:
        sig_bytes = sig.encode("utf-8")
    except UnicodeEncodeError:
        return None
    expected_bytes = expected.encode("ascii")
    if len(sig_bytes) != len(expected_bytes):
        return None
    if not hmac.compare_digest(sig_bytes, expected_bytes):
        return None

    try:
        payload = json.loads(_b64url_decode(base).decode("utf-8"))
    except (ValueError, binascii.Error, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def create_access_token(
    user_id: int,
    email: str,
    role: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Mint an access token for a user.

    The role claim is informational only; authorization always reloads the
    user from the database.
    """
    now = int(time.time())
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "id": user_id,
        "email": email,
        "role": role,
        "iat": now,
        "exp": now + int(lifetime.total_seconds()),
    }
    return encode_token(claims)


def verify_access_token(token: Optional[str]) -> Optional[Dict[str, Any]]:
    """Decode a token and reject it when `exp` is missing or in the past."""
    payload = decode_token(token)
    if payload is None:
        return None
    exp = payload.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    if exp <= time.time():
        return None
    return payload


# ── Password codec ────────────────────────────────────────────────────────────

def _derive_key(password: str, salt: bytes) -> bytes:
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt,
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
        dklen=SCRYPT_KEY_LENGTH,
    )


def hash_password(plain: str) -> str:
    """Return the "salt:key" hex form of a freshly salted scrypt hash."""
    salt = secrets.token_bytes(SALT_BYTES)
    return f"{salt.hex()}:{_derive_key(plain, salt).hex()}"


def verify_password(plain: str, stored: Optional[str]) -> bool:
    """Constant-time comparison of plain password against the stored form."""
    salt_hex, _, key_hex = (stored or "").partition(":")
    if not salt_hex or not key_hex:
        return False
    try:
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(key_hex)
    except ValueError:
        return False
    return hmac.compare_digest(_derive_key(plain, salt), expected)


# ── Password reset tokens ─────────────────────────────────────────────────────

def generate_reset_token() -> str:
    return secrets.token_hex(RESET_TOKEN_BYTES)


def hash_reset_token(raw_token: str) -> str:
    """Only the sha256 of a reset token is ever persisted."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()
