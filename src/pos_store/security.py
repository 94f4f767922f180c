"""
Credential primitives used by the session manager.

- Passwords and security answers are hashed with bcrypt. Each user carries
  its own salt; verification re-derives the hash from the supplied secret
  and the stored salt and compares in constant time.
- Password policy: at least 12 characters with upper case, lower case,
  digit and special character. bcrypt only reads 72 bytes, so longer
  passwords are refused.
- Second factor: RFC 6238 TOTP (SHA-1, 6 digits, 30 s period) accepting
  codes up to four periods before or after the current one.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import re
import secrets
import string
import struct
from datetime import datetime
from typing import List, Optional
from urllib.parse import quote

import bcrypt


BCRYPT_MAX_BYTES = 72
MIN_PASSWORD_LENGTH = 12
SPECIAL_CHARACTERS = '!@#$%^&*(),.?":{}|<>'

TOTP_DIGITS = 6
TOTP_PERIOD_SECONDS = 30
TOTP_WINDOW = 4
TOTP_ISSUER = "POS Store"

_INVITE_ALPHABET = string.ascii_uppercase + string.digits
_TOKEN_JUNK = re.compile(r"[\s-]")


def generate_salt(rounds: int = 12) -> str:
    return bcrypt.gensalt(rounds=rounds).decode("ascii")


def hash_password(password: str, salt: str) -> str:
    """Derive the bcrypt hash of ``password`` under ``salt``.

    Raises:
        ValueError: If ``salt`` is not a bcrypt salt or the password is too long.
    """
    encoded = password.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        raise ValueError(f"Password exceeds {BCRYPT_MAX_BYTES} bytes")
    return bcrypt.hashpw(encoded, salt.encode("ascii")).decode("ascii")


def verify_password(password: str, salt: str, stored_hash: str) -> bool:
    """Return True if ``password`` hashes to ``stored_hash`` under ``salt``."""
    if not salt or not stored_hash:
        return False
    try:
        derived = hash_password(password, salt)
    except ValueError:
        return False
    return hmac.compare_digest(derived.encode("ascii"), stored_hash.encode("ascii"))


def hash_security_answer(answer: str, salt: str) -> str:
    return hash_password(normalize_security_answer(answer), salt)


def verify_security_answer(answer: str, salt: str, stored_hash: Optional[str]) -> bool:
    if not stored_hash:
        return False
    return verify_password(normalize_security_answer(answer), salt, stored_hash)


def normalize_security_answer(answer: str) -> str:
    return answer.strip().lower()


def validate_password_policy(password: str) -> List[str]:
    """Return the list of policy violations; empty means acceptable."""
    errors: List[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"At least {MIN_PASSWORD_LENGTH} characters")
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        errors.append(f"At most {BCRYPT_MAX_BYTES} bytes")
    if not re.search(r"[A-Z]", password):
        errors.append("At least one upper-case letter")
    if not re.search(r"[a-z]", password):
        errors.append("At least one lower-case letter")
    if not re.search(r"[0-9]", password):
        errors.append("At least one digit")
    if not any(char in SPECIAL_CHARACTERS for char in password):
        errors.append("At least one special character")
    return errors


def is_password_strong(password: str) -> bool:
    return not validate_password_policy(password)


# ---------------------------------------------------------------------------
# One-time codes
# ---------------------------------------------------------------------------


def generate_invite_code() -> str:
    """Two groups of five upper-case alphanumerics, e.g. ``K3Q9Z-A0B1C``."""
    groups = ["".join(secrets.choice(_INVITE_ALPHABET) for _ in range(5)) for _ in range(2)]
    return "-".join(groups)


def generate_recovery_code() -> str:
    return secrets.token_hex(4).upper()


def generate_totp_secret() -> str:
    """Random 160-bit secret in unpadded base32."""
    return base64.b32encode(secrets.token_bytes(20)).decode("ascii").rstrip("=")


def _decode_secret(secret: str) -> bytes:
    cleaned = _TOKEN_JUNK.sub("", secret).upper()
    padding = "=" * (-len(cleaned) % 8)
    return base64.b32decode(cleaned + padding)


def totp_code(secret: str, counter: int) -> str:
    """HOTP value for ``counter`` (RFC 4226 dynamic truncation)."""
    key = _decode_secret(secret)
    digest = hmac.new(key, struct.pack(">Q", counter), hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    value = struct.unpack(">I", digest[offset:offset + 4])[0] & 0x7FFFFFFF
    return str(value % (10 ** TOTP_DIGITS)).zfill(TOTP_DIGITS)


def totp_counter(moment: datetime) -> int:
    return int(moment.timestamp()) // TOTP_PERIOD_SECONDS


def current_totp(secret: str, moment: datetime) -> str:
    return totp_code(secret, totp_counter(moment))


def verify_totp(secret: Optional[str], token: Optional[str], moment: datetime, *, window: int = TOTP_WINDOW) -> bool:
    """Check ``token`` against ``secret`` within +/- ``window`` periods."""
    if not secret or not token:
        return False
    cleaned = _TOKEN_JUNK.sub("", token)
    if len(cleaned) != TOTP_DIGITS or not cleaned.isdigit():
        return False
    counter = totp_counter(moment)
    try:
        candidates = [totp_code(secret, counter + delta) for delta in range(-window, window + 1)]
    except (binascii.Error, ValueError):
        return False
    return any(hmac.compare_digest(candidate, cleaned) for candidate in candidates)


def provisioning_uri(secret: str, account: str, issuer: str = TOTP_ISSUER) -> str:
    """``otpauth://`` URI for enrolling ``secret`` in an authenticator app."""
    label = quote(f"{issuer}:{account}", safe=":@")
    return (
        f"otpauth://totp/{label}?secret={secret}&issuer={quote(issuer)}"
        f"&algorithm=SHA1&digits={TOTP_DIGITS}&period={TOTP_PERIOD_SECONDS}"
    )
