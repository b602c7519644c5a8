"""
Password Hashing Module

scrypt password hashes with a per-password random salt. Hashes are stored
as ``scrypt$<n>$<r>$<p>$<salt>$<hex digest>`` so cost parameters can be
raised later without invalidating existing passwords.
"""

import hashlib
import hmac
import secrets

from .errors import PasswordMismatchError


SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1
HASH_SCHEME = "scrypt"


def _scrypt(password: str, salt: str, n: int, r: int, p: int) -> str:
    return hashlib.scrypt(password.encode(), salt=salt.encode(), n=n, r=r, p=p).hex()


def hash_password(password: str) -> str:
    """Hash a password with a fresh random salt"""
    salt = secrets.token_hex(16)
    digest = _scrypt(password, salt, SCRYPT_N, SCRYPT_R, SCRYPT_P)
    return f"{HASH_SCHEME}${SCRYPT_N}${SCRYPT_R}${SCRYPT_P}${salt}${digest}"


def verify_password(password: str, hashed_password: str) -> None:
    """
    Check a password against a stored hash.

    Raises:
        PasswordMismatchError: If the password does not match
        ValueError: If the stored hash is not in the expected format
    """
    parts = hashed_password.split("$")
    if len(parts) != 6 or parts[0] != HASH_SCHEME:
        raise ValueError("unsupported password hash format")
    _, n, r, p, salt, digest = parts
    candidate = _scrypt(password, salt, int(n), int(r), int(p))
    if not hmac.compare_digest(candidate, digest):
        raise PasswordMismatchError()
