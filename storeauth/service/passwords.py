from __future__ import annotations

import secrets
import string

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

_password_hasher = PasswordHasher(type=Type.ID)

_ALPHANUMERIC = string.ascii_letters + string.digits


def hash_password(password: str) -> str:
    return _password_hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return _password_hasher.verify(password_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHash):
        return False


def generate_password(length: int = 10) -> str:
    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))


def generate_user_id(length: int = 10) -> str:
    return "".join(secrets.choice(string.digits) for _ in range(length))
