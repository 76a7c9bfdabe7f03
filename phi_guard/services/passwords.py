"""Password hashing and strength rules"""

import asyncio
import re
from typing import Dict

import bcrypt

from phi_guard.utils.errors import WeakCredential


_STRENGTH_RULES = [
    (re.compile(r"[a-z]"), "one lowercase letter"),
    (re.compile(r"[A-Z]"), "one uppercase letter"),
    (re.compile(r"\d"), "one number"),
    (re.compile(r"[^A-Za-z\d]"), "one special character"),
]

_DUMMY_HASHES: Dict[int, str] = {}


async def hash_password(password: str, rounds: int = 12) -> str:
    hashed = await asyncio.to_thread(
        bcrypt.hashpw, password.encode(), bcrypt.gensalt(rounds=rounds)
    )
    return hashed.decode()


async def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time bcrypt comparison, off the event loop"""
    return await asyncio.to_thread(
        bcrypt.checkpw, password.encode(), password_hash.encode()
    )


async def _dummy_hash(rounds: int) -> str:
    if rounds not in _DUMMY_HASHES:
        _DUMMY_HASHES[rounds] = await hash_password("dummy-password-for-timing", rounds)
    return _DUMMY_HASHES[rounds]


async def burn_password_check(password: str, rounds: int = 12) -> None:
    """
    Spend the same work as a real comparison without a real hash

    Used for unknown accounts and locked accounts so response timing does
    not reveal which case applied.
    """
    await verify_password(password, await _dummy_hash(rounds))


def check_password_strength(password: str, min_length: int = 12) -> None:
    """
    Enforce the credential strength policy

    Raises:
        WeakCredential: listing every unmet requirement
    """
    missing = []
    if len(password) < min_length:
        missing.append(f"at least {min_length} characters")
    if len(password) > 128:
        missing.append("at most 128 characters")
    missing.extend(label for pattern, label in _STRENGTH_RULES if not pattern.search(password))

    if missing:
        raise WeakCredential(
            "Password must contain " + ", ".join(missing),
            details={"requirements": missing},
        )
