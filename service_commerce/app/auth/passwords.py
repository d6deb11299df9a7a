"""
Password hashing with bcrypt.

Hashing and verification run in a worker thread.
"""

import asyncio

import bcrypt

BCRYPT_ROUNDS = 12


def hash_password_sync(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password_sync(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed hash or over-long password
        return False


async def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """Hash ``password`` with a fresh salt."""
    return await asyncio.to_thread(hash_password_sync, password, rounds)


async def verify_password(password: str, password_hash: str) -> bool:
    """Check ``password`` against a stored bcrypt hash."""
    return await asyncio.to_thread(verify_password_sync, password, password_hash)
