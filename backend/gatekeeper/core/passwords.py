"""Password hashing: Argon2id on a bounded worker pool.

Stored hashes are PHC strings ($argon2id$v=19$m=...,t=...,p=...$salt$hash),
so parameters and salt travel with every record and can change over time.
Hashes written by the earlier bcrypt scheme still verify and are flagged
for rehash.
"""

import asyncio
import logging
import secrets
from concurrent.futures import ThreadPoolExecutor

import bcrypt
from argon2 import PasswordHasher as Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHash, VerificationError

from gatekeeper.config import Settings

logger = logging.getLogger("gatekeeper.auth")

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


def is_legacy_hash(stored_hash: str) -> bool:
    return stored_hash.startswith(_BCRYPT_PREFIXES)


class PasswordHasher:
    """Memory-hard hashing that never runs more than ``max_workers`` at once.

    Hashing is deliberately expensive, so calls are pushed onto a dedicated
    thread pool instead of the event loop or the shared threadpool.
    """

    def __init__(
        self,
        *,
        time_cost: int = 4,
        memory_cost: int = 65536,
        parallelism: int = 8,
        hash_len: int = 32,
        salt_len: int = 32,
        max_workers: int = 4,
    ):
        self._argon2 = Argon2Hasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=hash_len,
            salt_len=salt_len,
            type=Type.ID,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="password-hash"
        )
        # Unknown usernames are verified against this so they cost the same
        self._dummy_hash = self._argon2.hash(secrets.token_urlsafe(16))

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordHasher":
        return cls(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
            hash_len=settings.argon2_hash_len,
            salt_len=settings.argon2_salt_len,
            max_workers=settings.password_hash_workers,
        )

    def hash_sync(self, password: str) -> str:
        """Hash with a fresh random salt."""
        return self._argon2.hash(password)

    def verify_sync(self, password: str, stored_hash: str) -> bool:
        """Constant-time check. Any decode failure counts as a mismatch."""
        if is_legacy_hash(stored_hash):
            try:
                return bcrypt.checkpw(password.encode("utf-8"), stored_hash.encode("utf-8"))
            except ValueError:
                return False
        try:
            return self._argon2.verify(stored_hash, password)
        except (VerificationError, InvalidHash):
            return False

    def needs_rehash(self, stored_hash: str) -> bool:
        if is_legacy_hash(stored_hash):
            return True
        try:
            return self._argon2.check_needs_rehash(stored_hash)
        except InvalidHash:
            return True

    async def hash(self, password: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self.hash_sync, password)

    async def verify(self, password: str, stored_hash: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, self.verify_sync, password, stored_hash
        )

    async def verify_dummy(self, password: str) -> bool:
        """Burn one verification for a user that does not exist. Always False."""
        await self.verify(password, self._dummy_hash)
        return False

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("Password hash pool shut down")
