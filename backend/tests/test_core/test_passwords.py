import bcrypt
import pytest

from gatekeeper.core.passwords import PasswordHasher, is_legacy_hash


@pytest.fixture
def hasher():
    h = PasswordHasher(time_cost=1, memory_cost=8, parallelism=1, max_workers=2)
    yield h
    h.close()


def test_same_password_gets_a_fresh_salt(hasher: PasswordHasher):
    first = hasher.hash_sync("SecurePass123!")
    second = hasher.hash_sync("SecurePass123!")
    assert first != second
    assert hasher.verify_sync("SecurePass123!", first)
    assert hasher.verify_sync("SecurePass123!", second)


def test_hash_records_its_parameters(hasher: PasswordHasher):
    stored = hasher.hash_sync("SecurePass123!")
    assert stored.startswith("$argon2id$v=19$m=8,t=1,p=1$")


def test_wrong_password_and_garbage_hash_fail(hasher: PasswordHasher):
    stored = hasher.hash_sync("SecurePass123!")
    assert hasher.verify_sync("WrongPass123!", stored) is False
    assert hasher.verify_sync("SecurePass123!", "garbage") is False
    assert hasher.verify_sync("SecurePass123!", "$2b$garbage") is False


def test_parameter_change_flags_rehash(hasher: PasswordHasher):
    stored = hasher.hash_sync("SecurePass123!")
    assert hasher.needs_rehash(stored) is False

    stronger = PasswordHasher(time_cost=2, memory_cost=16, parallelism=1, max_workers=1)
    try:
        assert stronger.needs_rehash(stored) is True
        # Old parameters still verify: they travel with the hash
        assert stronger.verify_sync("SecurePass123!", stored)
    finally:
        stronger.close()


def test_legacy_bcrypt_verifies_and_needs_rehash(hasher: PasswordHasher):
    legacy = bcrypt.hashpw(b"OldPass123!", bcrypt.gensalt(rounds=4)).decode()
    assert is_legacy_hash(legacy)
    assert hasher.verify_sync("OldPass123!", legacy)
    assert not hasher.verify_sync("Other123!", legacy)
    assert hasher.needs_rehash(legacy)


@pytest.mark.asyncio
async def test_async_hash_and_verify_run_off_the_loop(hasher: PasswordHasher):
    stored = await hasher.hash("SecurePass123!")
    assert await hasher.verify("SecurePass123!", stored) is True
    assert await hasher.verify("nope", stored) is False
    assert await hasher.verify_dummy("anything") is False
