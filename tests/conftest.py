"""
Shared fixtures for ledger bank tests
"""

import os

import pytest

from ledger_bank.errors import NotFoundError
from ledger_bank.storage import InMemoryStorage, SQLiteStorage, PostgreSQLStorage


SKIP_POSTGRESQL_TESTS = os.getenv("SKIP_POSTGRESQL_TESTS", "true").lower() == "true"
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "postgresql://localhost/test_bank")


def _make_storage(kind, tmp_path):
    if kind == "memory":
        return InMemoryStorage(lock_timeout=5.0)
    if kind == "sqlite":
        return SQLiteStorage(tmp_path / "ledger.db", lock_timeout=5.0)
    if SKIP_POSTGRESQL_TESTS:
        pytest.skip("PostgreSQL tests disabled (set SKIP_POSTGRESQL_TESTS=false)")
    storage = PostgreSQLStorage(TEST_DATABASE_URL, lock_timeout=5.0)
    with storage.atomic() as unit:
        unit._execute("TRUNCATE transfers, entries, accounts, users RESTART IDENTITY").close()
    return storage


@pytest.fixture(params=["memory", "sqlite", "postgresql"])
def storage(request, tmp_path):
    """Every storage backend; PostgreSQL only when a test database is configured"""
    backend = _make_storage(request.param, tmp_path)
    yield backend
    backend.close()


@pytest.fixture
def memory_storage():
    backend = InMemoryStorage(lock_timeout=1.0)
    yield backend
    backend.close()


@pytest.fixture
def make_user():
    """Factory creating a user directly in storage"""
    def _make_user(storage, username, email=None):
        return storage.create_user(
            username=username,
            hashed_password="scrypt$16384$8$1$salt$digest",
            full_name=f"{username.title()} Example",
            email=email or f"{username}@example.com"
        )
    return _make_user


@pytest.fixture
def make_account(make_user):
    """Factory creating an account, and its owner when missing"""
    def _make_account(storage, owner, balance=0, currency="USD"):
        try:
            storage.get_user(owner)
        except NotFoundError:
            make_user(storage, owner)
        return storage.create_account(owner=owner, balance=balance, currency=currency)
    return _make_account
