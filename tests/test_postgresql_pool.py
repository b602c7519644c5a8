"""
Tests for PostgreSQL connection checkout under contention

psycopg2.connect is replaced by an in-process fake so the real
ThreadedConnectionPool runs without a database server.
"""

import threading
import time
from types import SimpleNamespace

import pytest

psycopg2 = pytest.importorskip("psycopg2")
import psycopg2.extensions

from ledger_bank.errors import LockTimeoutError
from ledger_bank.storage import PostgreSQLStorage


class FakeCursor:

    def execute(self, sql, params=None):
        pass

    def fetchone(self):
        return None

    def fetchall(self):
        return []

    def close(self):
        pass


class FakeConnection:

    def __init__(self):
        self.closed = 0
        self.info = SimpleNamespace(
            transaction_status=psycopg2.extensions.TRANSACTION_STATUS_IDLE
        )

    def cursor(self):
        return FakeCursor()

    def commit(self):
        pass

    def rollback(self):
        pass

    def close(self):
        self.closed = 1


@pytest.fixture
def make_pooled_storage(monkeypatch):
    monkeypatch.setattr(psycopg2, "connect", lambda *args, **kwargs: FakeConnection())
    created = []

    def _make(lock_timeout, pool_size=2):
        storage = PostgreSQLStorage(
            "postgresql://fake/bank", lock_timeout=lock_timeout, pool_size=pool_size
        )
        created.append(storage)
        return storage

    yield _make
    for storage in created:
        storage.close()


class TestConnectionCheckout:

    def test_checkout_waits_for_a_free_connection(self, make_pooled_storage):
        storage = make_pooled_storage(lock_timeout=5.0)
        first = storage.begin()
        second = storage.begin()
        opened = []

        waiter = threading.Thread(target=lambda: opened.append(storage.begin()))
        waiter.start()
        time.sleep(0.3)
        assert waiter.is_alive()

        first.commit()
        waiter.join(timeout=5)

        assert not waiter.is_alive()
        assert opened[0].is_open
        opened[0].commit()
        second.commit()

    def test_checkout_times_out(self, make_pooled_storage):
        storage = make_pooled_storage(lock_timeout=0.2)
        first = storage.begin()
        second = storage.begin()

        with pytest.raises(LockTimeoutError):
            storage.begin()

        # Rolled back units give their slot back
        first.rollback()
        third = storage.begin()
        assert third.is_open
        third.commit()
        second.commit()

    def test_more_concurrent_units_than_pool_size(self, make_pooled_storage):
        storage = make_pooled_storage(lock_timeout=5.0, pool_size=2)
        errors = []

        def unit_of_work():
            try:
                with storage.atomic():
                    time.sleep(0.05)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=unit_of_work) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert not any(thread.is_alive() for thread in threads)
        assert errors == []
