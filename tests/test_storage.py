"""
Tests for storage backends and unit of work semantics
"""

import threading
import time

import pytest

from ledger_bank.errors import (
    NotFoundError, ConstraintViolationError, LockTimeoutError,
    RollbackError, StorageUnavailableError
)
from ledger_bank.records import Account, INT64_MAX, INT64_MIN
from ledger_bank.storage import (
    InMemoryStorage, SQLiteStorage, create_storage
)


class TestAccountQueries:
    """Account rows on every backend"""

    def test_create_and_get_account(self, storage, make_account):
        account = make_account(storage, "alice", balance=100, currency="EUR")

        assert isinstance(account, Account)
        assert account.id >= 1
        assert account.owner == "alice"
        assert account.balance == 100
        assert account.currency == "EUR"
        assert account.created_at.tzinfo is not None

        assert storage.get_account(account.id) == account

    def test_get_missing_account(self, storage):
        with pytest.raises(NotFoundError) as exc_info:
            storage.get_account(999)
        assert exc_info.value.entity == "account"
        assert exc_info.value.key == 999

    def test_account_requires_existing_owner(self, storage):
        with pytest.raises(ConstraintViolationError):
            storage.create_account(owner="ghost", balance=0, currency="USD")

    def test_one_account_per_owner_and_currency(self, storage, make_account):
        make_account(storage, "alice", currency="USD")
        make_account(storage, "alice", currency="EUR")

        with pytest.raises(ConstraintViolationError):
            make_account(storage, "alice", currency="USD")

    def test_list_accounts_by_owner_with_paging(self, storage, make_account):
        first = make_account(storage, "alice", currency="USD")
        make_account(storage, "bob", currency="USD")
        second = make_account(storage, "alice", currency="EUR")
        third = make_account(storage, "alice", currency="CAD")

        accounts = storage.list_accounts(owner="alice", limit=10, offset=0)
        assert [a.id for a in accounts] == [first.id, second.id, third.id]

        page = storage.list_accounts(owner="alice", limit=2, offset=2)
        assert [a.id for a in page] == [third.id]

        assert len(storage.list_accounts()) == 4

    def test_add_account_balance(self, storage, make_account):
        account = make_account(storage, "alice", balance=100)

        updated = storage.add_account_balance(account.id, -30)
        assert updated.balance == 70
        assert updated.id == account.id
        assert storage.get_account(account.id).balance == 70

    def test_add_balance_to_missing_account(self, storage):
        with pytest.raises(NotFoundError):
            storage.add_account_balance(404, 10)

    def test_update_account(self, storage, make_account):
        account = make_account(storage, "alice", balance=100)

        updated = storage.update_account(account.id, 250)
        assert updated.balance == 250
        assert storage.get_account(account.id).balance == 250

    def test_delete_account_without_history(self, storage, make_account):
        account = make_account(storage, "alice")

        storage.delete_account(account.id)
        with pytest.raises(NotFoundError):
            storage.get_account(account.id)

    def test_delete_account_with_entries_is_rejected(self, storage, make_account):
        account = make_account(storage, "alice")
        storage.create_entry(account.id, 10)

        with pytest.raises(ConstraintViolationError):
            storage.delete_account(account.id)
        assert storage.get_account(account.id).id == account.id


class TestLedgerQueries:
    """Entries and transfers on every backend"""

    def test_create_and_list_entries(self, storage, make_account):
        account = make_account(storage, "alice")
        other = make_account(storage, "bob")

        debit = storage.create_entry(account.id, -25)
        storage.create_entry(other.id, 25)
        credit = storage.create_entry(account.id, 40)

        assert storage.get_entry(debit.id) == debit
        entries = storage.list_entries(account.id)
        assert [e.id for e in entries] == [debit.id, credit.id]
        assert [e.amount for e in entries] == [-25, 40]

    def test_entry_requires_existing_account(self, storage):
        with pytest.raises(ConstraintViolationError):
            storage.create_entry(12345, 10)

    def test_get_missing_entry(self, storage):
        with pytest.raises(NotFoundError):
            storage.get_entry(1)

    def test_transfer_amount_must_be_positive(self, storage, make_account):
        a = make_account(storage, "alice")
        b = make_account(storage, "bob")

        with pytest.raises(ConstraintViolationError):
            storage.create_transfer(a.id, b.id, 0)

    def test_list_transfers_matches_either_side(self, storage, make_account):
        a = make_account(storage, "alice")
        b = make_account(storage, "bob")
        c = make_account(storage, "carol")

        t1 = storage.create_transfer(a.id, b.id, 10)
        t2 = storage.create_transfer(c.id, a.id, 5)
        storage.create_transfer(b.id, c.id, 1)

        assert storage.get_transfer(t1.id) == t1
        assert [t.id for t in storage.list_transfers(a.id)] == [t1.id, t2.id]

    def test_get_missing_transfer(self, storage):
        with pytest.raises(NotFoundError):
            storage.get_transfer(7)


class TestUserQueries:
    """User rows on every backend"""

    def test_create_and_get_user(self, storage, make_user):
        user = make_user(storage, "alice")

        loaded = storage.get_user("alice")
        assert loaded.username == "alice"
        assert loaded.email == "alice@example.com"
        assert loaded.hashed_password == user.hashed_password

    def test_duplicate_username(self, storage, make_user):
        make_user(storage, "alice")
        with pytest.raises(ConstraintViolationError):
            make_user(storage, "alice", email="other@example.com")

    def test_duplicate_email(self, storage, make_user):
        make_user(storage, "alice", email="shared@example.com")
        with pytest.raises(ConstraintViolationError):
            make_user(storage, "bob", email="shared@example.com")

    def test_get_missing_user(self, storage):
        with pytest.raises(NotFoundError):
            storage.get_user("nobody")


class TestAtomic:
    """Commit and rollback through StorageInterface.atomic()"""

    def test_commit_on_success(self, storage, make_account):
        account = make_account(storage, "alice", balance=100)

        with storage.atomic() as q:
            q.add_account_balance(account.id, 5)
            q.create_entry(account.id, 5)

        assert storage.get_account(account.id).balance == 105
        assert len(storage.list_entries(account.id)) == 1

    def test_rollback_on_exception(self, storage, make_account):
        account = make_account(storage, "alice", balance=100)

        with pytest.raises(RuntimeError):
            with storage.atomic() as q:
                q.add_account_balance(account.id, 5)
                q.create_entry(account.id, 5)
                raise RuntimeError("boom")

        assert storage.get_account(account.id).balance == 100
        assert storage.list_entries(account.id) == []

    def test_rollback_on_base_exception(self, storage, make_account):
        account = make_account(storage, "alice", balance=100)

        with pytest.raises(KeyboardInterrupt):
            with storage.atomic() as q:
                q.add_account_balance(account.id, 5)
                raise KeyboardInterrupt()

        assert storage.get_account(account.id).balance == 100

    def test_unit_is_closed_after_commit(self, storage, make_account):
        make_account(storage, "alice")

        with storage.atomic() as q:
            q.get_user("alice")
        assert not q.is_open

    def test_failed_rollback_raises_rollback_error(self, memory_storage, make_account, monkeypatch):
        account = make_account(memory_storage, "alice", balance=100)
        original_begin = memory_storage.begin
        original_error = RuntimeError("statement failed")

        def begin_with_broken_rollback():
            unit = original_begin()

            def broken_rollback():
                raise StorageUnavailableError("connection lost")

            unit.rollback = broken_rollback
            return unit

        monkeypatch.setattr(memory_storage, "begin", begin_with_broken_rollback)

        with pytest.raises(RollbackError) as exc_info:
            with memory_storage.atomic() as q:
                q.create_entry(account.id, 1)
                raise original_error

        assert exc_info.value.original is original_error
        assert isinstance(exc_info.value.__cause__, StorageUnavailableError)


class TestInMemoryIsolation:
    """Visibility and locking specific to InMemoryStorage"""

    def test_uncommitted_writes_are_invisible(self, memory_storage, make_user, make_account):
        make_user(memory_storage, "alice")
        account = make_account(memory_storage, "bob", balance=10)

        unit = memory_storage.begin()
        unit.create_account(owner="alice", balance=0, currency="USD")
        unit.create_entry(account.id, 3)

        assert memory_storage.list_accounts(owner="alice") == []
        assert memory_storage.list_entries(account.id) == []

        unit.rollback()
        assert memory_storage.list_accounts(owner="alice") == []

    def test_row_lock_wait_times_out(self, memory_storage, make_account):
        account = make_account(memory_storage, "alice", balance=100)

        holder = memory_storage.begin()
        holder.add_account_balance(account.id, 1)
        try:
            with pytest.raises(LockTimeoutError):
                memory_storage.add_account_balance(account.id, 1)
        finally:
            holder.rollback()

        # Lock released by the rollback
        assert memory_storage.add_account_balance(account.id, 1).balance == 101

    def test_ids_are_not_reused_after_rollback(self, memory_storage, make_account):
        account = make_account(memory_storage, "alice")

        with pytest.raises(RuntimeError):
            with memory_storage.atomic() as q:
                discarded = q.create_entry(account.id, 1)
                raise RuntimeError("abort")

        kept = memory_storage.create_entry(account.id, 1)
        assert kept.id > discarded.id

    def test_constraints_rechecked_at_commit(self, memory_storage, make_user):
        make_user(memory_storage, "alice")

        first = memory_storage.begin()
        second = memory_storage.begin()
        first.create_account(owner="alice", balance=0, currency="USD")
        second.create_account(owner="alice", balance=0, currency="USD")

        first.commit()
        with pytest.raises(ConstraintViolationError):
            second.commit()
        second.rollback()

        assert len(memory_storage.list_accounts(owner="alice")) == 1


class TestRowLocks:
    """Rows held through get_account_for_update"""

    def test_get_account_for_update(self, storage, make_account):
        account = make_account(storage, "alice", balance=100)

        with storage.atomic() as q:
            assert q.get_account_for_update(account.id) == account
            with pytest.raises(NotFoundError):
                q.get_account_for_update(account.id + 1000)

    def test_update_waits_for_held_row(self, storage, make_account):
        account = make_account(storage, "alice", balance=100)
        results = []

        holder = storage.begin()
        holder.get_account_for_update(account.id)
        holder.add_account_balance(account.id, 1)

        waiter = threading.Thread(
            target=lambda: results.append(storage.add_account_balance(account.id, 10))
        )
        waiter.start()
        time.sleep(0.3)
        assert waiter.is_alive()

        holder.commit()
        waiter.join(timeout=10)

        assert not waiter.is_alive()
        assert results[0].balance == 111
        assert storage.get_account(account.id).balance == 111

    def test_held_row_times_out_other_units(self, memory_storage, make_account):
        account = make_account(memory_storage, "alice", balance=100)
        other = make_account(memory_storage, "bob", balance=0)

        holder = memory_storage.begin()
        holder.get_account_for_update(account.id)
        try:
            with pytest.raises(LockTimeoutError):
                memory_storage.add_account_balance(account.id, 1)
            # Other rows stay available
            assert memory_storage.add_account_balance(other.id, 1).balance == 1
        finally:
            holder.rollback()

        assert memory_storage.add_account_balance(account.id, 1).balance == 101

    def test_sqlite_lock_wait_times_out(self, tmp_path, make_account):
        storage = SQLiteStorage(tmp_path / "locks.db", lock_timeout=0.2)
        account = make_account(storage, "alice", balance=100)

        holder = storage.begin()
        holder.get_account_for_update(account.id)
        try:
            with pytest.raises(LockTimeoutError):
                storage.add_account_balance(account.id, 1)
        finally:
            holder.rollback()

        assert storage.get_account(account.id).balance == 100


class TestInt64Bounds:
    """Balances and amounts stay within signed 64-bit integers"""

    def test_balance_at_the_limits(self, storage, make_account):
        high = make_account(storage, "alice", balance=INT64_MAX)
        low = make_account(storage, "bob", balance=INT64_MIN)

        assert storage.get_account(high.id).balance == INT64_MAX
        assert type(storage.get_account(high.id).balance) is int
        assert storage.get_account(low.id).balance == INT64_MIN

    def test_balance_overflow_is_rejected(self, storage, make_account):
        account = make_account(storage, "alice", balance=INT64_MAX - 5)

        with pytest.raises(ConstraintViolationError):
            storage.add_account_balance(account.id, 10)

        balance = storage.get_account(account.id).balance
        assert balance == INT64_MAX - 5
        assert type(balance) is int

    def test_balance_underflow_is_rejected(self, storage, make_account):
        account = make_account(storage, "alice", balance=INT64_MIN + 5)

        with pytest.raises(ConstraintViolationError):
            storage.add_account_balance(account.id, -10)
        assert storage.get_account(account.id).balance == INT64_MIN + 5

    def test_amount_beyond_int64_is_rejected(self, storage, make_account):
        account = make_account(storage, "alice")

        with pytest.raises(ConstraintViolationError):
            storage.add_account_balance(account.id, 2 ** 63)
        with pytest.raises(ConstraintViolationError):
            storage.create_entry(account.id, 2 ** 63)
        assert storage.get_account(account.id).balance == 0
        assert storage.list_entries(account.id) == []


class TestCreateStorage:
    """Backend selection from a database URL"""

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_url(self, tmp_path):
        storage = create_storage(f"sqlite:///{tmp_path / 'bank.db'}", lock_timeout=2.0)
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == str(tmp_path / "bank.db")
        assert storage.lock_timeout == 2.0

    def test_sqlite_url_without_path(self):
        with pytest.raises(ValueError):
            create_storage("sqlite:///")

    def test_unsupported_scheme(self):
        with pytest.raises(ValueError, match="Unsupported database URL scheme"):
            create_storage("mysql://localhost/bank")

    def test_sqlite_rejects_memory_database(self):
        with pytest.raises(ValueError):
            SQLiteStorage(":memory:")
