"""
Storage Backend Module

Provides the ledger storage interface consumed by the transfer engine and
implementations for in-memory (testing), SQLite (single node persistence)
and PostgreSQL (row-level locking, production).

Every query runs inside a unit of work. ``StorageInterface.atomic()`` scopes
one: it commits on normal exit and rolls back on any exception, so no
partially applied transfer is ever visible to another unit of work.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Set, Union, Iterator
from dataclasses import replace
from pathlib import Path
from contextlib import contextmanager
from urllib.parse import urlparse
import itertools
import sqlite3
import threading

from .errors import (
    StorageError, NotFoundError, ConstraintViolationError, StorageUnavailableError,
    LockTimeoutError, ConflictError, RollbackError
)
from .records import Account, Entry, Transfer, User, INT64_MIN, INT64_MAX, utc_now


DEFAULT_PAGE_SIZE = 100


class Queries(ABC):
    """Row level operations available inside a unit of work"""

    @abstractmethod
    def get_account(self, account_id: int) -> Account:
        """Load an account, raising NotFoundError if missing"""
        pass

    @abstractmethod
    def get_account_for_update(self, account_id: int) -> Account:
        """Load an account and hold its row lock until the unit of work ends"""
        pass

    @abstractmethod
    def create_account(self, owner: str, balance: int, currency: str) -> Account:
        """Insert a new account"""
        pass

    @abstractmethod
    def list_accounts(self, owner: Optional[str] = None, limit: int = DEFAULT_PAGE_SIZE,
                      offset: int = 0) -> List[Account]:
        """List accounts ordered by id, optionally restricted to one owner"""
        pass

    @abstractmethod
    def update_account(self, account_id: int, balance: int) -> Account:
        """Overwrite an account balance"""
        pass

    @abstractmethod
    def delete_account(self, account_id: int) -> None:
        """Delete an account with no ledger history"""
        pass

    @abstractmethod
    def add_account_balance(self, account_id: int, amount: int) -> Account:
        """
        Atomically add amount to the balance and return the updated row.
        The row stays locked until the enclosing unit of work ends.
        """
        pass

    @abstractmethod
    def create_entry(self, account_id: int, amount: int) -> Entry:
        """Append a ledger entry"""
        pass

    @abstractmethod
    def get_entry(self, entry_id: int) -> Entry:
        pass

    @abstractmethod
    def list_entries(self, account_id: int, limit: int = DEFAULT_PAGE_SIZE,
                     offset: int = 0) -> List[Entry]:
        pass

    @abstractmethod
    def create_transfer(self, from_account_id: int, to_account_id: int, amount: int) -> Transfer:
        """Record a transfer"""
        pass

    @abstractmethod
    def get_transfer(self, transfer_id: int) -> Transfer:
        pass

    @abstractmethod
    def list_transfers(self, account_id: int, limit: int = DEFAULT_PAGE_SIZE,
                       offset: int = 0) -> List[Transfer]:
        """List transfers where the account is either sender or receiver"""
        pass

    @abstractmethod
    def create_user(self, username: str, hashed_password: str, full_name: str, email: str) -> User:
        pass

    @abstractmethod
    def get_user(self, username: str) -> User:
        pass


class UnitOfWork(Queries):
    """Queries bound to one database transaction"""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass

    @abstractmethod
    def commit(self) -> None:
        """Make every write of this unit visible; releases all locks"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Discard every write of this unit; releases all locks"""
        pass


class StorageInterface(ABC):
    """
    Abstract interface for storage backends.

    The query methods on the storage itself are conveniences that each run
    in their own unit of work; use atomic() to group several.
    """

    @abstractmethod
    def begin(self) -> UnitOfWork:
        """Start a new unit of work"""
        pass

    def close(self) -> None:
        """Close storage connections (default no-op)"""
        pass

    @contextmanager
    def atomic(self) -> Iterator[UnitOfWork]:
        """
        Context manager for atomic operations.

        Commits on normal exit. On any exception, including ones that are not
        Exception subclasses, rolls back and re-raises the original error. A
        failing rollback raises RollbackError carrying the original error.
        """
        unit = self.begin()
        try:
            yield unit
            unit.commit()
        except BaseException as exc:
            if unit.is_open:
                try:
                    unit.rollback()
                except Exception as rollback_exc:
                    raise RollbackError(exc) from rollback_exc
            raise

    def get_account(self, account_id: int) -> Account:
        with self.atomic() as q:
            return q.get_account(account_id)

    def create_account(self, owner: str, balance: int, currency: str) -> Account:
        with self.atomic() as q:
            return q.create_account(owner, balance, currency)

    def list_accounts(self, owner: Optional[str] = None, limit: int = DEFAULT_PAGE_SIZE,
                      offset: int = 0) -> List[Account]:
        with self.atomic() as q:
            return q.list_accounts(owner, limit, offset)

    def update_account(self, account_id: int, balance: int) -> Account:
        with self.atomic() as q:
            return q.update_account(account_id, balance)

    def delete_account(self, account_id: int) -> None:
        with self.atomic() as q:
            q.delete_account(account_id)

    def add_account_balance(self, account_id: int, amount: int) -> Account:
        with self.atomic() as q:
            return q.add_account_balance(account_id, amount)

    def create_entry(self, account_id: int, amount: int) -> Entry:
        with self.atomic() as q:
            return q.create_entry(account_id, amount)

    def get_entry(self, entry_id: int) -> Entry:
        with self.atomic() as q:
            return q.get_entry(entry_id)

    def list_entries(self, account_id: int, limit: int = DEFAULT_PAGE_SIZE,
                     offset: int = 0) -> List[Entry]:
        with self.atomic() as q:
            return q.list_entries(account_id, limit, offset)

    def create_transfer(self, from_account_id: int, to_account_id: int, amount: int) -> Transfer:
        with self.atomic() as q:
            return q.create_transfer(from_account_id, to_account_id, amount)

    def get_transfer(self, transfer_id: int) -> Transfer:
        with self.atomic() as q:
            return q.get_transfer(transfer_id)

    def list_transfers(self, account_id: int, limit: int = DEFAULT_PAGE_SIZE,
                       offset: int = 0) -> List[Transfer]:
        with self.atomic() as q:
            return q.list_transfers(account_id, limit, offset)

    def create_user(self, username: str, hashed_password: str, full_name: str, email: str) -> User:
        with self.atomic() as q:
            return q.create_user(username, hashed_password, full_name, email)

    def get_user(self, username: str) -> User:
        with self.atomic() as q:
            return q.get_user(username)


def _page(rows: list, limit: int, offset: int) -> list:
    return rows[offset:offset + limit]


def _check_int64(column: str, value: int) -> int:
    if not INT64_MIN <= value <= INT64_MAX:
        raise ConstraintViolationError(f"out of range: {column} {value} does not fit in bigint")
    return value


class InMemoryUnitOfWork(UnitOfWork):
    """
    Unit of work over InMemoryStorage.

    Writes are buffered here and applied on commit (read committed). Account
    rows are locked with per-row locks held until commit or rollback.
    """

    def __init__(self, storage: 'InMemoryStorage'):
        self._storage = storage
        self._open = True
        self._users: Dict[str, User] = {}
        self._accounts: Dict[int, Account] = {}
        self._new_account_ids: Set[int] = set()
        self._deleted_account_ids: Set[int] = set()
        self._entries: Dict[int, Entry] = {}
        self._transfers: Dict[int, Transfer] = {}
        self._held_locks: Dict[int, threading.Lock] = {}

    @property
    def is_open(self) -> bool:
        return self._open

    def _check_open(self) -> None:
        if not self._open:
            raise StorageError("unit of work is already closed")

    def _lock_row(self, account_id: int) -> bool:
        """Acquire the account row lock; returns True if newly acquired"""
        if account_id in self._held_locks:
            return False
        lock = self._storage._row_lock(account_id)
        if not lock.acquire(timeout=self._storage.lock_timeout):
            raise LockTimeoutError(f"timed out waiting for lock on account {account_id}")
        self._held_locks[account_id] = lock
        return True

    def _unlock_row(self, account_id: int) -> None:
        lock = self._held_locks.pop(account_id, None)
        if lock is not None:
            lock.release()

    def _find_account(self, account_id: int) -> Optional[Account]:
        if account_id in self._deleted_account_ids:
            return None
        if account_id in self._accounts:
            return self._accounts[account_id]
        with self._storage._mutex:
            return self._storage._accounts.get(account_id)

    def _find_user(self, username: str) -> Optional[User]:
        if username in self._users:
            return self._users[username]
        with self._storage._mutex:
            return self._storage._users.get(username)

    def _visible(self, committed: dict, pending: dict) -> list:
        with self._storage._mutex:
            rows = dict(committed)
        rows.update(pending)
        return [rows[key] for key in sorted(rows)]

    def _require_account(self, account_id: int) -> Account:
        account = self._find_account(account_id)
        if account is None:
            raise NotFoundError("account", account_id)
        return account

    def _locked_account(self, account_id: int) -> Account:
        newly_locked = self._lock_row(account_id)
        account = self._find_account(account_id)
        if account is None:
            if newly_locked:
                self._unlock_row(account_id)
            raise NotFoundError("account", account_id)
        return account

    def get_account(self, account_id: int) -> Account:
        self._check_open()
        return self._require_account(account_id)

    def get_account_for_update(self, account_id: int) -> Account:
        self._check_open()
        return self._locked_account(account_id)

    def create_account(self, owner: str, balance: int, currency: str) -> Account:
        self._check_open()
        if self._find_user(owner) is None:
            raise ConstraintViolationError(f"foreign key violation: owner {owner!r} does not exist")
        for account in self._visible(self._storage._accounts, self._accounts):
            if account.id in self._deleted_account_ids:
                continue
            if account.owner == owner and account.currency == currency:
                raise ConstraintViolationError(
                    f"unique violation: {owner!r} already holds a {currency} account"
                )
        account = Account(
            id=self._storage._next_id("accounts"),
            owner=owner,
            balance=_check_int64("balance", balance),
            currency=currency,
            created_at=utc_now()
        )
        self._accounts[account.id] = account
        self._new_account_ids.add(account.id)
        return account

    def list_accounts(self, owner: Optional[str] = None, limit: int = DEFAULT_PAGE_SIZE,
                      offset: int = 0) -> List[Account]:
        self._check_open()
        accounts = [
            a for a in self._visible(self._storage._accounts, self._accounts)
            if a.id not in self._deleted_account_ids and (owner is None or a.owner == owner)
        ]
        return _page(accounts, limit, offset)

    def update_account(self, account_id: int, balance: int) -> Account:
        self._check_open()
        account = replace(self._locked_account(account_id), balance=_check_int64("balance", balance))
        self._accounts[account_id] = account
        return account

    def delete_account(self, account_id: int) -> None:
        self._check_open()
        self._locked_account(account_id)
        if self._has_ledger_history(account_id):
            raise ConstraintViolationError(
                f"foreign key violation: account {account_id} is referenced by ledger rows"
            )
        self._accounts.pop(account_id, None)
        self._deleted_account_ids.add(account_id)

    def _has_ledger_history(self, account_id: int) -> bool:
        for entry in self._visible(self._storage._entries, self._entries):
            if entry.account_id == account_id:
                return True
        for transfer in self._visible(self._storage._transfers, self._transfers):
            if account_id in (transfer.from_account_id, transfer.to_account_id):
                return True
        return False

    def add_account_balance(self, account_id: int, amount: int) -> Account:
        self._check_open()
        account = self._locked_account(account_id)
        updated = replace(account, balance=_check_int64("balance", account.balance + amount))
        self._accounts[account_id] = updated
        return updated

    def create_entry(self, account_id: int, amount: int) -> Entry:
        self._check_open()
        if self._find_account(account_id) is None:
            raise ConstraintViolationError(f"foreign key violation: account {account_id} does not exist")
        entry = Entry(
            id=self._storage._next_id("entries"),
            account_id=account_id,
            amount=_check_int64("amount", amount),
            created_at=utc_now()
        )
        self._entries[entry.id] = entry
        return entry

    def get_entry(self, entry_id: int) -> Entry:
        self._check_open()
        entry = self._entries.get(entry_id)
        if entry is None:
            with self._storage._mutex:
                entry = self._storage._entries.get(entry_id)
        if entry is None:
            raise NotFoundError("entry", entry_id)
        return entry

    def list_entries(self, account_id: int, limit: int = DEFAULT_PAGE_SIZE,
                     offset: int = 0) -> List[Entry]:
        self._check_open()
        entries = [
            e for e in self._visible(self._storage._entries, self._entries)
            if e.account_id == account_id
        ]
        return _page(entries, limit, offset)

    def create_transfer(self, from_account_id: int, to_account_id: int, amount: int) -> Transfer:
        self._check_open()
        if amount <= 0:
            raise ConstraintViolationError("check violation: transfer amount must be positive")
        _check_int64("amount", amount)
        for account_id in (from_account_id, to_account_id):
            if self._find_account(account_id) is None:
                raise ConstraintViolationError(
                    f"foreign key violation: account {account_id} does not exist"
                )
        transfer = Transfer(
            id=self._storage._next_id("transfers"),
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            amount=amount,
            created_at=utc_now()
        )
        self._transfers[transfer.id] = transfer
        return transfer

    def get_transfer(self, transfer_id: int) -> Transfer:
        self._check_open()
        transfer = self._transfers.get(transfer_id)
        if transfer is None:
            with self._storage._mutex:
                transfer = self._storage._transfers.get(transfer_id)
        if transfer is None:
            raise NotFoundError("transfer", transfer_id)
        return transfer

    def list_transfers(self, account_id: int, limit: int = DEFAULT_PAGE_SIZE,
                       offset: int = 0) -> List[Transfer]:
        self._check_open()
        transfers = [
            t for t in self._visible(self._storage._transfers, self._transfers)
            if account_id in (t.from_account_id, t.to_account_id)
        ]
        return _page(transfers, limit, offset)

    def create_user(self, username: str, hashed_password: str, full_name: str, email: str) -> User:
        self._check_open()
        if self._find_user(username) is not None:
            raise ConstraintViolationError(f"unique violation: username {username!r} is taken")
        for user in self._visible(self._storage._users, self._users):
            if user.email == email:
                raise ConstraintViolationError(f"unique violation: email {email!r} is taken")
        now = utc_now()
        user = User(
            username=username,
            hashed_password=hashed_password,
            full_name=full_name,
            email=email,
            password_changed_at=now,
            created_at=now
        )
        self._users[username] = user
        return user

    def get_user(self, username: str) -> User:
        self._check_open()
        user = self._find_user(username)
        if user is None:
            raise NotFoundError("user", username)
        return user

    def _validate_commit(self) -> None:
        """Re-check constraints that a concurrent commit may have broken; caller holds the mutex"""
        storage = self._storage
        for user in self._users.values():
            if user.username in storage._users:
                raise ConstraintViolationError(f"unique violation: username {user.username!r} is taken")
            if any(u.email == user.email for u in storage._users.values()):
                raise ConstraintViolationError(f"unique violation: email {user.email!r} is taken")
        for account_id in self._new_account_ids - self._deleted_account_ids:
            account = self._accounts[account_id]
            if any(a.owner == account.owner and a.currency == account.currency
                   for a in storage._accounts.values()):
                raise ConstraintViolationError(
                    f"unique violation: {account.owner!r} already holds a {account.currency} account"
                )
        live = (set(storage._accounts) | set(self._accounts)) - self._deleted_account_ids
        referenced = {e.account_id for e in self._entries.values()}
        for transfer in self._transfers.values():
            referenced.update((transfer.from_account_id, transfer.to_account_id))
        missing = referenced - live
        if missing:
            raise ConstraintViolationError(
                f"foreign key violation: accounts {sorted(missing)} do not exist"
            )

    def commit(self) -> None:
        self._check_open()
        storage = self._storage
        with storage._mutex:
            self._validate_commit()
            storage._users.update(self._users)
            storage._accounts.update(self._accounts)
            for account_id in self._deleted_account_ids:
                storage._accounts.pop(account_id, None)
            storage._entries.update(self._entries)
            storage._transfers.update(self._transfers)
        self._close()

    def rollback(self) -> None:
        self._check_open()
        self._close()

    def _close(self) -> None:
        self._open = False
        for account_id in list(self._held_locks):
            self._unlock_row(account_id)
        self._users.clear()
        self._accounts.clear()
        self._entries.clear()
        self._transfers.clear()


class InMemoryStorage(StorageInterface):
    """In-memory storage with transactional semantics, for tests and local runs"""

    def __init__(self, lock_timeout: float = 10.0):
        self.lock_timeout = lock_timeout
        self._mutex = threading.RLock()
        self._users: Dict[str, User] = {}
        self._accounts: Dict[int, Account] = {}
        self._entries: Dict[int, Entry] = {}
        self._transfers: Dict[int, Transfer] = {}
        self._row_locks: Dict[int, threading.Lock] = {}
        self._sequences = {
            table: itertools.count(1) for table in ("accounts", "entries", "transfers")
        }

    def begin(self) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(self)

    def _next_id(self, table: str) -> int:
        # Consumed ids are never reused, even when the inserting unit rolls back
        with self._mutex:
            return next(self._sequences[table])

    def _row_lock(self, account_id: int) -> threading.Lock:
        with self._mutex:
            return self._row_locks.setdefault(account_id, threading.Lock())


SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    username TEXT PRIMARY KEY,
    hashed_password TEXT NOT NULL,
    full_name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    password_changed_at TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner TEXT NOT NULL REFERENCES users (username),
    balance INTEGER NOT NULL CHECK (typeof(balance) = 'integer'),
    currency TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (owner, currency)
);

CREATE TABLE IF NOT EXISTS entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id INTEGER NOT NULL REFERENCES accounts (id),
    amount INTEGER NOT NULL CHECK (typeof(amount) = 'integer'),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS transfers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    from_account_id INTEGER NOT NULL REFERENCES accounts (id),
    to_account_id INTEGER NOT NULL REFERENCES accounts (id),
    amount INTEGER NOT NULL CHECK (amount > 0),
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_accounts_owner ON accounts (owner);
CREATE INDEX IF NOT EXISTS idx_entries_account_id ON entries (account_id);
CREATE INDEX IF NOT EXISTS idx_transfers_from_account_id ON transfers (from_account_id);
CREATE INDEX IF NOT EXISTS idx_transfers_to_account_id ON transfers (to_account_id);
"""


@contextmanager
def _translate_sqlite_errors():
    """Map sqlite3 exceptions onto the storage error taxonomy"""
    try:
        yield
    except sqlite3.IntegrityError as exc:
        raise ConstraintViolationError(str(exc)) from exc
    except OverflowError as exc:
        # sqlite3 refuses Python ints outside the signed 64-bit range
        raise ConstraintViolationError(f"integer out of range: {exc}") from exc
    except sqlite3.OperationalError as exc:
        message = str(exc)
        if "locked" in message or "busy" in message:
            raise LockTimeoutError(message) from exc
        raise StorageUnavailableError(message) from exc
    except sqlite3.Error as exc:
        raise StorageError(str(exc)) from exc


class SQLiteUnitOfWork(UnitOfWork):
    """
    Unit of work on a dedicated SQLite connection.

    BEGIN IMMEDIATE takes the database write lock up front, which serializes
    concurrent writers; lock waits are bounded by the connection timeout.
    """

    def __init__(self, storage: 'SQLiteStorage'):
        self._connection = storage._connect()
        self._open = True
        try:
            self._execute("BEGIN IMMEDIATE")
        except BaseException:
            self._open = False
            self._connection.close()
            raise

    @property
    def is_open(self) -> bool:
        return self._open

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        if not self._open:
            raise StorageError("unit of work is already closed")
        with _translate_sqlite_errors():
            return self._connection.execute(sql, params)

    def _fetch_one(self, sql: str, params: tuple, entity: str, key) -> dict:
        row = self._execute(sql, params).fetchone()
        if row is None:
            raise NotFoundError(entity, key)
        return dict(row)

    def _fetch_all(self, sql: str, params: tuple) -> List[dict]:
        return [dict(row) for row in self._execute(sql, params).fetchall()]

    def get_account(self, account_id: int) -> Account:
        return Account.from_dict(self._fetch_one(
            "SELECT * FROM accounts WHERE id = ?", (account_id,), "account", account_id
        ))

    def get_account_for_update(self, account_id: int) -> Account:
        # The write lock taken by BEGIN IMMEDIATE already covers every row
        return self.get_account(account_id)

    def create_account(self, owner: str, balance: int, currency: str) -> Account:
        cursor = self._execute(
            "INSERT INTO accounts (owner, balance, currency, created_at) VALUES (?, ?, ?, ?)",
            (owner, balance, currency, utc_now().isoformat())
        )
        return self.get_account(cursor.lastrowid)

    def list_accounts(self, owner: Optional[str] = None, limit: int = DEFAULT_PAGE_SIZE,
                      offset: int = 0) -> List[Account]:
        if owner is None:
            rows = self._fetch_all(
                "SELECT * FROM accounts ORDER BY id LIMIT ? OFFSET ?", (limit, offset)
            )
        else:
            rows = self._fetch_all(
                "SELECT * FROM accounts WHERE owner = ? ORDER BY id LIMIT ? OFFSET ?",
                (owner, limit, offset)
            )
        return [Account.from_dict(row) for row in rows]

    def update_account(self, account_id: int, balance: int) -> Account:
        cursor = self._execute(
            "UPDATE accounts SET balance = ? WHERE id = ?", (balance, account_id)
        )
        if cursor.rowcount == 0:
            raise NotFoundError("account", account_id)
        return self.get_account(account_id)

    def delete_account(self, account_id: int) -> None:
        cursor = self._execute("DELETE FROM accounts WHERE id = ?", (account_id,))
        if cursor.rowcount == 0:
            raise NotFoundError("account", account_id)

    def add_account_balance(self, account_id: int, amount: int) -> Account:
        cursor = self._execute(
            "UPDATE accounts SET balance = balance + ? WHERE id = ?", (amount, account_id)
        )
        if cursor.rowcount == 0:
            raise NotFoundError("account", account_id)
        return self.get_account(account_id)

    def create_entry(self, account_id: int, amount: int) -> Entry:
        cursor = self._execute(
            "INSERT INTO entries (account_id, amount, created_at) VALUES (?, ?, ?)",
            (account_id, amount, utc_now().isoformat())
        )
        return self.get_entry(cursor.lastrowid)

    def get_entry(self, entry_id: int) -> Entry:
        return Entry.from_dict(self._fetch_one(
            "SELECT * FROM entries WHERE id = ?", (entry_id,), "entry", entry_id
        ))

    def list_entries(self, account_id: int, limit: int = DEFAULT_PAGE_SIZE,
                     offset: int = 0) -> List[Entry]:
        rows = self._fetch_all(
            "SELECT * FROM entries WHERE account_id = ? ORDER BY id LIMIT ? OFFSET ?",
            (account_id, limit, offset)
        )
        return [Entry.from_dict(row) for row in rows]

    def create_transfer(self, from_account_id: int, to_account_id: int, amount: int) -> Transfer:
        cursor = self._execute(
            "INSERT INTO transfers (from_account_id, to_account_id, amount, created_at) "
            "VALUES (?, ?, ?, ?)",
            (from_account_id, to_account_id, amount, utc_now().isoformat())
        )
        return self.get_transfer(cursor.lastrowid)

    def get_transfer(self, transfer_id: int) -> Transfer:
        return Transfer.from_dict(self._fetch_one(
            "SELECT * FROM transfers WHERE id = ?", (transfer_id,), "transfer", transfer_id
        ))

    def list_transfers(self, account_id: int, limit: int = DEFAULT_PAGE_SIZE,
                       offset: int = 0) -> List[Transfer]:
        rows = self._fetch_all(
            "SELECT * FROM transfers WHERE from_account_id = ? OR to_account_id = ? "
            "ORDER BY id LIMIT ? OFFSET ?",
            (account_id, account_id, limit, offset)
        )
        return [Transfer.from_dict(row) for row in rows]

    def create_user(self, username: str, hashed_password: str, full_name: str, email: str) -> User:
        now = utc_now().isoformat()
        self._execute(
            "INSERT INTO users (username, hashed_password, full_name, email, "
            "password_changed_at, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (username, hashed_password, full_name, email, now, now)
        )
        return self.get_user(username)

    def get_user(self, username: str) -> User:
        return User.from_dict(self._fetch_one(
            "SELECT * FROM users WHERE username = ?", (username,), "user", username
        ))

    def commit(self) -> None:
        # A failed COMMIT leaves the unit open so the caller can roll back
        self._execute("COMMIT")
        self._open = False
        self._connection.close()

    def rollback(self) -> None:
        try:
            self._execute("ROLLBACK")
        finally:
            self._open = False
            self._connection.close()


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = "bank.db", lock_timeout: float = 10.0):
        self.db_path = str(db_path)
        if self.db_path == ":memory:" or self.db_path.startswith("file::memory:"):
            raise ValueError(
                "SQLiteStorage needs a database file shared by every connection; "
                "use InMemoryStorage for ephemeral data"
            )
        self.lock_timeout = lock_timeout

        connection = self._connect()
        try:
            with _translate_sqlite_errors():
                # WAL lets readers proceed while a unit of work holds the write lock
                connection.execute("PRAGMA journal_mode = WAL")
                connection.executescript(SQLITE_SCHEMA)
        finally:
            connection.close()

    def _connect(self) -> sqlite3.Connection:
        with _translate_sqlite_errors():
            # isolation_level=None: transactions are issued explicitly by the unit of work
            connection = sqlite3.connect(
                self.db_path,
                timeout=self.lock_timeout,
                isolation_level=None,
                check_same_thread=False
            )
            connection.row_factory = sqlite3.Row
            connection.execute("PRAGMA foreign_keys = ON")
            connection.execute("PRAGMA synchronous = NORMAL")
        return connection

    def begin(self) -> SQLiteUnitOfWork:
        return SQLiteUnitOfWork(self)


POSTGRES_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    username varchar PRIMARY KEY,
    hashed_password varchar NOT NULL,
    full_name varchar NOT NULL,
    email varchar UNIQUE NOT NULL,
    password_changed_at timestamptz NOT NULL DEFAULT now(),
    created_at timestamptz NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS accounts (
    id bigserial PRIMARY KEY,
    owner varchar NOT NULL REFERENCES users (username),
    balance bigint NOT NULL,
    currency varchar NOT NULL,
    created_at timestamptz NOT NULL DEFAULT now(),
    CONSTRAINT owner_currency_key UNIQUE (owner, currency)
);

CREATE TABLE IF NOT EXISTS entries (
    id bigserial PRIMARY KEY,
    account_id bigint NOT NULL REFERENCES accounts (id),
    amount bigint NOT NULL,
    created_at timestamptz NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS transfers (
    id bigserial PRIMARY KEY,
    from_account_id bigint NOT NULL REFERENCES accounts (id),
    to_account_id bigint NOT NULL REFERENCES accounts (id),
    amount bigint NOT NULL CHECK (amount > 0),
    created_at timestamptz NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_accounts_owner ON accounts (owner);
CREATE INDEX IF NOT EXISTS idx_entries_account_id ON entries (account_id);
CREATE INDEX IF NOT EXISTS idx_transfers_from_account_id ON transfers (from_account_id);
CREATE INDEX IF NOT EXISTS idx_transfers_to_account_id ON transfers (to_account_id);
"""

ACCOUNT_COLUMNS = "id, owner, balance, currency, created_at"


class PostgreSQLUnitOfWork(UnitOfWork):
    """Unit of work on a pooled PostgreSQL connection (read committed)"""

    def __init__(self, storage: 'PostgreSQLStorage'):
        self._storage = storage
        # ThreadedConnectionPool fails at once when exhausted; wait for a slot instead
        if not storage._checkout.acquire(timeout=storage.lock_timeout):
            raise LockTimeoutError("timed out waiting for a pooled connection")
        try:
            with storage._translate_errors():
                self._connection = storage._pool.getconn()
        except BaseException:
            storage._checkout.release()
            raise
        self._open = True
        try:
            # lock_timeout is in milliseconds and lasts until the transaction ends
            self._execute(
                "SET LOCAL lock_timeout = %s", (f"{int(storage.lock_timeout * 1000)}ms",)
            )
        except BaseException:
            self._release(discard=True)
            raise

    @property
    def is_open(self) -> bool:
        return self._open

    def _execute(self, sql: str, params: tuple = ()):
        if not self._open:
            raise StorageError("unit of work is already closed")
        with self._storage._translate_errors():
            cursor = self._connection.cursor()
            cursor.execute(sql, params)
            return cursor

    def _fetch_one(self, sql: str, params: tuple, entity: str, key) -> dict:
        cursor = self._execute(sql, params)
        try:
            row = cursor.fetchone()
        finally:
            cursor.close()
        if row is None:
            raise NotFoundError(entity, key)
        return dict(row)

    def _fetch_all(self, sql: str, params: tuple) -> List[dict]:
        cursor = self._execute(sql, params)
        try:
            return [dict(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def get_account(self, account_id: int) -> Account:
        return Account.from_dict(self._fetch_one(
            f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id = %s",
            (account_id,), "account", account_id
        ))

    def get_account_for_update(self, account_id: int) -> Account:
        return Account.from_dict(self._fetch_one(
            f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id = %s FOR NO KEY UPDATE",
            (account_id,), "account", account_id
        ))

    def create_account(self, owner: str, balance: int, currency: str) -> Account:
        return Account.from_dict(self._fetch_one(
            "INSERT INTO accounts (owner, balance, currency) VALUES (%s, %s, %s) "
            f"RETURNING {ACCOUNT_COLUMNS}",
            (owner, balance, currency), "account", owner
        ))

    def list_accounts(self, owner: Optional[str] = None, limit: int = DEFAULT_PAGE_SIZE,
                      offset: int = 0) -> List[Account]:
        if owner is None:
            rows = self._fetch_all(
                f"SELECT {ACCOUNT_COLUMNS} FROM accounts ORDER BY id LIMIT %s OFFSET %s",
                (limit, offset)
            )
        else:
            rows = self._fetch_all(
                f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE owner = %s "
                "ORDER BY id LIMIT %s OFFSET %s",
                (owner, limit, offset)
            )
        return [Account.from_dict(row) for row in rows]

    def update_account(self, account_id: int, balance: int) -> Account:
        return Account.from_dict(self._fetch_one(
            f"UPDATE accounts SET balance = %s WHERE id = %s RETURNING {ACCOUNT_COLUMNS}",
            (balance, account_id), "account", account_id
        ))

    def delete_account(self, account_id: int) -> None:
        self._fetch_one(
            "DELETE FROM accounts WHERE id = %s RETURNING id",
            (account_id,), "account", account_id
        )

    def add_account_balance(self, account_id: int, amount: int) -> Account:
        # The UPDATE takes the row lock; a concurrent unit touching the same row waits here
        return Account.from_dict(self._fetch_one(
            "UPDATE accounts SET balance = balance + %s WHERE id = %s "
            f"RETURNING {ACCOUNT_COLUMNS}",
            (amount, account_id), "account", account_id
        ))

    def create_entry(self, account_id: int, amount: int) -> Entry:
        return Entry.from_dict(self._fetch_one(
            "INSERT INTO entries (account_id, amount) VALUES (%s, %s) "
            "RETURNING id, account_id, amount, created_at",
            (account_id, amount), "entry", account_id
        ))

    def get_entry(self, entry_id: int) -> Entry:
        return Entry.from_dict(self._fetch_one(
            "SELECT id, account_id, amount, created_at FROM entries WHERE id = %s",
            (entry_id,), "entry", entry_id
        ))

    def list_entries(self, account_id: int, limit: int = DEFAULT_PAGE_SIZE,
                     offset: int = 0) -> List[Entry]:
        rows = self._fetch_all(
            "SELECT id, account_id, amount, created_at FROM entries WHERE account_id = %s "
            "ORDER BY id LIMIT %s OFFSET %s",
            (account_id, limit, offset)
        )
        return [Entry.from_dict(row) for row in rows]

    def create_transfer(self, from_account_id: int, to_account_id: int, amount: int) -> Transfer:
        return Transfer.from_dict(self._fetch_one(
            "INSERT INTO transfers (from_account_id, to_account_id, amount) VALUES (%s, %s, %s) "
            "RETURNING id, from_account_id, to_account_id, amount, created_at",
            (from_account_id, to_account_id, amount), "transfer", from_account_id
        ))

    def get_transfer(self, transfer_id: int) -> Transfer:
        return Transfer.from_dict(self._fetch_one(
            "SELECT id, from_account_id, to_account_id, amount, created_at "
            "FROM transfers WHERE id = %s",
            (transfer_id,), "transfer", transfer_id
        ))

    def list_transfers(self, account_id: int, limit: int = DEFAULT_PAGE_SIZE,
                       offset: int = 0) -> List[Transfer]:
        rows = self._fetch_all(
            "SELECT id, from_account_id, to_account_id, amount, created_at FROM transfers "
            "WHERE from_account_id = %s OR to_account_id = %s ORDER BY id LIMIT %s OFFSET %s",
            (account_id, account_id, limit, offset)
        )
        return [Transfer.from_dict(row) for row in rows]

    def create_user(self, username: str, hashed_password: str, full_name: str, email: str) -> User:
        return User.from_dict(self._fetch_one(
            "INSERT INTO users (username, hashed_password, full_name, email) "
            "VALUES (%s, %s, %s, %s) RETURNING *",
            (username, hashed_password, full_name, email), "user", username
        ))

    def get_user(self, username: str) -> User:
        return User.from_dict(self._fetch_one(
            "SELECT * FROM users WHERE username = %s", (username,), "user", username
        ))

    def commit(self) -> None:
        if not self._open:
            raise StorageError("unit of work is already closed")
        with self._storage._translate_errors():
            self._connection.commit()
        self._release()

    def rollback(self) -> None:
        if not self._open:
            raise StorageError("unit of work is already closed")
        try:
            with self._storage._translate_errors():
                self._connection.rollback()
        except BaseException:
            self._release(discard=True)
            raise
        self._release()

    def _release(self, discard: bool = False) -> None:
        self._open = False
        try:
            self._storage._pool.putconn(self._connection, close=discard)
        finally:
            self._storage._checkout.release()


class PostgreSQLStorage(StorageInterface):
    """PostgreSQL storage backend with row-level locking and ACID transactions"""

    def __init__(self, connection_string: str, lock_timeout: float = 10.0, pool_size: int = 10):
        try:
            import psycopg2
            import psycopg2.errors
            import psycopg2.extras
            import psycopg2.pool
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")
        self.psycopg2 = psycopg2

        self.connection_string = connection_string
        self.lock_timeout = lock_timeout
        self._checkout = threading.BoundedSemaphore(pool_size)
        with self._translate_errors():
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                1, pool_size, connection_string,
                cursor_factory=psycopg2.extras.RealDictCursor
            )
        with self.atomic() as unit:
            unit._execute(POSTGRES_SCHEMA).close()

    @contextmanager
    def _translate_errors(self):
        """Map psycopg2 exceptions onto the storage error taxonomy"""
        psycopg2 = self.psycopg2
        try:
            yield
        except psycopg2.IntegrityError as exc:
            raise ConstraintViolationError(str(exc).strip()) from exc
        except psycopg2.errors.NumericValueOutOfRange as exc:
            raise ConstraintViolationError(str(exc).strip()) from exc
        except (psycopg2.errors.LockNotAvailable, psycopg2.errors.QueryCanceled) as exc:
            raise LockTimeoutError(str(exc).strip()) from exc
        except (psycopg2.errors.DeadlockDetected, psycopg2.errors.SerializationFailure) as exc:
            raise ConflictError(str(exc).strip()) from exc
        except (psycopg2.OperationalError, psycopg2.InterfaceError, psycopg2.pool.PoolError) as exc:
            raise StorageUnavailableError(str(exc).strip()) from exc
        except psycopg2.Error as exc:
            raise StorageError(str(exc).strip()) from exc

    def begin(self) -> PostgreSQLUnitOfWork:
        return PostgreSQLUnitOfWork(self)

    def close(self) -> None:
        """Close every pooled connection"""
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None


def create_storage(database_url: str, lock_timeout: float = 10.0,
                   pool_size: int = 10) -> StorageInterface:
    """
    Build a storage backend from a database URL.

    memory:// selects InMemoryStorage, sqlite:///path selects SQLiteStorage
    (sqlite:////abs/path for absolute paths), postgresql://... selects
    PostgreSQLStorage.
    """
    scheme = urlparse(database_url).scheme
    if scheme == "memory":
        return InMemoryStorage(lock_timeout=lock_timeout)
    if scheme == "sqlite":
        prefix = "sqlite:///"
        if not database_url.startswith(prefix) or len(database_url) == len(prefix):
            raise ValueError(f"Invalid SQLite URL: {database_url}")
        return SQLiteStorage(database_url[len(prefix):], lock_timeout=lock_timeout)
    if scheme in ("postgres", "postgresql"):
        return PostgreSQLStorage(database_url, lock_timeout=lock_timeout, pool_size=pool_size)
    raise ValueError(f"Unsupported database URL scheme: {scheme!r}")
