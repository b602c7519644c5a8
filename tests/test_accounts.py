"""
Tests for account, user and ledger services
"""

from datetime import timedelta

import pytest

from ledger_bank.accounts import AccountManager
from ledger_bank.errors import ConstraintViolationError, NotFoundError, PasswordMismatchError
from ledger_bank.ledger import Ledger
from ledger_bank.storage import InMemoryStorage
from ledger_bank.tokens import JWTManager
from ledger_bank.transfers import TransferEngine
from ledger_bank.users import UserManager


SECRET = "0123456789abcdef0123456789abcdef"


class TestAccountManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.storage.create_user("alice", "hash", "Alice Example", "alice@example.com")
        self.account_manager = AccountManager(self.storage)

    def test_create_account(self):
        account = self.account_manager.create_account("alice", "CAD")

        assert account.owner == "alice"
        assert account.currency == "CAD"
        assert account.balance == 0
        assert self.account_manager.get_account(account.id) == account

    def test_unsupported_currency(self):
        with pytest.raises(ValueError, match="Unsupported currency"):
            self.account_manager.create_account("alice", "GBP")

    def test_duplicate_currency(self):
        self.account_manager.create_account("alice", "USD")
        with pytest.raises(ConstraintViolationError):
            self.account_manager.create_account("alice", "USD")

    def test_list_accounts(self):
        usd = self.account_manager.create_account("alice", "USD")
        eur = self.account_manager.create_account("alice", "EUR")

        assert self.account_manager.list_accounts(owner="alice") == [usd, eur]
        assert self.account_manager.list_accounts(owner="alice", limit=1, offset=1) == [eur]
        assert self.account_manager.list_accounts(owner="bob") == []


class TestUserManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.token_manager = JWTManager(SECRET)
        self.user_manager = UserManager(
            self.storage, self.token_manager, access_token_duration=timedelta(minutes=5)
        )

    def test_create_user_hashes_password(self):
        user = self.user_manager.create_user("alice", "secret123", "Alice Example", "alice@example.com")

        assert user.username == "alice"
        assert user.hashed_password != "secret123"
        assert "hashed_password" not in user.to_public_dict()
        assert self.user_manager.get_user("alice") == user

    def test_login(self):
        self.user_manager.create_user("alice", "secret123", "Alice Example", "alice@example.com")

        result = self.user_manager.login("alice", "secret123")

        assert result.user.username == "alice"
        assert result.payload.subject == "alice"
        assert self.token_manager.verify_token(result.access_token).subject == "alice"
        assert result.payload.expired_at - result.payload.issued_at == timedelta(minutes=5)

    def test_login_wrong_password(self):
        self.user_manager.create_user("alice", "secret123", "Alice Example", "alice@example.com")

        with pytest.raises(PasswordMismatchError):
            self.user_manager.login("alice", "wrong-password")

    def test_login_unknown_user(self):
        with pytest.raises(NotFoundError):
            self.user_manager.login("nobody", "secret123")


class TestLedger:

    def test_entries_total_spans_pages(self, memory_storage, make_account):
        a = make_account(memory_storage, "alice", balance=1000)
        b = make_account(memory_storage, "bob", balance=0)
        engine = TransferEngine(memory_storage)
        ledger = Ledger(memory_storage)

        for _ in range(120):
            engine.transfer_tx(a.id, b.id, 2)

        assert ledger.entries_total(a.id) == -240
        assert ledger.entries_total(b.id) == 240
        assert memory_storage.get_account(a.id).balance == 1000 - 240
        assert len(ledger.list_entries(a.id, limit=100, offset=100)) == 20

    def test_lookups(self, memory_storage, make_account):
        a = make_account(memory_storage, "alice", balance=10)
        b = make_account(memory_storage, "bob", balance=0)
        result = TransferEngine(memory_storage).transfer_tx(a.id, b.id, 4)
        ledger = Ledger(memory_storage)

        assert ledger.get_transfer(result.transfer.id) == result.transfer
        assert ledger.get_entry(result.to_entry.id) == result.to_entry
        assert ledger.list_transfers(b.id) == [result.transfer]
        with pytest.raises(NotFoundError):
            ledger.get_transfer(result.transfer.id + 1)
