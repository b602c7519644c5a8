"""
Account Management Module

Opens accounts and looks them up. Balances are never changed here; only the
transfer engine moves money between accounts.
"""

from typing import List, Optional

from .currency import is_supported_currency
from .records import Account
from .storage import StorageInterface, DEFAULT_PAGE_SIZE
from .logging_config import get_logger, log_action


class AccountManager:
    """Account lifecycle operations on top of ledger storage"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.logger = get_logger("ledger_bank.accounts")

    def create_account(self, owner: str, currency: str, balance: int = 0) -> Account:
        """
        Open an account

        Args:
            owner: Username of the account holder
            currency: Supported currency code
            balance: Opening balance in the smallest currency unit

        Returns:
            Created Account

        Raises:
            ValueError: If the currency is not supported
            ConstraintViolationError: If the owner does not exist or already
                holds an account in this currency
        """
        if not is_supported_currency(currency):
            raise ValueError(f"Unsupported currency: {currency}")

        account = self.storage.create_account(owner=owner, balance=balance, currency=currency)

        log_action(
            self.logger, "info", "Account created",
            user_id=owner, action="create_account", resource=f"account:{account.id}",
            extra={"currency": currency, "balance": balance}
        )
        return account

    def get_account(self, account_id: int) -> Account:
        return self.storage.get_account(account_id)

    def list_accounts(self, owner: Optional[str] = None, limit: int = DEFAULT_PAGE_SIZE,
                      offset: int = 0) -> List[Account]:
        """List accounts ordered by id"""
        return self.storage.list_accounts(owner=owner, limit=limit, offset=offset)
