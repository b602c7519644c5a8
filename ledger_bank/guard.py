"""
Account Authorization Guard

Checks that run before the transfer engine is invoked: the authenticated
user must own the source account and both accounts must hold the requested
currency. The engine trusts these checks and does not repeat them.
"""

from typing import Tuple

from .errors import CurrencyMismatchError, OwnershipError
from .records import Account, Transfer
from .storage import StorageInterface


class AccountGuard:
    """Ownership and currency checks for account operations"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def validate_account(self, account_id: int, currency: str) -> Account:
        """
        Load an account and check its currency

        Raises:
            NotFoundError: If the account does not exist
            CurrencyMismatchError: If the account holds another currency
        """
        account = self.storage.get_account(account_id)
        if account.currency != currency:
            raise CurrencyMismatchError(account_id, expected=currency, actual=account.currency)
        return account

    def authorize_transfer(self, subject: str, from_account_id: int, to_account_id: int,
                           currency: str) -> Tuple[Account, Account]:
        """
        Authorize subject to move currency from one account to another.

        Returns:
            The source and destination accounts as loaded for the checks
        """
        from_account = self.validate_account(from_account_id, currency)
        if from_account.owner != subject:
            raise OwnershipError(subject, from_account_id)

        to_account = self.validate_account(to_account_id, currency)
        return from_account, to_account

    def authorize_account_access(self, subject: str, account_id: int) -> Account:
        """Load an account that subject must own"""
        account = self.storage.get_account(account_id)
        if account.owner != subject:
            raise OwnershipError(subject, account_id)
        return account

    def authorize_transfer_access(self, subject: str, transfer: Transfer) -> None:
        """A transfer is visible to the owners of either side"""
        from_account = self.storage.get_account(transfer.from_account_id)
        if from_account.owner == subject:
            return
        to_account = self.storage.get_account(transfer.to_account_id)
        if to_account.owner != subject:
            raise OwnershipError(subject, transfer.to_account_id)
