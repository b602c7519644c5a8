"""
Transfer Transaction Engine

Moves money between two accounts as one atomic unit of work: a transfer
record, a debit entry, a credit entry and two balance updates either all
commit or none do. Mutual exclusion is left entirely to the storage layer's
row locks; the engine only fixes the order in which they are taken.
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple

from .errors import InvalidTransferError
from .records import Account, Entry, Transfer, INT64_MAX
from .storage import Queries, StorageInterface
from .logging_config import get_logger, log_action


@dataclass(frozen=True)
class TransferTxParams:
    """Validated input of a transfer"""
    from_account_id: int
    to_account_id: int
    amount: int

    def __post_init__(self):
        if self.amount <= 0:
            raise InvalidTransferError(f"transfer amount must be positive, got {self.amount}")
        if self.amount > INT64_MAX:
            raise InvalidTransferError(f"transfer amount {self.amount} exceeds {INT64_MAX}")

        # Self-transfers are rejected rather than recorded as net-zero movements
        if self.from_account_id == self.to_account_id:
            raise InvalidTransferError(
                f"cannot transfer from account {self.from_account_id} to itself"
            )


@dataclass(frozen=True)
class TransferTxResult:
    """
    Everything written by one transfer. The account snapshots are the rows as
    updated by this transfer, not necessarily the latest state.
    """
    transfer: Transfer
    from_account: Account
    to_account: Account
    from_entry: Entry
    to_entry: Entry

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transfer": self.transfer.to_dict(),
            "from_account": self.from_account.to_dict(),
            "to_account": self.to_account.to_dict(),
            "from_entry": self.from_entry.to_dict(),
            "to_entry": self.to_entry.to_dict()
        }


class TransferEngine:
    """
    Executes transfers against a storage backend.

    Callers are expected to have checked ownership and currency beforehand;
    missing accounts and other storage failures surface unchanged. No retries
    are attempted.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.logger = get_logger("ledger_bank.transfers")

    def transfer_tx(self, from_account_id: int, to_account_id: int, amount: int) -> TransferTxResult:
        """
        Transfer amount from one account to another.

        Args:
            from_account_id: Account debited
            to_account_id: Account credited
            amount: Positive amount in the smallest currency unit

        Returns:
            TransferTxResult with the transfer, both entries and both
            post-update account rows

        Raises:
            InvalidTransferError: If amount is not positive or both ids are equal
            StorageError: Any storage failure; nothing from this call is persisted
        """
        params = TransferTxParams(from_account_id, to_account_id, amount)

        try:
            with self.storage.atomic() as q:
                transfer = q.create_transfer(
                    params.from_account_id, params.to_account_id, params.amount
                )
                from_entry = q.create_entry(params.from_account_id, -params.amount)
                to_entry = q.create_entry(params.to_account_id, params.amount)

                # Rows are always locked in ascending id order so two transfers
                # between the same pair can never wait on each other in a cycle
                if params.from_account_id < params.to_account_id:
                    from_account, to_account = self._add_balances(
                        q,
                        params.from_account_id, -params.amount,
                        params.to_account_id, params.amount
                    )
                else:
                    to_account, from_account = self._add_balances(
                        q,
                        params.to_account_id, params.amount,
                        params.from_account_id, -params.amount
                    )
        except Exception as e:
            log_action(
                self.logger, "warning", f"Transfer failed: {e}",
                action="transfer_tx",
                resource=f"account:{params.from_account_id}",
                extra={
                    "from_account_id": params.from_account_id,
                    "to_account_id": params.to_account_id,
                    "amount": params.amount,
                    "error_type": type(e).__name__
                }
            )
            raise

        log_action(
            self.logger, "info", "Transfer committed",
            action="transfer_tx", resource=f"transfer:{transfer.id}",
            extra={
                "transfer_id": transfer.id,
                "from_account_id": params.from_account_id,
                "to_account_id": params.to_account_id,
                "amount": params.amount
            }
        )

        return TransferTxResult(
            transfer=transfer,
            from_account=from_account,
            to_account=to_account,
            from_entry=from_entry,
            to_entry=to_entry
        )

    def _add_balances(self, q: Queries, first_id: int, first_amount: int,
                      second_id: int, second_amount: int) -> Tuple[Account, Account]:
        """Apply two balance deltas in the given order; returns the rows in that order"""
        first = q.add_account_balance(first_id, first_amount)
        second = q.add_account_balance(second_id, second_amount)
        return first, second
