"""
Error Taxonomy Module

Exceptions raised by storage, the transfer engine and the authorization guard.
Storage errors keep the driver exception as ``__cause__`` so the boundary
layer can map the kind to a status code without losing detail.
"""

from typing import Any, Optional


class LedgerError(Exception):
    """Base class for all ledger bank errors"""


class StorageError(LedgerError):
    """Base class for storage backend failures"""


class NotFoundError(StorageError):
    """Referenced row does not exist"""

    def __init__(self, entity: str, key: Any):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key!r} not found")


class ConstraintViolationError(StorageError):
    """Foreign key, unique or check constraint failed"""


class StorageUnavailableError(StorageError):
    """Connection or transport failure"""


class LockTimeoutError(StorageUnavailableError):
    """Row lock could not be acquired within the configured timeout"""


class ConflictError(StorageError):
    """Deadlock or serialization failure reported by the database; safe to retry"""


class RollbackError(StorageError):
    """
    Rolling back a unit of work failed.

    The error that triggered the rollback is kept in ``original``; the
    rollback failure itself is the ``__cause__``.
    """

    def __init__(self, original: Optional[BaseException]):
        self.original = original
        super().__init__(f"rollback failed after: {original!r}")


class InvalidTransferError(LedgerError, ValueError):
    """Transfer parameters are malformed (non-positive amount, self-transfer)"""


class AuthorizationError(LedgerError):
    """Caller may not act on the requested account"""


class OwnershipError(AuthorizationError):
    """Authenticated identity does not own the account"""

    def __init__(self, subject: str, account_id: int):
        self.subject = subject
        self.account_id = account_id
        super().__init__(f"user {subject!r} does not own account {account_id}")


class CurrencyMismatchError(AuthorizationError):
    """Account currency differs from the requested currency"""

    def __init__(self, account_id: int, expected: str, actual: str):
        self.account_id = account_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"account [{account_id}] currency mismatched. "
            f"expected: {expected}, actual: {actual}"
        )


class PasswordMismatchError(LedgerError):
    """Supplied password does not match the stored hash"""

    def __init__(self):
        super().__init__("password does not match")
