"""
Ledger Records Module

Immutable rows returned by every storage backend. Amounts and balances are
signed integers in the smallest currency unit; timestamps are timezone-aware
UTC datetimes.
"""

from dataclasses import dataclass, asdict, fields
from datetime import datetime, timezone
from typing import Any, Dict


# Amounts and balances are stored as signed 64-bit integers
INT64_MIN = -2 ** 63
INT64_MAX = 2 ** 63 - 1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class StorageRecord:
    """Base class for all stored records"""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready dictionary"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from a dictionary or database row mapping"""
        values = {}
        for f in fields(cls):
            value = data[f.name]
            if f.type in (datetime, 'datetime'):
                value = _parse_datetime(value)
            values[f.name] = value
        return cls(**values)


@dataclass(frozen=True)
class User(StorageRecord):
    """Account holder; referenced by Account.owner"""
    username: str
    hashed_password: str
    full_name: str
    email: str
    password_changed_at: datetime
    created_at: datetime

    def to_public_dict(self) -> Dict[str, Any]:
        """User fields safe to return to clients"""
        data = self.to_dict()
        data.pop('hashed_password')
        return data


@dataclass(frozen=True)
class Account(StorageRecord):
    """
    Monetary account. Balance is the initial balance plus the sum of every
    entry recorded against the account.
    """
    id: int
    owner: str
    balance: int
    currency: str
    created_at: datetime


@dataclass(frozen=True)
class Entry(StorageRecord):
    """One side of a transfer: negative amounts debit, positive amounts credit"""
    id: int
    account_id: int
    amount: int
    created_at: datetime


@dataclass(frozen=True)
class Transfer(StorageRecord):
    """Requested movement of a positive amount between two accounts"""
    id: int
    from_account_id: int
    to_account_id: int
    amount: int
    created_at: datetime
