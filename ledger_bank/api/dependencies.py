"""
Authentication and shared service dependencies
"""

from datetime import timedelta
from typing import Optional
import threading

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..config import BankConfig, get_config
from ..storage import StorageInterface, create_storage
from ..tokens import Payload, TokenError, create_token_manager
from ..accounts import AccountManager
from ..users import UserManager
from ..ledger import Ledger
from ..guard import AccountGuard
from ..transfers import TransferEngine


class BankingSystem:
    """All services wired to one storage backend and token manager"""

    def __init__(self, config: Optional[BankConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()

        if storage is None:
            storage = create_storage(
                self.config.database_url,
                lock_timeout=self.config.lock_timeout_seconds,
                pool_size=self.config.database_pool_size
            )
        self.storage = storage

        self.token_manager = create_token_manager(self.config)
        self.account_manager = AccountManager(self.storage)
        self.user_manager = UserManager(
            self.storage, self.token_manager,
            access_token_duration=timedelta(minutes=self.config.access_token_duration_minutes)
        )
        self.ledger = Ledger(self.storage)
        self.guard = AccountGuard(self.storage)
        self.transfer_engine = TransferEngine(self.storage)

    def close(self) -> None:
        self.storage.close()


_banking_system: Optional[BankingSystem] = None
_banking_system_lock = threading.Lock()


def get_banking_system() -> BankingSystem:
    """Dependency returning the process-wide banking system, built on first use"""
    global _banking_system
    with _banking_system_lock:
        if _banking_system is None:
            _banking_system = BankingSystem()
        return _banking_system


# JWT/Fernet bearer security
security = HTTPBearer(auto_error=False)


def get_current_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: BankingSystem = Depends(get_banking_system)
) -> Payload:
    """Dependency that verifies the bearer token and returns its payload"""
    if not credentials:
        raise HTTPException(status_code=401, detail="authorization header is missing or invalid")
    try:
        return system.token_manager.verify_token(credentials.credentials)
    except TokenError as e:
        raise HTTPException(status_code=401, detail=f"invalid token: {e}")
