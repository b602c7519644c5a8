"""
User Management Module

Registration and login. Passwords are hashed before they reach storage and
a successful login issues an access token through the configured token
manager.
"""

from dataclasses import dataclass
from datetime import timedelta

from .records import User
from .security import hash_password, verify_password
from .storage import StorageInterface
from .tokens import Payload, TokenManager
from .logging_config import get_logger, log_action


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    payload: Payload
    user: User


class UserManager:
    """Creates users and authenticates them"""

    def __init__(self, storage: StorageInterface, token_manager: TokenManager,
                 access_token_duration: timedelta = timedelta(minutes=15)):
        self.storage = storage
        self.token_manager = token_manager
        self.access_token_duration = access_token_duration
        self.logger = get_logger("ledger_bank.users")

    def create_user(self, username: str, password: str, full_name: str, email: str) -> User:
        """
        Register a new user

        Raises:
            ConstraintViolationError: If the username or email is already taken
        """
        user = self.storage.create_user(
            username=username,
            hashed_password=hash_password(password),
            full_name=full_name,
            email=email
        )
        log_action(
            self.logger, "info", "User created",
            user_id=username, action="create_user", resource=f"user:{username}"
        )
        return user

    def get_user(self, username: str) -> User:
        return self.storage.get_user(username)

    def login(self, username: str, password: str) -> LoginResult:
        """
        Check credentials and issue an access token

        Raises:
            NotFoundError: If the user does not exist
            PasswordMismatchError: If the password is wrong
        """
        user = self.storage.get_user(username)
        verify_password(password, user.hashed_password)

        access_token, payload = self.token_manager.create_token(
            subject=user.username,
            duration=self.access_token_duration
        )
        log_action(
            self.logger, "info", "User logged in",
            user_id=username, action="login", resource="auth",
            extra={"token_id": str(payload.id), "expires_at": payload.expired_at.isoformat()}
        )
        return LoginResult(access_token=access_token, payload=payload, user=user)
