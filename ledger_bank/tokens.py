"""
Access Token Module

Issues and verifies bearer tokens carrying the authenticated username.
Two interchangeable managers are provided: signed JWTs (PyJWT, HS256) and
encrypted Fernet tokens (cryptography). Both reject tokens that are not yet
valid, expired, or tampered with, using distinct error types.
"""

import base64
import json
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import jwt
from cryptography.fernet import Fernet, InvalidToken

from .errors import LedgerError
from .records import utc_now


MIN_SECRET_KEY_LENGTH = 32
FERNET_KEY_LENGTH = 32
JWT_ALGORITHM = "HS256"


class TokenError(LedgerError):
    """Base class for token verification failures"""


class TokenInvalidError(TokenError):
    def __init__(self, reason: str = "token invalid"):
        super().__init__(reason)


class TokenExpiredError(TokenError):
    def __init__(self):
        super().__init__("token expired")


class TokenNotValidYetError(TokenError):
    def __init__(self):
        super().__init__("token not valid yet")


@dataclass(frozen=True)
class Payload:
    """Claims carried by an access token"""
    id: uuid.UUID
    subject: str
    audience: str
    issuer: str
    not_before: datetime
    issued_at: datetime
    expired_at: datetime

    @classmethod
    def create(cls, subject: str, duration: timedelta, audience: str, issuer: str,
               not_before: Optional[datetime] = None) -> 'Payload':
        now = utc_now()
        return cls(
            id=uuid.uuid4(),
            subject=subject,
            audience=audience,
            issuer=issuer,
            not_before=not_before or now,
            issued_at=now,
            expired_at=now + duration
        )

    def check_time(self, now: Optional[datetime] = None) -> None:
        """Raise if the token is outside its validity window"""
        now = now or utc_now()
        if self.not_before > now:
            raise TokenNotValidYetError()
        if self.expired_at < now:
            raise TokenExpiredError()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "subject": self.subject,
            "audience": self.audience,
            "issuer": self.issuer,
            "not_before": self.not_before.isoformat(),
            "issued_at": self.issued_at.isoformat(),
            "expired_at": self.expired_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Payload':
        return cls(
            id=uuid.UUID(data["id"]),
            subject=data["subject"],
            audience=data["audience"],
            issuer=data["issuer"],
            not_before=datetime.fromisoformat(data["not_before"]),
            issued_at=datetime.fromisoformat(data["issued_at"]),
            expired_at=datetime.fromisoformat(data["expired_at"])
        )


class TokenManager(ABC):
    """Creates and verifies access tokens for one audience and issuer"""

    def __init__(self, audience: str, issuer: str):
        self.audience = audience
        self.issuer = issuer

    def create_token(self, subject: str, duration: timedelta,
                     not_before: Optional[datetime] = None) -> Tuple[str, Payload]:
        """Issue a token for subject; returns the token string and its payload"""
        payload = Payload.create(subject, duration, self.audience, self.issuer, not_before)
        return self._encode(payload), payload

    @abstractmethod
    def _encode(self, payload: Payload) -> str:
        pass

    @abstractmethod
    def verify_token(self, token: str) -> Payload:
        """
        Verify a token and return its payload.

        Raises:
            TokenNotValidYetError: Before the not-before time
            TokenExpiredError: After the expiry time
            TokenInvalidError: Bad signature, format, audience or issuer
        """
        pass


class JWTManager(TokenManager):
    """HS256 signed JSON Web Tokens"""

    def __init__(self, secret_key: str, audience: str = "bank-service",
                 issuer: str = "bank-service"):
        if len(secret_key) < MIN_SECRET_KEY_LENGTH:
            raise ValueError(
                f"invalid key size: it should be at least {MIN_SECRET_KEY_LENGTH} characters"
            )
        super().__init__(audience, issuer)
        self._secret_key = secret_key

    def _encode(self, payload: Payload) -> str:
        claims = {
            "jti": str(payload.id),
            "sub": payload.subject,
            "aud": payload.audience,
            "iss": payload.issuer,
            "nbf": payload.not_before,
            "iat": payload.issued_at,
            "exp": payload.expired_at
        }
        return jwt.encode(claims, self._secret_key, algorithm=JWT_ALGORITHM)

    def verify_token(self, token: str) -> Payload:
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[JWT_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["jti", "sub", "nbf", "iat", "exp"]}
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError()
        except jwt.ImmatureSignatureError:
            raise TokenNotValidYetError()
        except jwt.InvalidTokenError as e:
            raise TokenInvalidError(f"token invalid: {e}")

        try:
            token_id = uuid.UUID(claims["jti"])
        except ValueError:
            raise TokenInvalidError("token invalid: malformed token id")

        return Payload(
            id=token_id,
            subject=claims["sub"],
            audience=self.audience,
            issuer=claims["iss"],
            not_before=datetime.fromtimestamp(claims["nbf"], tz=timezone.utc),
            issued_at=datetime.fromtimestamp(claims["iat"], tz=timezone.utc),
            expired_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc)
        )


class FernetTokenManager(TokenManager):
    """
    Encrypted tokens: the payload is JSON sealed with Fernet (AES-CBC + HMAC),
    so clients can neither read nor alter the claims.
    """

    def __init__(self, symmetric_key: str, audience: str = "bank-service",
                 issuer: str = "bank-service"):
        raw_key = symmetric_key.encode()
        if len(raw_key) != FERNET_KEY_LENGTH:
            raise ValueError(f"symmetric key must be {FERNET_KEY_LENGTH} bytes long")
        super().__init__(audience, issuer)
        self._fernet = Fernet(base64.urlsafe_b64encode(raw_key))

    def _encode(self, payload: Payload) -> str:
        data = json.dumps(payload.to_dict(), separators=(',', ':')).encode()
        return self._fernet.encrypt(data).decode()

    def verify_token(self, token: str) -> Payload:
        try:
            data = self._fernet.decrypt(token.encode())
        except InvalidToken:
            raise TokenInvalidError()

        try:
            payload = Payload.from_dict(json.loads(data))
        except (ValueError, KeyError, TypeError):
            raise TokenInvalidError("token invalid: malformed payload")

        if payload.audience != self.audience or payload.issuer != self.issuer:
            raise TokenInvalidError("token invalid: audience or issuer mismatch")

        payload.check_time()
        return payload


def create_token_manager(config) -> TokenManager:
    """Build the token manager selected by config.token_type"""
    if config.token_type == "jwt":
        return JWTManager(config.token_secret_key, config.token_audience, config.token_issuer)
    if config.token_type == "fernet":
        return FernetTokenManager(config.token_secret_key, config.token_audience, config.token_issuer)
    raise ValueError(f"Unsupported token type: {config.token_type!r}")
