"""
Pydantic schemas for API requests
"""

from pydantic import BaseModel, Field, field_validator

from ..currency import is_supported_currency, supported_currencies
from ..records import INT64_MAX


def _check_currency(value: str) -> str:
    if not is_supported_currency(value):
        raise ValueError(f"unsupported currency, expected one of {supported_currencies()}")
    return value


# User schemas
class CreateUserRequest(BaseModel):
    username: str = Field(..., pattern=r"^[A-Za-z0-9]+$")
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=6)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class LoginUserRequest(BaseModel):
    username: str = Field(..., pattern=r"^[A-Za-z0-9]+$")
    password: str = Field(..., min_length=6)


# Account schemas
class CreateAccountRequest(BaseModel):
    currency: str = Field(..., description="Currency code (USD, EUR, CAD)")

    @field_validator("currency")
    @classmethod
    def currency_supported(cls, value: str) -> str:
        return _check_currency(value)


# Transfer schemas
class TransferRequest(BaseModel):
    from_account_id: int = Field(..., ge=1, le=INT64_MAX)
    to_account_id: int = Field(..., ge=1, le=INT64_MAX)
    amount: int = Field(..., gt=0, le=INT64_MAX, description="Amount in the smallest currency unit")
    currency: str

    @field_validator("currency")
    @classmethod
    def currency_supported(cls, value: str) -> str:
        return _check_currency(value)
