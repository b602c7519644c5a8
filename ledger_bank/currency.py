"""
Currency Support Module

The fixed set of currencies an account may hold. Amounts everywhere are
signed integers in the currency's smallest unit, so no precision handling
lives here.
"""

from enum import Enum


class Currency(Enum):
    """Supported ISO 4217 currency codes"""
    USD = "USD"
    EUR = "EUR"
    CAD = "CAD"

    @property
    def code(self) -> str:
        return self.value


def is_supported_currency(code: str) -> bool:
    """Check whether a currency code is accepted for accounts and transfers"""
    return code in Currency._value2member_map_


def supported_currencies() -> list:
    return [c.code for c in Currency]
