"""Общие проверки предусловий для всех операций с балансами."""
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Type, TypeVar

from gugapay.config import settings
from gugapay.errors import (
    AccountBlockedError,
    AccountNotFoundError,
    AmountTooLargeError,
    BalanceLimitExceededError,
    InsufficientFundsError,
    InvalidInputError,
)
from gugapay.money import Currency, fits_precision

AccountT = TypeVar("AccountT")
EnumT = TypeVar("EnumT", bound=Enum)


def require_amount(
        amount, currency: Currency, limit: Optional[Decimal] = None
) -> Decimal:
    """
    Сумма должна быть конечным положительным числом в точности валюты.

    limit ограничивает сумму сверху; без него действует наибольший
    допустимый баланс. Потолок проверяется до точности: quantize
    ограничен 28 значащими цифрами.
    """
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidInputError("Неверная сумма") from None

    if not value.is_finite() or value <= 0:
        raise InvalidInputError("Неверная сумма")
    if value > (settings.MAX_COIN_BALANCE if limit is None else limit):
        raise AmountTooLargeError()
    if not fits_precision(value, currency):
        places = 5 if currency == Currency.COIN else 2
        raise InvalidInputError(
            f"Сумма должна иметь не более {places} знаков после запятой"
        )
    return value


def require_account(
        account: Optional[AccountT], message: Optional[str] = None
) -> AccountT:
    if account is None:
        raise AccountNotFoundError(message)
    return account


def require_active(account) -> None:
    if account.blocked:
        raise AccountBlockedError()


def require_funds(
        balance: Decimal, amount: Decimal, message: Optional[str] = None
) -> None:
    if Decimal(balance) < amount:
        raise InsufficientFundsError(message)


def balance_limit(currency: Currency) -> Decimal:
    if currency == Currency.COIN:
        return settings.MAX_COIN_BALANCE
    return settings.MAX_RUB_BALANCE


def require_within_limit(new_balance: Decimal, currency: Currency) -> None:
    if new_balance > balance_limit(currency):
        if currency == Currency.COIN:
            raise BalanceLimitExceededError(
                "Новый монетный баланс превышает максимально допустимое "
                "значение"
            )
        raise BalanceLimitExceededError(
            "Новый рублевый баланс превышает максимально допустимое значение"
        )


def require_choice(enum_cls: Type[EnumT], value, message: str) -> EnumT:
    """Значение перечисления; неизвестное значение дает INVALID_INPUT."""
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidInputError(message) from None
