"""
Правила фиксированной точки для монет и рублей.

Монеты (GUGA) хранятся с 5 знаками после запятой, рубли с 2.
Все округления выполняются по ROUND_HALF_UP.
"""
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum

COIN_QUANT = Decimal("0.00001")
RUB_QUANT = Decimal("0.01")


class Currency(str, Enum):
    """Валюты балансов."""

    COIN = "COIN"
    RUB = "RUB"


class ExchangeDirection(str, Enum):
    """Направления обмена."""

    COIN_TO_RUB = "coin_to_rub"
    RUB_TO_COIN = "rub_to_coin"


def quantum(currency: Currency) -> Decimal:
    return COIN_QUANT if currency == Currency.COIN else RUB_QUANT


def to_coin(value: Decimal) -> Decimal:
    return Decimal(value).quantize(COIN_QUANT, rounding=ROUND_HALF_UP)


def to_rub(value: Decimal) -> Decimal:
    return Decimal(value).quantize(RUB_QUANT, rounding=ROUND_HALF_UP)


def quantize(value: Decimal, currency: Currency) -> Decimal:
    if currency == Currency.COIN:
        return to_coin(value)
    return to_rub(value)


def fits_precision(value: Decimal, currency: Currency) -> bool:
    """Проверяет, что у суммы не больше знаков, чем допускает валюта."""
    try:
        return value == value.quantize(quantum(currency))
    except InvalidOperation:
        # результат quantize длиннее точности контекста
        return False


def format_coin(value) -> str:
    return f"{to_coin(Decimal(value)):.5f}"


def format_rub(value) -> str:
    return f"{to_rub(Decimal(value)):.2f}"


def format_amount(value, currency: Currency) -> str:
    if Currency(currency) == Currency.COIN:
        return format_coin(value)
    return format_rub(value)


def halving_step(total_mined: Decimal) -> int:
    """Шаг halving: целая часть общего объема выпуска."""
    return int(Decimal(total_mined).to_integral_value(rounding=ROUND_FLOOR))


def rate_multiplier(step: int, rate_step: Decimal) -> Decimal:
    return Decimal(1) + Decimal(step) * rate_step


def convert(
    amount: Decimal, multiplier: Decimal, direction: ExchangeDirection
) -> Decimal:
    """
    Конвертирует сумму по курсу обмена.

    coin_to_rub: amount монет -> amount * multiplier рублей (2 знака);
    rub_to_coin: amount рублей -> amount / multiplier монет (5 знаков).
    Результат зависит только от аргументов.
    """
    if direction == ExchangeDirection.COIN_TO_RUB:
        return to_rub(amount * multiplier)
    return to_coin(amount / multiplier)
