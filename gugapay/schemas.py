from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from gugapay.models import Transaction
from gugapay.money import (
    Currency, ExchangeDirection, format_amount, format_coin, format_rub
)
from gugapay.services.balance_service import RubOperation


def _to_decimal(v):
    """Сумма из JSON-числа в Decimal без двоичных артефактов float."""
    if v is None:
        return v
    return Decimal(str(v))


class WalletRequest(BaseModel):
    """Базовая схема запроса: поля принимаются по именам API."""

    model_config = ConfigDict(populate_by_name=True)

    amount: float = Field(
        gt=0, strict=True, allow_inf_nan=False,
        description="Сумма должна быть положительной"
    )

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v):
        return _to_decimal(v)


class TransferRequest(WalletRequest):
    from_user_id: str = Field(alias="fromUserId", min_length=1)
    to_user_id: str = Field(alias="toUserId", min_length=1)
    currency: Currency = Currency.COIN


class ExchangeRequest(WalletRequest):
    user_id: str = Field(alias="userId", min_length=1)
    direction: ExchangeDirection


class MerchantTransferRequest(WalletRequest):
    merchant_id: str = Field(alias="merchantId", min_length=1)
    to_user_id: str = Field(alias="toUserId", min_length=1)


class MerchantPaymentRequest(WalletRequest):
    user_id: str = Field(alias="userId", min_length=1)
    merchant_id: str = Field(alias="merchantId", min_length=1)
    purpose: Optional[str] = Field(default=None, max_length=255)


class MiningRequest(BaseModel):
    """amount необязателен: по умолчанию MINING_DEFAULT_AMOUNT."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    amount: Optional[float] = Field(
        default=None, gt=0, strict=True, allow_inf_nan=False
    )

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v):
        return _to_decimal(v)


class RubPurchaseRequest(WalletRequest):
    user_id: str = Field(alias="userId", min_length=1)
    operation_type: RubOperation


class CloudtipsRequest(WalletRequest):
    invoice_id: str = Field(alias="invoiceid", min_length=1)


# --- Ответы ---


class SuccessResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True


class TransferResponse(SuccessResponse):
    from_balance: str = Field(alias="fromBalance")
    to_balance: str = Field(alias="toBalance")


class ExchangeResponse(SuccessResponse):
    new_rub_balance: str = Field(alias="newRubBalance")
    new_coin_balance: str = Field(alias="newCoinBalance")


class BalanceResponse(SuccessResponse):
    balance: str


class MiningResponse(SuccessResponse):
    balance: str
    halving_step: int = Field(alias="halvingStep")


class RubBalanceResponse(SuccessResponse):
    new_rub_balance: str = Field(alias="newRubBalance")


class HalvingInfoResponse(SuccessResponse):
    halving_step: int = Field(alias="halvingStep")


class TransactionOut(BaseModel):
    """Запись журнала в формате истории операций."""

    hash: str
    type: str
    from_user_id: Optional[str] = None
    to_user_id: Optional[str] = None
    amount: str
    currency: Currency
    direction: Optional[str] = None
    new_coin_balance: Optional[str] = None
    new_rub_balance: Optional[str] = None
    purpose: Optional[str] = None
    external_id: Optional[str] = None
    created_at: str

    @classmethod
    def from_entry(cls, entry: Transaction) -> "TransactionOut":
        return cls(
            hash=entry.hash,
            type=entry.kind,
            from_user_id=entry.from_account_id,
            to_user_id=entry.to_account_id,
            amount=format_amount(entry.amount, entry.currency),
            currency=entry.currency,
            direction=entry.direction,
            new_coin_balance=(
                format_coin(entry.new_coin_balance)
                if entry.new_coin_balance is not None else None
            ),
            new_rub_balance=(
                format_rub(entry.new_rub_balance)
                if entry.new_rub_balance is not None else None
            ),
            purpose=entry.purpose,
            external_id=entry.external_id,
            created_at=entry.created_at.isoformat(),
        )


class TransactionsResponse(SuccessResponse):
    transactions: List[TransactionOut]


class TransactionResponse(SuccessResponse):
    transaction: TransactionOut


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: Optional[str] = None
