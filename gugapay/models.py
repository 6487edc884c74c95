import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String,
    func,
)

from gugapay.database import Base

# Префикс идентификатора мерчанта в колонках from/to журнала
MERCHANT_PREFIX = "MERCHANT:"


def merchant_account_id(merchant_id: str) -> str:
    return f"{MERCHANT_PREFIX}{merchant_id}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    Пользователь кошелька: монетный баланс (5 знаков) и рублевый (2 знака).
    Колонка version используется для оптимистичной блокировки: запись
    устаревшей строки завершается StaleDataError.
    """
    __tablename__ = "users"

    user_id = Column(String, primary_key=True, index=True)
    balance = Column(
        Numeric(precision=14, scale=5), nullable=False, default=0
    )
    rub_balance = Column(
        Numeric(precision=14, scale=2), nullable=False, default=0
    )
    blocked = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_users_balance"),
        CheckConstraint("rub_balance >= 0", name="ck_users_rub_balance"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<User(user_id='{self.user_id}', balance={self.balance}, "
            f"rub_balance={self.rub_balance}, blocked={self.blocked})>"
        )


class Merchant(Base):
    """Мерчант хранит только монетный баланс."""
    __tablename__ = "merchants"

    merchant_id = Column(String, primary_key=True, index=True)
    balance = Column(
        Numeric(precision=14, scale=5), nullable=False, default=0
    )
    blocked = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_merchants_balance"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Merchant(merchant_id='{self.merchant_id}', "
            f"balance={self.balance}, blocked={self.blocked})>"
        )


class Transaction(Base):
    """
    Запись журнала операций. Строки только добавляются и никогда
    не изменяются: по ним восстанавливается история любого баланса.
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    hash = Column(
        String(32), nullable=False, unique=True, index=True,
        default=lambda: uuid.uuid4().hex
    )
    kind = Column(String(32), nullable=False)
    currency = Column(String(8), nullable=False)
    direction = Column(String(16), nullable=True)
    from_account_id = Column(String, nullable=True, index=True)
    to_account_id = Column(String, nullable=True, index=True)
    amount = Column(Numeric(precision=14, scale=5), nullable=False)
    new_coin_balance = Column(Numeric(precision=14, scale=5), nullable=True)
    new_rub_balance = Column(Numeric(precision=14, scale=2), nullable=True)
    purpose = Column(String(255), nullable=True)
    # Идентификатор внешнего платежа (invoiceid CloudTips)
    external_id = Column(String, nullable=True, unique=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False,
        default=_utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction(hash='{self.hash}', kind='{self.kind}', "
            f"amount={self.amount} {self.currency})>"
        )


class HalvingState(Base):
    """Единственная строка (id=1) с общим объемом намайненных монет."""
    __tablename__ = "halving"

    id = Column(Integer, primary_key=True)
    total_mined = Column(
        Numeric(precision=20, scale=5), nullable=False, default=0
    )
    halving_step = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<HalvingState(total_mined={self.total_mined}, "
            f"halving_step={self.halving_step})>"
        )
