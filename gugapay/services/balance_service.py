import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, List, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from gugapay.config import settings
from gugapay.errors import (
    InvalidInputError,
    LedgerWriteFailedError,
    SelfTransferForbiddenError,
    StorageWriteFailedError,
    TransactionNotFoundError,
    WalletError,
)
from gugapay.models import HalvingState, Transaction, merchant_account_id
from gugapay.money import (
    Currency, ExchangeDirection, convert, quantize, to_coin, to_rub
)
from gugapay.repositories.account_repository import AccountRepository
from gugapay.repositories.halving_repository import HalvingRepository
from gugapay.repositories.ledger_repository import LedgerRepository
from gugapay.services.validation import (
    require_account,
    require_active,
    require_amount,
    require_choice,
    require_funds,
    require_within_limit,
)

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")

# Конфликты, после которых операцию можно безопасно повторить целиком
RETRYABLE_ERRORS = (StaleDataError, IntegrityError)


class TransactionKind(str, Enum):
    """Виды записей журнала."""

    TRANSFER = "transfer"
    EXCHANGE = "exchange"
    MERCHANT_PAYMENT = "merchant_payment"
    RUB_PURCHASE = "rub_purchase"
    MINING_CREDIT = "mining_credit"
    CLOUDTIPS_CREDIT = "cloudtips_credit"


class RubOperation(str, Enum):
    """Рублевые операции вне обмена."""

    PURCHASE = "purchase"
    SALE = "sale"


@dataclass
class TransferResult:
    from_balance: Decimal
    to_balance: Decimal
    transaction: Transaction


@dataclass
class ExchangeResult:
    new_coin_balance: Decimal
    new_rub_balance: Decimal
    transaction: Transaction


@dataclass
class MiningResult:
    balance: Decimal
    halving_step: int
    transaction: Transaction


@dataclass
class CreditResult:
    balance: Decimal
    transaction: Transaction
    duplicate: bool = False


def parse_invoice_id(invoice_id: str) -> str:
    """
    Извлечь ID пользователя из invoiceid CloudTips вида
    "<userId>_<суффикс>". Суффикс может быть пустым.
    """
    user_id, separator, _ = invoice_id.partition("_")
    if not separator or not user_id:
        raise InvalidInputError("Неверный формат invoiceid")
    return user_id


class BalanceService:
    """
    Атомарные операции с балансами.

    Каждая операция перечитывает строки счетов с блокировкой, проверяет
    предусловия, меняет балансы и добавляет запись в журнал в одной
    транзакции БД. Ошибка на любом шаге откатывает все изменения.
    Конфликт версий строки (параллельная запись) приводит к повтору
    операции целиком, не более MAX_WRITE_RETRIES раз.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.accounts = AccountRepository(db)
        self.ledger = LedgerRepository(db)
        self.halving = HalvingRepository(db)

    async def _run(
            self, operation: Callable[[], Awaitable[ResultT]]
    ) -> ResultT:
        attempts = max(1, settings.MAX_WRITE_RETRIES)
        for attempt in range(1, attempts + 1):
            try:
                result = await operation()
                await self.db.commit()
                return result
            except WalletError:
                await self.db.rollback()
                raise
            except RETRYABLE_ERRORS as e:
                await self.db.rollback()
                logger.warning(
                    "Write conflict (attempt %d/%d): %s", attempt, attempts, e
                )
                if attempt == attempts:
                    raise StorageWriteFailedError() from e
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error("Storage failure: %s", e, exc_info=True)
                raise StorageWriteFailedError() from e

    async def _write_balances(self) -> None:
        # Балансы сбрасываются до записи в журнал: конфликт версии
        # строки отличается от сбоя журнала
        await self.db.flush()

    async def _append(self, **fields) -> Transaction:
        try:
            return await self.ledger.append(**fields)
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            logger.error("Ledger append failed: %s", e, exc_info=True)
            raise LedgerWriteFailedError() from e

    # --- Переводы ---

    async def transfer(
            self,
            from_user_id: str,
            to_user_id: str,
            amount,
            currency: Currency = Currency.COIN,
    ) -> TransferResult:
        """Перевод между пользователями в одной валюте."""
        currency = require_choice(Currency, currency, "Неверная валюта")
        amount = require_amount(amount, currency)
        if from_user_id == to_user_id:
            raise SelfTransferForbiddenError()
        field = "balance" if currency == Currency.COIN else "rub_balance"

        async def operation() -> TransferResult:
            users = await self.accounts.get_users(
                [from_user_id, to_user_id], for_update=True
            )
            sender = require_account(
                users.get(from_user_id), "Отправитель не найден"
            )
            receiver = require_account(
                users.get(to_user_id), "Получатель не найден"
            )
            require_active(sender)
            require_active(receiver)

            sender_balance = Decimal(getattr(sender, field))
            receiver_balance = Decimal(getattr(receiver, field))
            require_funds(sender_balance, amount)
            new_to = quantize(receiver_balance + amount, currency)
            require_within_limit(new_to, currency)
            new_from = quantize(sender_balance - amount, currency)

            setattr(sender, field, new_from)
            setattr(receiver, field, new_to)
            await self._write_balances()

            entry = await self._append(
                kind=TransactionKind.TRANSFER.value,
                currency=currency.value,
                from_account_id=from_user_id,
                to_account_id=to_user_id,
                amount=amount,
            )
            return TransferResult(new_from, new_to, entry)

        result = await self._run(operation)
        logger.info(
            "[transfer] from=%s to=%s amount=%s %s",
            from_user_id, to_user_id, amount, currency.value
        )
        return result

    # --- Обмен ---

    async def exchange(
            self, user_id: str, direction: ExchangeDirection, amount
    ) -> ExchangeResult:
        """
        Обмен монет на рубли и обратно по курсу 1 + halving_step * 0.02.

        Сумма задается в исходной валюте направления: монеты для
        coin_to_rub, рубли для rub_to_coin.
        """
        direction = require_choice(
            ExchangeDirection, direction, "Неверное направление обмена"
        )
        source = (
            Currency.COIN
            if direction == ExchangeDirection.COIN_TO_RUB
            else Currency.RUB
        )
        amount = require_amount(
            amount, source, limit=settings.MAX_OPERATION_AMOUNT
        )

        async def operation() -> ExchangeResult:
            user = require_account(
                await self.accounts.get_user(user_id, for_update=True),
                "Пользователь не найден"
            )
            require_active(user)
            multiplier = await self.halving.current_multiplier()
            credit = convert(amount, multiplier, direction)
            if credit <= 0:
                raise InvalidInputError("Сумма обмена слишком мала")

            coin = Decimal(user.balance)
            rub = Decimal(user.rub_balance)
            if direction == ExchangeDirection.COIN_TO_RUB:
                require_funds(coin, amount, "Недостаточно монет")
                new_coin = to_coin(coin - amount)
                new_rub = to_rub(rub + credit)
            else:
                require_funds(rub, amount, "Недостаточно рублёвого баланса")
                new_rub = to_rub(rub - amount)
                new_coin = to_coin(coin + credit)
            require_within_limit(new_rub, Currency.RUB)
            require_within_limit(new_coin, Currency.COIN)

            user.balance = new_coin
            user.rub_balance = new_rub
            await self._write_balances()

            entry = await self._append(
                kind=TransactionKind.EXCHANGE.value,
                currency=source.value,
                direction=direction.value,
                from_account_id=user_id,
                to_account_id=user_id,
                amount=amount,
                new_coin_balance=new_coin,
                new_rub_balance=new_rub,
            )
            return ExchangeResult(new_coin, new_rub, entry)

        result = await self._run(operation)
        logger.info(
            "[exchange] user=%s direction=%s amount=%s",
            user_id, direction.value, amount
        )
        return result

    # --- Мерчанты ---

    async def merchant_payment(
            self,
            user_id: str,
            merchant_id: str,
            amount,
            purpose: Optional[str] = None,
    ) -> CreditResult:
        """Оплата мерчанту (по QR): монеты пользователя -> мерчанту."""
        amount = require_amount(amount, Currency.COIN)

        async def operation() -> CreditResult:
            # Порядок блокировок: сначала users, затем merchants
            user = require_account(
                await self.accounts.get_user(user_id, for_update=True),
                "Пользователь не найден"
            )
            merchant = require_account(
                await self.accounts.get_merchant(merchant_id, for_update=True),
                "Мерчант не найден"
            )
            require_active(user)
            require_active(merchant)

            require_funds(user.balance, amount)
            new_merchant = to_coin(Decimal(merchant.balance) + amount)
            require_within_limit(new_merchant, Currency.COIN)
            new_user = to_coin(Decimal(user.balance) - amount)

            user.balance = new_user
            merchant.balance = new_merchant
            await self._write_balances()

            entry = await self._append(
                kind=TransactionKind.MERCHANT_PAYMENT.value,
                currency=Currency.COIN.value,
                from_account_id=user_id,
                to_account_id=merchant_account_id(merchant_id),
                amount=amount,
                new_coin_balance=new_user,
                purpose=purpose,
            )
            return CreditResult(new_user, entry)

        result = await self._run(operation)
        logger.info(
            "[merchantPayment] user=%s -> merchant=%s amount=%s",
            user_id, merchant_id, amount
        )
        return result

    async def merchant_transfer(
            self, merchant_id: str, to_user_id: str, amount
    ) -> CreditResult:
        """Перевод монет от мерчанта пользователю."""
        amount = require_amount(amount, Currency.COIN)

        async def operation() -> CreditResult:
            user = require_account(
                await self.accounts.get_user(to_user_id, for_update=True),
                "Пользователь не найден"
            )
            merchant = require_account(
                await self.accounts.get_merchant(merchant_id, for_update=True),
                "Мерчант не найден"
            )
            require_active(merchant)
            require_active(user)

            require_funds(
                merchant.balance, amount, "Недостаточно средств у мерчанта"
            )
            new_user = to_coin(Decimal(user.balance) + amount)
            require_within_limit(new_user, Currency.COIN)
            new_merchant = to_coin(Decimal(merchant.balance) - amount)

            merchant.balance = new_merchant
            user.balance = new_user
            await self._write_balances()

            entry = await self._append(
                kind=TransactionKind.TRANSFER.value,
                currency=Currency.COIN.value,
                from_account_id=merchant_account_id(merchant_id),
                to_account_id=to_user_id,
                amount=amount,
            )
            return CreditResult(new_merchant, entry)

        result = await self._run(operation)
        logger.info(
            "[merchantTransfer] merchant=%s -> user=%s amount=%s",
            merchant_id, to_user_id, amount
        )
        return result

    async def merchant_balance(self, merchant_id: str) -> Decimal:
        merchant = require_account(
            await self.accounts.get_merchant(merchant_id),
            "Мерчант не найден"
        )
        return Decimal(merchant.balance)

    # --- Рублевые операции ---

    async def rub_purchase(
            self, user_id: str, operation_type: RubOperation, amount
    ) -> CreditResult:
        """purchase списывает рубли, sale зачисляет."""
        operation_type = require_choice(
            RubOperation, operation_type, "Неверный тип операции"
        )
        amount = require_amount(
            amount, Currency.RUB, limit=settings.MAX_OPERATION_AMOUNT
        )

        async def operation() -> CreditResult:
            user = require_account(
                await self.accounts.get_user(user_id, for_update=True),
                "Пользователь не найден"
            )
            require_active(user)

            rub = Decimal(user.rub_balance)
            if operation_type == RubOperation.PURCHASE:
                require_funds(rub, amount, "Недостаточно рублёвого баланса")
                new_rub = to_rub(rub - amount)
                from_id, to_id = user_id, None
            else:
                new_rub = to_rub(rub + amount)
                require_within_limit(new_rub, Currency.RUB)
                from_id, to_id = None, user_id

            user.rub_balance = new_rub
            await self._write_balances()

            entry = await self._append(
                kind=TransactionKind.RUB_PURCHASE.value,
                currency=Currency.RUB.value,
                direction=operation_type.value,
                from_account_id=from_id,
                to_account_id=to_id,
                amount=amount,
                new_rub_balance=new_rub,
            )
            return CreditResult(new_rub, entry)

        result = await self._run(operation)
        logger.info(
            "[rubPurchase] user=%s operation=%s amount=%s new_rub_balance=%s",
            user_id, operation_type.value, amount, result.balance
        )
        return result

    async def cloudtips_credit(self, invoice_id: str, amount) -> CreditResult:
        """
        Зачисление рублей по уведомлению CloudTips.

        Повторная доставка того же invoiceid ничего не меняет и
        возвращает текущий баланс.
        """
        user_id = parse_invoice_id(invoice_id)
        amount = require_amount(
            amount, Currency.RUB, limit=settings.MAX_OPERATION_AMOUNT
        )

        async def operation() -> CreditResult:
            user = require_account(
                await self.accounts.get_user(user_id, for_update=True),
                "Пользователь не найден"
            )
            existing = await self.ledger.get_by_external_id(invoice_id)
            if existing is not None:
                return CreditResult(
                    Decimal(user.rub_balance), existing, duplicate=True
                )
            require_active(user)

            new_rub = to_rub(Decimal(user.rub_balance) + amount)
            require_within_limit(new_rub, Currency.RUB)
            user.rub_balance = new_rub
            await self._write_balances()

            entry = await self._append(
                kind=TransactionKind.CLOUDTIPS_CREDIT.value,
                currency=Currency.RUB.value,
                to_account_id=user_id,
                amount=amount,
                new_rub_balance=new_rub,
                external_id=invoice_id,
            )
            return CreditResult(new_rub, entry)

        result = await self._run(operation)
        if result.duplicate:
            logger.info(
                "[CloudTips] invoice=%s already credited, skipped", invoice_id
            )
        else:
            logger.info(
                "[CloudTips] user=%s +%s RUB new_rub_balance=%s",
                user_id, amount, result.balance
            )
        return result

    # --- Майнинг и halving ---

    async def mining_credit(
            self, user_id: str, amount=None
    ) -> MiningResult:
        """Начисление намайненных монет и учет выпуска для halving."""
        if amount is None:
            amount = settings.MINING_DEFAULT_AMOUNT
        amount = require_amount(amount, Currency.COIN)

        async def operation() -> MiningResult:
            user = require_account(
                await self.accounts.get_user(user_id, for_update=True),
                "Пользователь не найден"
            )
            require_active(user)

            new_balance = to_coin(Decimal(user.balance) + amount)
            require_within_limit(new_balance, Currency.COIN)
            user.balance = new_balance
            await self._write_balances()

            state: HalvingState = await self.halving.record_issuance(amount)
            entry = await self._append(
                kind=TransactionKind.MINING_CREDIT.value,
                currency=Currency.COIN.value,
                to_account_id=user_id,
                amount=amount,
                new_coin_balance=new_balance,
            )
            return MiningResult(new_balance, state.halving_step, entry)

        result = await self._run(operation)
        logger.info(
            "[Mining] user=%s +%s => %s (halving_step=%d)",
            user_id, amount, result.balance, result.halving_step
        )
        return result

    async def halving_step(self) -> int:
        return await self.halving.current_step()

    # --- История ---

    async def transactions(
            self, user_id: str, limit: int = 100
    ) -> List[Transaction]:
        return await self.ledger.list_for_account(user_id, limit)

    async def transaction(self, tx_hash: str) -> Transaction:
        entry = await self.ledger.get_by_hash(tx_hash)
        if entry is None:
            raise TransactionNotFoundError()
        return entry
