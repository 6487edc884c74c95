from typing import Optional


class WalletError(Exception):
    """
    Базовая ошибка операций с балансами.

    code попадает в ответ API и определяет тип ошибки,
    status_code задает HTTP-статус ответа.
    """

    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Внутренняя ошибка сервера"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInputError(WalletError):
    code = "INVALID_INPUT"
    status_code = 400
    default_message = "Неверные данные"


class AmountTooLargeError(WalletError):
    code = "AMOUNT_TOO_LARGE"
    status_code = 400
    default_message = "Сумма операции слишком большая"


class BalanceLimitExceededError(WalletError):
    code = "BALANCE_LIMIT_EXCEEDED"
    status_code = 400
    default_message = "Новый баланс превышает максимально допустимое значение"


class SelfTransferForbiddenError(WalletError):
    code = "SELF_TRANSFER_FORBIDDEN"
    status_code = 400
    default_message = "Нельзя переводить самому себе"


class AccountNotFoundError(WalletError):
    code = "ACCOUNT_NOT_FOUND"
    status_code = 404
    default_message = "Аккаунт не найден"


class AccountBlockedError(WalletError):
    code = "ACCOUNT_BLOCKED"
    status_code = 403
    default_message = "Аккаунт заблокирован"


class InsufficientFundsError(WalletError):
    code = "INSUFFICIENT_FUNDS"
    status_code = 400
    default_message = "Недостаточно средств"


class TransactionNotFoundError(WalletError):
    code = "TRANSACTION_NOT_FOUND"
    status_code = 404
    default_message = "Транзакция не найдена"


class StorageWriteFailedError(WalletError):
    code = "STORAGE_WRITE_FAILED"
    status_code = 500
    default_message = "Не удалось обновить баланс"


class LedgerWriteFailedError(WalletError):
    code = "LEDGER_WRITE_FAILED"
    status_code = 500
    default_message = "Ошибка записи транзакции"
