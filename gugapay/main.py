# gugapay/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from gugapay.config import settings
from gugapay.database import engine, get_db, ping
from gugapay.errors import (
    InvalidInputError,
    StorageWriteFailedError,
    WalletError,
)
from gugapay.money import format_amount, format_coin, format_rub
from gugapay.schemas import (
    BalanceResponse,
    CloudtipsRequest,
    ErrorResponse,
    ExchangeRequest,
    ExchangeResponse,
    HalvingInfoResponse,
    MerchantPaymentRequest,
    MerchantTransferRequest,
    MiningRequest,
    MiningResponse,
    RubBalanceResponse,
    RubPurchaseRequest,
    SuccessResponse,
    TransactionOut,
    TransactionResponse,
    TransactionsResponse,
    TransferRequest,
    TransferResponse,
)
from gugapay.services.balance_service import BalanceService

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Контекстный менеджер lifespan управляет событиями запуска и остановки.
    """
    logger.info("Starting up...")
    # Таблицы создаются через миграции Alembic
    yield
    logger.info("Shutting down...")
    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="API балансов GugaPay: переводы, обмен, мерчанты, майнинг",
    version="1.0.0",
    lifespan=lifespan
)


def get_service(db: AsyncSession = Depends(get_db)) -> BalanceService:
    return BalanceService(db)


def error_response(
        status_code: int, code: Optional[str], message: str
) -> JSONResponse:
    body = ErrorResponse(error=message, code=code)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
    )


@app.exception_handler(WalletError)
async def wallet_error_handler(request: Request, exc: WalletError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return error_response(exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
        request: Request, exc: RequestValidationError
):
    message = InvalidInputError.default_message
    errors = exc.errors()
    if errors:
        # loc начинается с источника: body, query или path
        field = ".".join(str(part) for part in errors[0].get("loc", ())[1:])
        details = " ".join(p for p in (field, errors[0].get("msg")) if p)
        message = f"{message}: {details}"
    return error_response(400, InvalidInputError.code, message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = "Not Found" if exc.status_code == 404 else str(exc.detail)
    return error_response(exc.status_code, None, message)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(
        "%s %s crashed: %s", request.method, request.url.path, exc,
        exc_info=exc
    )
    return error_response(
        500,
        StorageWriteFailedError.code,
        StorageWriteFailedError.default_message,
    )


@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Проверяет, что приложение работает и может подключиться к БД."""
    try:
        await ping(db)
        return {"status": "healthy", "database": "connected"}
    except SQLAlchemyError as e:
        logger.error("Health check failed: %s", e)
        return {
            "status": "unhealthy", "database": "disconnected", "error": str(e)
        }


@app.post(
    "/transfer",
    response_model=TransferResponse,
    summary="Перевод между пользователями",
    description="""
    Списывает сумму у отправителя и зачисляет получателю в одной валюте
    (COIN по умолчанию или RUB).

    Особенности:
    - Перевод самому себе запрещен
    - Проверяется достаточность баланса отправителя
    - Оба баланса и запись в журнале фиксируются одной транзакцией
    """
)
async def transfer(
    request: TransferRequest,
    service: BalanceService = Depends(get_service)
):
    result = await service.transfer(
        from_user_id=request.from_user_id,
        to_user_id=request.to_user_id,
        amount=request.amount,
        currency=request.currency,
    )
    return TransferResponse(
        from_balance=format_amount(result.from_balance, request.currency),
        to_balance=format_amount(result.to_balance, request.currency),
    )


@app.post(
    "/exchange",
    response_model=ExchangeResponse,
    summary="Обмен монет и рублей",
    description="Курс: 1 + halving_step * 0.02 рубля за монету."
)
async def exchange(
    request: ExchangeRequest,
    service: BalanceService = Depends(get_service)
):
    result = await service.exchange(
        user_id=request.user_id,
        direction=request.direction,
        amount=request.amount,
    )
    return ExchangeResponse(
        new_rub_balance=format_rub(result.new_rub_balance),
        new_coin_balance=format_coin(result.new_coin_balance),
    )


@app.post(
    "/merchantTransfer",
    response_model=SuccessResponse,
    summary="Перевод от мерчанта пользователю"
)
async def merchant_transfer(
    request: MerchantTransferRequest,
    service: BalanceService = Depends(get_service)
):
    await service.merchant_transfer(
        merchant_id=request.merchant_id,
        to_user_id=request.to_user_id,
        amount=request.amount,
    )
    return SuccessResponse()


@app.post(
    "/payMerchantOneTime",
    response_model=BalanceResponse,
    summary="Оплата мерчанту по QR"
)
async def pay_merchant(
    request: MerchantPaymentRequest,
    service: BalanceService = Depends(get_service)
):
    result = await service.merchant_payment(
        user_id=request.user_id,
        merchant_id=request.merchant_id,
        amount=request.amount,
        purpose=request.purpose,
    )
    return BalanceResponse(balance=format_coin(result.balance))


@app.get(
    "/merchantBalance",
    response_model=BalanceResponse,
    summary="Баланс мерчанта"
)
async def merchant_balance(
    merchant_id: str = Query(alias="merchantId", min_length=1),
    service: BalanceService = Depends(get_service)
):
    balance = await service.merchant_balance(merchant_id)
    return BalanceResponse(balance=format_coin(balance))


@app.post(
    "/update",
    response_model=MiningResponse,
    summary="Начисление за майнинг"
)
async def update_mining(
    request: MiningRequest,
    service: BalanceService = Depends(get_service)
):
    result = await service.mining_credit(
        user_id=request.user_id, amount=request.amount
    )
    return MiningResponse(
        balance=format_coin(result.balance),
        halving_step=result.halving_step,
    )


@app.post(
    "/rub_purchase",
    response_model=RubBalanceResponse,
    summary="Рублевая операция (purchase / sale)"
)
async def rub_purchase(
    request: RubPurchaseRequest,
    service: BalanceService = Depends(get_service)
):
    result = await service.rub_purchase(
        user_id=request.user_id,
        operation_type=request.operation_type,
        amount=request.amount,
    )
    return RubBalanceResponse(new_rub_balance=format_rub(result.balance))


@app.get(
    "/halvingInfo",
    response_model=HalvingInfoResponse,
    summary="Текущий шаг halving"
)
async def halving_info(service: BalanceService = Depends(get_service)):
    return HalvingInfoResponse(halving_step=await service.halving_step())


@app.post(
    "/cloudtips/complete",
    response_model=RubBalanceResponse,
    summary="Пополнение рублей через CloudTips"
)
async def cloudtips_complete(
    request: CloudtipsRequest,
    service: BalanceService = Depends(get_service)
):
    result = await service.cloudtips_credit(
        invoice_id=request.invoice_id, amount=request.amount
    )
    return RubBalanceResponse(new_rub_balance=format_rub(result.balance))


@app.get(
    "/transactions",
    response_model=TransactionsResponse,
    summary="История операций пользователя"
)
async def transactions(
    user_id: str = Query(alias="userId", min_length=1),
    limit: int = Query(default=100, ge=1, le=1000),
    service: BalanceService = Depends(get_service)
):
    entries = await service.transactions(user_id, limit=limit)
    return TransactionsResponse(
        transactions=[TransactionOut.from_entry(e) for e in entries]
    )


@app.get(
    "/transaction/{tx_hash}",
    response_model=TransactionResponse,
    summary="Операция по hash"
)
async def transaction_detail(
    tx_hash: str,
    service: BalanceService = Depends(get_service)
):
    entry = await service.transaction(tx_hash)
    return TransactionResponse(transaction=TransactionOut.from_entry(entry))


@app.get("/")
async def root():
    """Корневой эндпоинт."""
    return {"message": "GugaCoin backend is running"}
