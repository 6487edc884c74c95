import os
from decimal import Decimal
from typing import AsyncGenerator, List

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession, async_sessionmaker, create_async_engine
)
from sqlalchemy.pool import NullPool

from gugapay.database import Base, get_db
from gugapay.main import app
from gugapay.models import Merchant, User

# PostgreSQL в CI (TEST_DATABASE_URL), по умолчанию файл SQLite
TEST_DATABASE_URL = os.getenv(
    "TEST_DATABASE_URL",
    "sqlite+aiosqlite:///./test_gugapay.db",
)

# NullPool: каждая сессия получает собственное соединение
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=NullPool,
)

TestAsyncSessionLocal = async_sessionmaker(
    test_engine, expire_on_commit=False, class_=AsyncSession, autoflush=False
)


@pytest.fixture(scope="function", autouse=True)
async def setup_database():
    """Создание и удаление таблиц перед и после каждого теста."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await test_engine.dispose()


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Фикстура для получения сессии БД."""
    async with TestAsyncSessionLocal() as session:
        yield session


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Создает пользователя с заданными балансами."""
    async def _make_user(
        user_id: str,
        balance: str = "0",
        rub_balance: str = "0",
        blocked: bool = False,
    ) -> User:
        user = User(
            user_id=user_id,
            balance=Decimal(balance),
            rub_balance=Decimal(rub_balance),
            blocked=blocked,
        )
        db_session.add(user)
        await db_session.commit()
        return user
    return _make_user


@pytest.fixture
def make_merchant(db_session: AsyncSession):
    """Создает мерчанта с заданным балансом."""
    async def _make_merchant(
        merchant_id: str, balance: str = "0", blocked: bool = False
    ) -> Merchant:
        merchant = Merchant(
            merchant_id=merchant_id,
            balance=Decimal(balance),
            blocked=blocked,
        )
        db_session.add(merchant)
        await db_session.commit()
        return merchant
    return _make_merchant


@pytest.fixture
async def client(
    db_session: AsyncSession
) -> AsyncGenerator[AsyncClient, None]:
    """Фикстура для создания асинхронного клиента тестирования."""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        timeout=30.0
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def multiple_clients() -> AsyncGenerator[List[AsyncClient], None]:
    """
    Несколько независимых клиентов для конкурентных тестов.
    Каждый клиент работает через собственную сессию БД.
    """
    clients = []
    sessions = []

    for _ in range(5):
        session = TestAsyncSessionLocal()
        sessions.append(session)

        # Отдельное приложение: dependency_overrides привязаны к приложению
        client_app = FastAPI()
        client_app.include_router(app.router)
        client_app.exception_handlers.update(app.exception_handlers)

        def create_get_db(session=session):
            async def get_db_override():
                yield session
            return get_db_override

        client_app.dependency_overrides[get_db] = create_get_db()

        clients.append(
            AsyncClient(
                transport=ASGITransport(app=client_app),
                base_url="http://test",
                timeout=30.0
            )
        )

    yield clients

    for client in clients:
        await client.aclose()
    for session in sessions:
        await session.close()
