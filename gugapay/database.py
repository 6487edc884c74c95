from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession, create_async_engine, async_sessionmaker
)
from sqlalchemy.orm import declarative_base

from gugapay.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.SQL_ECHO,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)

Base = declarative_base()


async def get_db() -> AsyncSession:
    """Сессия БД на один запрос; закрывается после ответа."""
    async with AsyncSessionLocal() as session:
        yield session


async def ping(db: AsyncSession) -> None:
    """Проверяет соединение с БД; исключение драйвера пробрасывается."""
    await db.execute(text("SELECT 1"))
