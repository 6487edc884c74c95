from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Класс для хранения настроек приложения."""

    POSTGRES_USER: str = "gugapay_user"
    POSTGRES_PASSWORD: str = "gugapay_password"
    POSTGRES_DB: str = "gugapay_db"
    POSTGRES_HOST: str = "db"
    POSTGRES_PORT: int = 5432

    # Полный URL имеет приоритет над отдельными параметрами
    DATABASE_URL_OVERRIDE: Optional[str] = None

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:"
            f"{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:"
            f"{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    PROJECT_NAME: str = "GugaPay API"
    SQL_ECHO: bool = False
    LOG_LEVEL: str = "INFO"

    # Майнинг и halving
    MINING_DEFAULT_AMOUNT: Decimal = Decimal("0.00001")
    RATE_STEP: Decimal = Decimal("0.02")

    # Ограничения числового представления
    MAX_OPERATION_AMOUNT: Decimal = Decimal("99999999.99")
    MAX_COIN_BALANCE: Decimal = Decimal("999999999.99999")
    MAX_RUB_BALANCE: Decimal = Decimal("999999999.99")

    # Повторы операции при конфликте версий строк
    MAX_WRITE_RETRIES: int = 3

    model_config = SettingsConfigDict(env_file=".env")


settings = Settings()
