from typing import Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gugapay.models import Merchant, User


class AccountRepository:
    """Репозиторий пользователей и мерчантов."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(
            self, user_id: str, for_update: bool = False
    ) -> Optional[User]:
        """
        Получить пользователя по ID.

        Строка всегда перечитывается из БД, даже если объект уже есть
        в сессии: балансы не кэшируются между операциями.

        :param user_id: ID пользователя
        :param for_update: Если True, блокирует запись для обновления
        (SELECT FOR UPDATE)
        :return: Объект User или None
        """
        query = (
            select(User)
            .where(User.user_id == user_id)
            .execution_options(populate_existing=True)
        )

        if for_update:
            query = query.with_for_update()

        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_users(
            self, user_ids: Iterable[str], for_update: bool = False
    ) -> Dict[str, User]:
        """
        Получить несколько пользователей одним запросом.

        Строки блокируются в порядке user_id, чтобы встречные переводы
        не взаимоблокировались.
        """
        query = (
            select(User)
            .where(User.user_id.in_(sorted(set(user_ids))))
            .order_by(User.user_id)
            .execution_options(populate_existing=True)
        )

        if for_update:
            query = query.with_for_update()

        result = await self.db.execute(query)
        return {user.user_id: user for user in result.scalars().all()}

    async def get_merchant(
            self, merchant_id: str, for_update: bool = False
    ) -> Optional[Merchant]:
        """Получить мерчанта по ID (с блокировкой при for_update)."""
        query = (
            select(Merchant)
            .where(Merchant.merchant_id == merchant_id)
            .execution_options(populate_existing=True)
        )

        if for_update:
            query = query.with_for_update()

        result = await self.db.execute(query)
        return result.scalar_one_or_none()
