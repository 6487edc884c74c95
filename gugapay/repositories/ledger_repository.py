from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from gugapay.models import Transaction


class LedgerRepository:
    """Журнал операций: только добавление и чтение."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(self, **fields) -> Transaction:
        """
        Добавить запись в журнал в рамках текущей транзакции сессии.

        Запись сбрасывается в БД сразу, чтобы нарушение уникальности
        external_id обнаружилось до commit.
        """
        entry = Transaction(**fields)
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def get_by_hash(self, tx_hash: str) -> Optional[Transaction]:
        result = await self.db.execute(
            select(Transaction).where(Transaction.hash == tx_hash)
        )
        return result.scalar_one_or_none()

    async def get_by_external_id(
            self, external_id: str
    ) -> Optional[Transaction]:
        result = await self.db.execute(
            select(Transaction).where(Transaction.external_id == external_id)
        )
        return result.scalar_one_or_none()

    async def list_for_account(
            self, account_id: str, limit: int = 100
    ) -> List[Transaction]:
        """Операции, где счет отправитель или получатель, новые первыми."""
        query = (
            select(Transaction)
            .where(
                or_(
                    Transaction.from_account_id == account_id,
                    Transaction.to_account_id == account_id,
                )
            )
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())
