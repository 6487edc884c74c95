from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gugapay.config import settings
from gugapay.models import HalvingState
from gugapay.money import halving_step, rate_multiplier

HALVING_STATE_ID = 1


class HalvingRepository:
    """
    Состояние halving: общий объем выпуска и производный шаг курса.

    Изменяется только начислением за майнинг; чтение курса обмена
    не блокирует строку и видит последнее зафиксированное значение.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_state(
            self, for_update: bool = False
    ) -> Optional[HalvingState]:
        query = (
            select(HalvingState)
            .where(HalvingState.id == HALVING_STATE_ID)
            .execution_options(populate_existing=True)
        )

        if for_update:
            query = query.with_for_update()

        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def current_step(self) -> int:
        state = await self.get_state()
        if state is None:
            return 0
        return state.halving_step

    async def current_multiplier(self) -> Decimal:
        """Множитель курса: 1 + halving_step * RATE_STEP."""
        return rate_multiplier(await self.current_step(), settings.RATE_STEP)

    async def record_issuance(self, amount: Decimal) -> HalvingState:
        """
        Учесть выпуск монет: total_mined += amount, шаг пересчитывается.

        Строка создается при первом начислении. Одновременная вставка
        другим запросом приводит к IntegrityError при flush.
        """
        state = await self.get_state(for_update=True)

        if state is None:
            state = HalvingState(
                id=HALVING_STATE_ID,
                total_mined=Decimal("0"),
                halving_step=0,
            )
            self.db.add(state)

        state.total_mined = Decimal(state.total_mined) + amount
        state.halving_step = halving_step(state.total_mined)
        await self.db.flush()
        return state
