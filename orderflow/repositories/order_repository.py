"""
Репозиторий заказов
"""

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from orderflow.database.orm_models import Order
from orderflow.repositories.base import BaseRepository


class OrderRepository(BaseRepository[Order]):
    """Репозиторий для работы с заказами"""

    model = Order
    entity_name = "Order"

    async def get_with_items(self, order_id: int) -> Order | None:
        """Заказ вместе с позициями"""
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.line_items))
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_number(self, order_number: str) -> Order | None:
        """Заказ с позициями по публичному номеру"""
        stmt = (
            select(Order)
            .where(Order.order_number == order_number)
            .options(selectinload(Order.line_items))
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_user(
        self, user_id: str, status: str | None = None, offset: int = 0, limit: int = 10
    ) -> tuple[list[Order], int]:
        """
        Заказы покупателя, новые первыми

        Returns:
            (страница заказов с позициями, общее количество)
        """
        conditions = [Order.user_id == user_id]
        if status:
            conditions.append(Order.status == status)

        total = await self.session.scalar(select(func.count(Order.id)).where(*conditions))
        stmt = (
            select(Order)
            .where(*conditions)
            .options(selectinload(Order.line_items))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total or 0
