"""
Репозиторий позиций заказа
"""

from sqlalchemy import select

from orderflow.database.orm_models import LineItem
from orderflow.repositories.base import BaseRepository


class LineItemRepository(BaseRepository[LineItem]):
    """Репозиторий для работы с позициями заказа"""

    model = LineItem
    entity_name = "LineItem"

    async def get_by_order(self, order_id: int) -> list[LineItem]:
        """Позиции заказа по возрастанию ID"""
        stmt = select(LineItem).where(LineItem.order_id == order_id).order_by(LineItem.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_type_status_pairs(self, order_id: int) -> list[tuple[str, str]]:
        """Пары (тип, статус) всех позиций заказа для roll-up"""
        stmt = (
            select(LineItem.item_type, LineItem.status)
            .where(LineItem.order_id == order_id)
            .order_by(LineItem.id)
        )
        result = await self.session.execute(stmt)
        return [(item_type, status) for item_type, status in result.all()]

    async def list_by_merchant(
        self, merchant_id: str, status: str | None = None, limit: int = 100
    ) -> list[LineItem]:
        """Позиции мерчанта, новые первыми"""
        stmt = select(LineItem).where(LineItem.merchant_id == merchant_id)
        if status:
            stmt = stmt.where(LineItem.status == status)
        stmt = stmt.order_by(LineItem.created_at.desc(), LineItem.id.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
