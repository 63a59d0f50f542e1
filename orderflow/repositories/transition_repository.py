"""
Журнал переходов статусов (Transition Recorder)

Только добавление: методов изменения или удаления записей нет.
"""

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import select

from orderflow.database.orm_models import TransitionRecord
from orderflow.repositories.base import BaseRepository


logger = logging.getLogger(__name__)


class TransitionRepository(BaseRepository[TransitionRecord]):
    """Репозиторий журнала переходов"""

    model = TransitionRecord
    entity_name = "TransitionRecord"

    async def record(
        self,
        to_status: str,
        from_status: str | None = None,
        *,
        line_item_id: int | None = None,
        order_id: int | None = None,
        reason: str | None = None,
        actor_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> TransitionRecord:
        """
        Добавление записи о переходе

        Ошибка записи прерывает всю транзакцию перехода.

        Args:
            to_status: Новый статус
            from_status: Предыдущий статус (None только для записи о создании)
            line_item_id: ID позиции (взаимоисключающе с order_id)
            order_id: ID заказа (взаимоисключающе с line_item_id)
            reason: Причина перехода
            actor_id: Инициатор (None = система)
            metadata: Дополнительные данные

        Returns:
            Созданная запись
        """
        if (line_item_id is None) == (order_id is None):
            raise ValueError("Запись журнала ссылается ровно на заказ или на позицию")

        record = TransitionRecord(
            line_item_id=line_item_id,
            order_id=order_id,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            actor_id=actor_id,
            record_metadata=dict(metadata) if metadata else None,
        )
        await self.add(record)
        logger.debug(
            "Журнал: %s #%s %s → %s",
            "line_item" if line_item_id is not None else "order",
            line_item_id if line_item_id is not None else order_id,
            from_status,
            to_status,
        )
        return record

    async def get_line_item_history(self, line_item_id: int) -> list[TransitionRecord]:
        """История позиции в хронологическом порядке"""
        stmt = (
            select(TransitionRecord)
            .where(TransitionRecord.line_item_id == line_item_id)
            .order_by(TransitionRecord.created_at, TransitionRecord.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_order_history(self, order_id: int) -> list[TransitionRecord]:
        """История статусов самого заказа в хронологическом порядке"""
        stmt = (
            select(TransitionRecord)
            .where(TransitionRecord.order_id == order_id)
            .order_by(TransitionRecord.created_at, TransitionRecord.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_history_for_items(self, line_item_ids: list[int]) -> list[TransitionRecord]:
        """История нескольких позиций одним запросом"""
        if not line_item_ids:
            return []
        stmt = (
            select(TransitionRecord)
            .where(TransitionRecord.line_item_id.in_(line_item_ids))
            .order_by(TransitionRecord.created_at, TransitionRecord.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
