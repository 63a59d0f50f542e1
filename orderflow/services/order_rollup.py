"""
Пересчет статуса заказа по статусам позиций
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from orderflow.core.constants import OrderStatus
from orderflow.domain.order_rollup import compute_order_status
from orderflow.repositories.exceptions import ConcurrentModificationError
from orderflow.repositories.line_item_repository import LineItemRepository
from orderflow.repositories.order_repository import OrderRepository
from orderflow.repositories.transition_repository import TransitionRepository
from orderflow.services.outbox_writer import OutboxWriter
from orderflow.utils.helpers import get_now


logger = logging.getLogger(__name__)


class OrderRollupService:
    """Roll-up статуса заказа в транзакции перехода позиции"""

    async def recompute(
        self,
        session: AsyncSession,
        order_id: int,
        actor_id: str | None = None,
        line_item_id: int | None = None,
    ) -> str:
        """
        Пересчитать и сохранить статус заказа

        Заказ блокируется после позиции: порядок блокировок всегда
        позиция → заказ.

        Args:
            session: Сессия текущей транзакции
            order_id: ID заказа
            actor_id: Инициатор исходного перехода
            line_item_id: Позиция, переход которой вызвал пересчет

        Returns:
            Актуальный статус заказа
        """
        order = await OrderRepository(session).get_for_update(order_id)
        pairs = await LineItemRepository(session).get_type_status_pairs(order_id)
        new_status = compute_order_status(pairs)

        if new_status == order.status:
            return new_status

        old_status = order.status
        expected_version = order.version
        now = get_now()

        order.status = new_status
        if new_status == OrderStatus.COMPLETED:
            order.completed_at = now
        try:
            await session.flush()
        except StaleDataError as e:
            raise ConcurrentModificationError("Order", order_id, expected_version) from e

        await TransitionRepository(session).record(
            new_status,
            old_status,
            order_id=order.id,
            reason="Пересчет по статусам позиций",
            actor_id=actor_id,
            metadata={"line_item_id": line_item_id} if line_item_id is not None else None,
        )
        await OutboxWriter(session).write_order_status_change(
            order, old_status, new_status, occurred_at=now, line_items=pairs
        )

        logger.info("Заказ #%s: %s → %s", order.id, old_status, new_status)
        return new_status
