"""
Outbox Writer: события в той же транзакции, что и изменение состояния
"""

from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.constants import AggregateType, EventType
from orderflow.database.orm_models import LineItem, Order, OutboxEvent
from orderflow.domain.fulfillment_data import fulfillment_snapshot
from orderflow.repositories.outbox_repository import OutboxRepository


def line_item_event_key(line_item_id: int, to_status: str, version: int) -> str:
    """
    Ключ идемпотентности события позиции

    version растет на каждый принятый переход, поэтому повторный проход
    через тот же статус дает новый ключ, а повторная доставка того же
    события сохраняет старый.
    """
    return f"line_item:{line_item_id}:{to_status}:{version}"


def order_event_key(order_id: int, suffix: str, version: int | None = None) -> str:
    """Ключ идемпотентности события заказа"""
    if version is None:
        return f"order:{order_id}:{suffix}"
    return f"order:{order_id}:{suffix}:{version}"


class OutboxWriter:
    """Формирование событий outbox внутри транзакции вызывающего кода"""

    def __init__(self, session: AsyncSession):
        self.repository = OutboxRepository(session)

    async def write_line_item_transition(
        self,
        item: LineItem,
        from_status: str,
        to_status: str,
        reason: str | None,
        actor_id: str | None,
        occurred_at: datetime,
    ) -> OutboxEvent:
        """
        Событие '<type>.status_changed' для принятого перехода позиции

        Вызывается после flush позиции, когда version уже увеличен.
        """
        payload = {
            "line_item_id": item.id,
            "order_id": item.order_id,
            "merchant_id": item.merchant_id,
            "product_id": item.product_id,
            "item_type": item.item_type,
            "from_status": from_status,
            "to_status": to_status,
            "reason": reason,
            "actor_id": actor_id,
            "version": item.version,
            "fulfillment": fulfillment_snapshot(item.item_type, item.fulfillment_data),
            "occurred_at": occurred_at.isoformat(),
        }
        return await self.repository.add_event(
            aggregate_type=AggregateType.LINE_ITEM,
            aggregate_id=item.id,
            event_type=EventType.line_item_status_changed(item.item_type),
            payload=payload,
            idempotency_key=line_item_event_key(item.id, to_status, item.version),
        )

    async def write_order_status_change(
        self,
        order: Order,
        from_status: str,
        to_status: str,
        occurred_at: datetime,
        line_items: list[tuple[str, str]] | None = None,
    ) -> OutboxEvent:
        """Событие 'order.status_changed' после пересчета статуса заказа"""
        payload = {
            "order_id": order.id,
            "order_number": order.order_number,
            "from_status": from_status,
            "to_status": to_status,
            "version": order.version,
            "line_item_statuses": [status for _, status in line_items or []],
            "occurred_at": occurred_at.isoformat(),
        }
        return await self.repository.add_event(
            aggregate_type=AggregateType.ORDER,
            aggregate_id=order.id,
            event_type=EventType.ORDER_STATUS_CHANGED,
            payload=payload,
            idempotency_key=order_event_key(order.id, to_status, order.version),
        )

    async def write_order_event(
        self, order: Order, event_type: str, payload: dict[str, Any], idempotency_key: str
    ) -> OutboxEvent:
        """Произвольное событие уровня заказа (order.created, order.payment_confirmed)"""
        return await self.repository.add_event(
            aggregate_type=AggregateType.ORDER,
            aggregate_id=order.id,
            event_type=event_type,
            payload={"order_id": order.id, "order_number": order.order_number, **payload},
            idempotency_key=idempotency_key,
        )
