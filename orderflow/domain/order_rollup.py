"""
Вычисление статуса заказа по статусам позиций
"""

from collections.abc import Iterable

from orderflow.core.constants import (
    ITEM_CANCELLED,
    ITEM_PENDING,
    ITEM_REFUNDED,
    TERMINAL_SUCCESS_STATUSES,
    OrderStatus,
)


def compute_order_status(items: Iterable[tuple[str, str]]) -> str:
    """
    Статус заказа из пар (тип позиции, статус позиции)

    Правила проверяются по порядку:
        CANCELLED          - все позиции отменены
        REFUNDED           - все позиции возвращены
        COMPLETED          - все позиции в успешном терминальном статусе
        PARTIALLY_REFUNDED - хотя бы одна позиция возвращена
        PROCESSING         - хотя бы одна позиция вышла из pending
        PENDING            - иначе

    Args:
        items: Пары (item_type, status)

    Returns:
        Статус заказа из OrderStatus
    """
    items = list(items)
    if not items:
        return OrderStatus.PENDING

    statuses = [status for _, status in items]

    if all(status == ITEM_CANCELLED for status in statuses):
        return OrderStatus.CANCELLED
    if all(status == ITEM_REFUNDED for status in statuses):
        return OrderStatus.REFUNDED
    if all(TERMINAL_SUCCESS_STATUSES.get(item_type) == status for item_type, status in items):
        return OrderStatus.COMPLETED
    if any(status == ITEM_REFUNDED for status in statuses):
        return OrderStatus.PARTIALLY_REFUNDED
    if any(status != ITEM_PENDING for status in statuses):
        return OrderStatus.PROCESSING
    return OrderStatus.PENDING
