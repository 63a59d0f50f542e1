"""Ядро приложения - конфигурация и константы"""

from orderflow.core.config import Config
from orderflow.core.constants import (
    AggregateType,
    DigitalItemStatus,
    LineItemType,
    OrderStatus,
    OutboxStatus,
    PaymentStatus,
    PhysicalItemStatus,
    ServiceItemStatus,
)


__all__ = [
    "AggregateType",
    "Config",
    "DigitalItemStatus",
    "LineItemType",
    "OrderStatus",
    "OutboxStatus",
    "PaymentStatus",
    "PhysicalItemStatus",
    "ServiceItemStatus",
]
