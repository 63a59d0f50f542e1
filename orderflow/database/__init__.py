"""
Database package: ORM модели и управление подключением
"""

from orderflow.database.orm_database import ORMDatabase
from orderflow.database.orm_models import (
    Base,
    ConsumedEvent,
    LineItem,
    Order,
    OutboxEvent,
    TransitionRecord,
)


__all__ = [
    "Base",
    "ConsumedEvent",
    "LineItem",
    "ORMDatabase",
    "Order",
    "OutboxEvent",
    "TransitionRecord",
]
