"""
Repository layer для абстракции работы с базой данных
"""

from orderflow.repositories.base import BaseRepository
from orderflow.repositories.exceptions import (
    ConcurrentModificationError,
    EntityNotFoundError,
    RepositoryError,
    StoreUnavailableError,
)
from orderflow.repositories.inbox_repository import InboxRepository
from orderflow.repositories.line_item_repository import LineItemRepository
from orderflow.repositories.order_repository import OrderRepository
from orderflow.repositories.outbox_repository import OutboxRepository
from orderflow.repositories.transition_repository import TransitionRepository


__all__ = [
    "BaseRepository",
    "ConcurrentModificationError",
    "EntityNotFoundError",
    "InboxRepository",
    "LineItemRepository",
    "OrderRepository",
    "OutboxRepository",
    "RepositoryError",
    "StoreUnavailableError",
    "TransitionRepository",
]
