"""
Контракт публикации событий outbox

Формат шины сообщений не фиксируется: relay передает публикатору
OutboxMessage, а конкретная реализация отправляет его куда нужно.
"""

import asyncio
import fnmatch
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from orderflow.database.orm_models import OutboxEvent


logger = logging.getLogger(__name__)


class OutboxPublishError(Exception):
    """Временная ошибка публикации (брокер, сеть, таймаут)"""


@dataclass(frozen=True)
class OutboxMessage:
    """Событие в том виде, в котором его получают потребители"""

    event_id: int
    event_type: str
    aggregate_type: str
    aggregate_id: int
    idempotency_key: str
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    attempt: int = 1

    @classmethod
    def from_event(cls, event: OutboxEvent) -> "OutboxMessage":
        return cls(
            event_id=event.id,
            event_type=event.event_type,
            aggregate_type=event.aggregate_type,
            aggregate_id=event.aggregate_id,
            idempotency_key=event.idempotency_key,
            payload=dict(event.payload or {}),
            created_at=event.created_at,
            attempt=event.retry_count + 1,
        )


class EventPublisher(ABC):
    """Публикатор событий для relay"""

    @abstractmethod
    async def publish(self, message: OutboxMessage) -> None:
        """
        Опубликовать событие

        Raises:
            Exception: Любая ошибка означает неудачную попытку
        """

    async def close(self) -> None:
        """Освобождение ресурсов при остановке relay"""


class LoggingEventPublisher(EventPublisher):
    """Публикатор для разработки: пишет события в лог"""

    async def publish(self, message: OutboxMessage) -> None:
        logger.info(
            "EVENT %s [%s] %s#%s",
            message.event_type,
            message.idempotency_key,
            message.aggregate_type,
            message.aggregate_id,
        )


Handler = Callable[[OutboxMessage], Awaitable[None]]


class InProcessEventPublisher(EventPublisher):
    """
    Публикация подписчикам в том же процессе

    Подписка по шаблону типа события (fnmatch): 'physical.*', 'order.*', '*'.
    Ошибка любого обработчика делает попытку неудачной, и relay
    доставит событие повторно всем подписчикам, поэтому обработчики
    должны быть идемпотентны (см. IdempotentConsumer).
    """

    def __init__(self):
        self._subscriptions: list[tuple[str, Handler]] = []

    def subscribe(self, pattern: str, handler: Handler) -> None:
        self._subscriptions.append((pattern, handler))
        logger.debug("Подписка %s → %s", pattern, getattr(handler, "__name__", handler))

    def handlers_for(self, event_type: str) -> list[Handler]:
        return [
            handler
            for pattern, handler in self._subscriptions
            if fnmatch.fnmatchcase(event_type, pattern)
        ]

    async def publish(self, message: OutboxMessage) -> None:
        handlers = self.handlers_for(message.event_type)
        if not handlers:
            logger.debug("Нет подписчиков на %s", message.event_type)
            return

        results = await asyncio.gather(
            *(handler(message) for handler in handlers), return_exceptions=True
        )
        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            raise OutboxPublishError(
                f"{len(errors)} из {len(handlers)} обработчиков {message.event_type} "
                f"завершились ошибкой: {errors[0]!r}"
            ) from errors[0]
