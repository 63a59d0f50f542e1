"""
Идемпотентный потребитель событий outbox

Доставка at-least-once: одно событие может прийти несколько раз.
Ключ идемпотентности записывается в той же транзакции, что и эффект
обработчика, поэтому повторная доставка не создает второй эффект.
"""

import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.database.orm_database import ORMDatabase
from orderflow.repositories.inbox_repository import InboxRepository
from orderflow.services.publisher import OutboxMessage


logger = logging.getLogger(__name__)

ConsumerHandler = Callable[[OutboxMessage, AsyncSession], Awaitable[None]]


class IdempotentConsumer:
    """Обертка обработчика с дедупликацией по ключу идемпотентности"""

    def __init__(self, db: ORMDatabase, name: str, handler: ConsumerHandler):
        """
        Args:
            db: База данных потребителя
            name: Имя потребителя (ключи дедуплицируются в пределах имени)
            handler: Обработчик, получающий сессию транзакции
        """
        self.db = db
        self.name = name
        self.handler = handler
        self.__name__ = f"IdempotentConsumer[{name}]"

    async def __call__(self, message: OutboxMessage) -> None:
        await self.handle(message)

    async def handle(self, message: OutboxMessage) -> bool:
        """
        Обработать событие, если оно еще не обработано

        Returns:
            True если эффект применен, False если событие - дубликат
        """
        try:
            async with self.db.get_session() as session:
                inbox = InboxRepository(session)
                if await inbox.exists(self.name, message.idempotency_key):
                    logger.info(
                        "%s: дубликат %s пропущен", self.name, message.idempotency_key
                    )
                    return False
                await inbox.remember(self.name, message.idempotency_key, message.event_type)
                await self.handler(message, session)
        except IntegrityError:
            # Параллельная доставка того же ключа успела закоммититься первой
            logger.info("%s: дубликат %s пропущен", self.name, message.idempotency_key)
            return False

        logger.debug("%s: обработано %s", self.name, message.idempotency_key)
        return True
