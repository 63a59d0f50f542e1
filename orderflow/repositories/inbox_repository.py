"""
Журнал обработанных событий на стороне потребителя
"""

from sqlalchemy import func, select

from orderflow.database.orm_models import ConsumedEvent
from orderflow.repositories.base import BaseRepository


class InboxRepository(BaseRepository[ConsumedEvent]):
    """Репозиторий дедупликации событий потребителя"""

    model = ConsumedEvent
    entity_name = "ConsumedEvent"

    async def exists(self, consumer: str, idempotency_key: str) -> bool:
        stmt = select(func.count(ConsumedEvent.id)).where(
            ConsumedEvent.consumer == consumer,
            ConsumedEvent.idempotency_key == idempotency_key,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one() > 0

    async def remember(
        self, consumer: str, idempotency_key: str, event_type: str | None = None
    ) -> ConsumedEvent:
        """
        Отметка события как обработанного

        Уникальный индекс (consumer, idempotency_key) не даст записать
        одно событие дважды даже при гонке двух доставок.
        """
        return await self.add(
            ConsumedEvent(consumer=consumer, idempotency_key=idempotency_key, event_type=event_type)
        )

    async def count(self, consumer: str) -> int:
        result = await self.session.execute(
            select(func.count(ConsumedEvent.id)).where(ConsumedEvent.consumer == consumer)
        )
        return result.scalar_one()
