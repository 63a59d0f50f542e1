"""
Репозиторий transactional outbox
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update

from orderflow.core.constants import OutboxStatus
from orderflow.database.orm_models import OutboxEvent
from orderflow.repositories.base import BaseRepository
from orderflow.utils.helpers import get_now


logger = logging.getLogger(__name__)

# Сколько символов ошибки сохраняем в last_error
MAX_ERROR_LENGTH = 2000


class OutboxRepository(BaseRepository[OutboxEvent]):
    """Репозиторий событий outbox"""

    model = OutboxEvent
    entity_name = "OutboxEvent"

    # ==================== ЗАПИСЬ (в транзакции перехода) ====================

    async def add_event(
        self,
        aggregate_type: str,
        aggregate_id: int,
        event_type: str,
        payload: Mapping[str, Any],
        idempotency_key: str,
    ) -> OutboxEvent:
        """
        Добавление события в статусе pending

        Вызывается в той же транзакции, что и изменение состояния.

        Args:
            aggregate_type: Тип агрегата (order / line_item)
            aggregate_id: ID агрегата
            event_type: Тип события
            payload: Данные события
            idempotency_key: Уникальный ключ для дедупликации у потребителей

        Returns:
            Созданное событие
        """
        now = get_now()
        event = OutboxEvent(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=dict(payload),
            status=OutboxStatus.PENDING,
            retry_count=0,
            idempotency_key=idempotency_key,
            created_at=now,
            next_attempt_at=now,
        )
        await self.add(event)
        logger.debug("Outbox: %s (%s)", event_type, idempotency_key)
        return event

    # ==================== RELAY ====================

    async def reclaim_stale(self, stale_before: datetime, now: datetime | None = None) -> int:
        """
        Возврат зависших в processing событий в pending

        Args:
            stale_before: События, захваченные раньше этого момента, считаются брошенными
            now: Текущее время

        Returns:
            Количество возвращенных событий
        """
        stmt = (
            update(OutboxEvent)
            .where(
                OutboxEvent.status == OutboxStatus.PROCESSING,
                OutboxEvent.claimed_at < stale_before,
            )
            .values(
                status=OutboxStatus.PENDING,
                claimed_at=None,
                claimed_by=None,
                next_attempt_at=now or get_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def claim_batch(
        self, worker_id: str, limit: int, max_retries: int, now: datetime | None = None
    ) -> list[OutboxEvent]:
        """
        Захват пачки событий для публикации

        Берутся pending события (и failed ниже лимита попыток), у которых
        наступило время следующей попытки, в порядке создания. Строки,
        заблокированные другим воркером, пропускаются (SKIP LOCKED).

        Args:
            worker_id: Идентификатор воркера relay
            limit: Размер пачки
            max_retries: Максимум попыток публикации
            now: Текущее время

        Returns:
            Захваченные события в статусе processing
        """
        now = now or get_now()
        stmt = (
            select(OutboxEvent)
            .where(
                or_(
                    OutboxEvent.status == OutboxStatus.PENDING,
                    and_(
                        OutboxEvent.status == OutboxStatus.FAILED,
                        OutboxEvent.retry_count < max_retries,
                    ),
                ),
                or_(OutboxEvent.next_attempt_at.is_(None), OutboxEvent.next_attempt_at <= now),
            )
            .order_by(OutboxEvent.created_at, OutboxEvent.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.session.execute(stmt)
        events = list(result.scalars().all())

        for event in events:
            event.status = OutboxStatus.PROCESSING
            event.claimed_at = now
            event.claimed_by = worker_id
        await self.session.flush()
        return events

    async def renew_claims(
        self, event_ids: list[int], worker_id: str, now: datetime | None = None
    ) -> set[int]:
        """
        Продление захвата еще не опубликованных событий пачки

        Живой воркер обновляет claimed_at перед каждой публикацией, поэтому
        его строки не считаются брошенными, пока пачка дорабатывает.

        Args:
            event_ids: События пачки, которые еще предстоит опубликовать
            worker_id: Идентификатор воркера relay
            now: Текущее время

        Returns:
            ID событий, которые все еще принадлежат воркеру
        """
        if not event_ids:
            return set()
        owned = (
            OutboxEvent.id.in_(event_ids),
            OutboxEvent.status == OutboxStatus.PROCESSING,
            OutboxEvent.claimed_by == worker_id,
        )
        await self.session.execute(
            update(OutboxEvent)
            .where(*owned)
            .values(claimed_at=now or get_now())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(select(OutboxEvent.id).where(*owned))
        return set(result.scalars().all())

    async def get_claimed(self, event_id: int, worker_id: str) -> OutboxEvent | None:
        """
        Событие, все еще захваченное этим воркером

        Returns:
            None, если событие было переназначено другому воркеру
        """
        stmt = (
            select(OutboxEvent)
            .where(
                OutboxEvent.id == event_id,
                OutboxEvent.status == OutboxStatus.PROCESSING,
                OutboxEvent.claimed_by == worker_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_processed(self, event: OutboxEvent, now: datetime | None = None) -> None:
        event.status = OutboxStatus.PROCESSED
        event.processed_at = now or get_now()
        event.last_error = None
        event.claimed_at = None
        event.claimed_by = None
        await self.session.flush()

    async def release_for_retry(
        self, event: OutboxEvent, error: str, next_attempt_at: datetime
    ) -> None:
        """Неудачная попытка: назад в pending с временем следующей попытки"""
        event.retry_count += 1
        event.last_error = error[:MAX_ERROR_LENGTH]
        event.status = OutboxStatus.PENDING
        event.next_attempt_at = next_attempt_at
        event.claimed_at = None
        event.claimed_by = None
        await self.session.flush()

    async def mark_dead_letter(self, event: OutboxEvent, error: str) -> None:
        """Попытки исчерпаны: событие становится dead letter (failed)"""
        event.retry_count += 1
        event.last_error = error[:MAX_ERROR_LENGTH]
        event.status = OutboxStatus.FAILED
        event.next_attempt_at = None
        event.claimed_at = None
        event.claimed_by = None
        await self.session.flush()

    # ==================== АДМИНИСТРИРОВАНИЕ ====================

    async def requeue_dead_letter(self, event_id: int, now: datetime | None = None) -> OutboxEvent:
        """
        Повторная постановка dead letter в очередь

        Raises:
            EntityNotFoundError: Если события нет
            ValueError: Если событие не в статусе failed
        """
        event = await self.get_for_update(event_id)
        if event.status != OutboxStatus.FAILED:
            raise ValueError(f"Событие #{event_id} не в dead letter (статус {event.status})")
        event.status = OutboxStatus.PENDING
        event.retry_count = 0
        event.next_attempt_at = now or get_now()
        await self.session.flush()
        return event

    async def get_by_idempotency_key(self, idempotency_key: str) -> OutboxEvent | None:
        result = await self.session.execute(
            select(OutboxEvent).where(OutboxEvent.idempotency_key == idempotency_key)
        )
        return result.scalar_one_or_none()

    async def list_by_aggregate(self, aggregate_type: str, aggregate_id: int) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(
                OutboxEvent.aggregate_type == aggregate_type,
                OutboxEvent.aggregate_id == aggregate_id,
            )
            .order_by(OutboxEvent.created_at, OutboxEvent.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_dead_letters(self, limit: int = 100) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.status == OutboxStatus.FAILED)
            .order_by(OutboxEvent.created_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def delete_processed_before(self, cutoff: datetime) -> int:
        """Удаление опубликованных событий старше cutoff"""
        stmt = (
            delete(OutboxEvent)
            .where(OutboxEvent.status == OutboxStatus.PROCESSED, OutboxEvent.processed_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def count_by_status(self) -> dict[str, int]:
        stmt = select(OutboxEvent.status, func.count(OutboxEvent.id)).group_by(OutboxEvent.status)
        result = await self.session.execute(stmt)
        counts = {status: 0 for status in OutboxStatus.all_statuses()}
        counts.update({status: count for status, count in result.all()})
        return counts

    async def count_retried(self) -> int:
        result = await self.session.execute(
            select(func.count(OutboxEvent.id)).where(OutboxEvent.retry_count > 0)
        )
        return result.scalar_one()

    async def oldest_pending_created_at(self) -> datetime | None:
        result = await self.session.execute(
            select(func.min(OutboxEvent.created_at)).where(
                OutboxEvent.status == OutboxStatus.PENDING
            )
        )
        return result.scalar_one_or_none()

    async def recent_processing_times(self, limit: int = 1000) -> list[float]:
        """Время от создания до публикации (секунды) для последних событий"""
        stmt = (
            select(OutboxEvent.created_at, OutboxEvent.processed_at)
            .where(OutboxEvent.status == OutboxStatus.PROCESSED)
            .order_by(OutboxEvent.processed_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [
            (processed_at - created_at).total_seconds()
            for created_at, processed_at in result.all()
            if processed_at is not None
        ]
