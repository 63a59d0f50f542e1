"""
Тесты для OutboxRelay и IdempotentConsumer
"""
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from orderflow.core.constants import EventType, LineItemType, OutboxStatus
from orderflow.database.orm_models import OutboxEvent
from orderflow.repositories.inbox_repository import InboxRepository
from orderflow.services.idempotent_consumer import IdempotentConsumer
from orderflow.services.outbox_admin import OutboxAdminService
from orderflow.services.outbox_relay import OutboxRelay
from orderflow.services.publisher import EventPublisher, OutboxMessage
from orderflow.utils.helpers import get_now


class RecordingPublisher(EventPublisher):
    """Публикатор для тестов: запоминает события, может падать или зависать"""

    def __init__(self, failures: int = 0, delay: float = 0.0):
        self.failures = failures
        self.delay = delay
        self.attempts: list[OutboxMessage] = []
        self.published: list[OutboxMessage] = []

    async def publish(self, message: OutboxMessage) -> None:
        self.attempts.append(message)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("broker unavailable")
        self.published.append(message)


def make_relay(db, publisher, worker_id="worker-1", **overrides) -> OutboxRelay:
    options = {
        "batch_size": 100,
        "publish_timeout": 1.0,
        "max_retries": 3,
        "initial_backoff": 1.0,
        "max_backoff": 10.0,
        "backoff_jitter": 0.0,
        "stale_after": 60,
    }
    options.update(overrides)
    return OutboxRelay(db, publisher, worker_id=worker_id, **options)


async def _events(db) -> list[OutboxEvent]:
    async with db.get_session() as session:
        result = await session.execute(select(OutboxEvent).order_by(OutboxEvent.id))
        return list(result.scalars().all())


async def _make_due(db):
    """Сдвигаем время следующей попытки в прошлое"""
    async with db.get_session() as session:
        await session.execute(
            update(OutboxEvent)
            .where(OutboxEvent.status == OutboxStatus.PENDING)
            .values(next_attempt_at=get_now() - timedelta(seconds=1))
        )


class TestRelayDelivery:
    """Тесты доставки событий"""

    @pytest.mark.asyncio
    async def test_publish_pending_events(self, db, order_service, order_data):
        """Тест публикации всех событий в порядке создания"""
        details = await order_service.create_order(order_data(LineItemType.PHYSICAL))
        await order_service.confirm_payment(details.id, "pay-1")
        publisher = RecordingPublisher()
        relay = make_relay(db, publisher)

        result = await relay.drain()

        events = await _events(db)
        assert result.published == len(events)
        assert all(event.status == OutboxStatus.PROCESSED for event in events)
        assert all(event.processed_at is not None for event in events)
        assert all(event.claimed_by is None for event in events)
        assert [message.event_id for message in publisher.published] == [e.id for e in events]
        assert publisher.published[0].event_type == EventType.ORDER_CREATED

        # Повторный проход ничего не публикует
        assert (await relay.run_once()).claimed == 0

    @pytest.mark.asyncio
    async def test_retry_with_backoff(self, db, order_service, order_data):
        """Тест: неудачная попытка откладывает событие с backoff"""
        await order_service.create_order(order_data(LineItemType.PHYSICAL))
        publisher = RecordingPublisher(failures=1)
        relay = make_relay(db, publisher, initial_backoff=30.0, max_backoff=300.0)

        before = get_now()
        result = await relay.run_once()

        assert result.retried == 1
        event = (await _events(db))[0]
        assert event.status == OutboxStatus.PENDING
        assert event.retry_count == 1
        assert "broker unavailable" in event.last_error
        assert event.next_attempt_at >= before + timedelta(seconds=29)
        assert event.claimed_by is None

        # Время следующей попытки еще не наступило
        assert (await relay.run_once()).claimed == 0

        await _make_due(db)
        result = await relay.run_once()
        assert result.published == 1
        assert publisher.published[0].attempt == 2

    @pytest.mark.asyncio
    async def test_publish_timeout(self, db, order_service, order_data):
        """Тест: зависшая публикация прерывается по таймауту"""
        await order_service.create_order(order_data(LineItemType.DIGITAL))
        relay = make_relay(db, RecordingPublisher(delay=1.0), publish_timeout=0.05)

        result = await relay.run_once()

        assert result.retried == 1
        event = (await _events(db))[0]
        assert event.retry_count == 1
        assert "Таймаут" in event.last_error

    @pytest.mark.asyncio
    async def test_dead_letter(self, db, order_service, order_data):
        """Тест: после исчерпания попыток событие уходит в dead letter"""
        await order_service.create_order(order_data(LineItemType.SERVICE))
        alerts = []

        async def on_dead_letter(message, error):
            alerts.append((message.idempotency_key, error))

        relay = make_relay(
            db, RecordingPublisher(failures=100), max_retries=2, on_dead_letter=on_dead_letter
        )

        assert (await relay.run_once()).retried == 1
        await _make_due(db)
        assert (await relay.run_once()).dead_lettered == 1

        event = (await _events(db))[0]
        assert event.status == OutboxStatus.FAILED
        assert event.retry_count == 2
        assert event.next_attempt_at is None
        assert alerts == [(event.idempotency_key, event.last_error)]

        # Dead letter больше не захватывается
        await _make_due(db)
        assert (await relay.run_once()).claimed == 0

        # Оператор видит событие в dead letter и возвращает его в очередь
        admin = OutboxAdminService(db)
        entries = await admin.list_dead_letters()
        assert [entry.event_id for entry in entries] == [event.id]
        assert entries[0].retry_count == 2
        assert "broker unavailable" in entries[0].last_error

        await admin.requeue_dead_letter(event.id)
        assert await admin.list_dead_letters() == []
        relay.publisher.failures = 0
        assert (await relay.run_once()).published == 1

    @pytest.mark.asyncio
    async def test_dead_letter_alert_error_is_logged(self, db, order_service, order_data):
        """Тест: ошибка алерта не ломает relay"""
        await order_service.create_order(order_data(LineItemType.PHYSICAL))

        async def broken_alert(message, error):
            raise RuntimeError("pager down")

        relay = make_relay(
            db, RecordingPublisher(failures=1), max_retries=1, on_dead_letter=broken_alert
        )

        result = await relay.run_once()
        assert result.dead_lettered == 1


class TestRelayCoordination:
    """Тесты координации нескольких воркеров"""

    @pytest.mark.asyncio
    async def test_claims_are_disjoint(self, db, order_service, order_data):
        """Тест: параллельные воркеры захватывают разные события"""
        for _ in range(3):
            await order_service.create_order(order_data(LineItemType.PHYSICAL))
        first = make_relay(db, RecordingPublisher(), worker_id="worker-1", batch_size=2)
        second = make_relay(db, RecordingPublisher(), worker_id="worker-2", batch_size=2)

        claimed_first, claimed_second = await asyncio.gather(
            first.claim_batch(), second.claim_batch()
        )

        ids_first = {message.event_id for message in claimed_first}
        ids_second = {message.event_id for message in claimed_second}
        assert ids_first.isdisjoint(ids_second)
        assert len(ids_first | ids_second) == 3

        events = await _events(db)
        assert all(event.status == OutboxStatus.PROCESSING for event in events)
        assert {event.claimed_by for event in events} == {"worker-1", "worker-2"}

    @pytest.mark.asyncio
    async def test_stale_claim_reclaimed_and_deduplicated(self, db, order_service, order_data):
        """Тест: событие брошенного воркера публикуется повторно, эффект один"""
        await order_service.create_order(order_data(LineItemType.PHYSICAL))
        applied = []

        async def handler(message, session):
            applied.append(message.idempotency_key)

        consumer = IdempotentConsumer(db, "notifications", handler)
        publisher = RecordingPublisher()
        crashed = make_relay(db, publisher, worker_id="crashed-worker")
        survivor = make_relay(db, publisher, worker_id="survivor")

        # Воркер захватил событие и "упал" до публикации
        claimed = await crashed.claim_batch()
        assert len(claimed) == 1

        # Захват еще свежий: событие не трогаем
        result = await survivor.run_once()
        assert result.reclaimed == 0
        assert result.claimed == 0

        async with db.get_session() as session:
            await session.execute(
                update(OutboxEvent).values(claimed_at=get_now() - timedelta(seconds=120))
            )

        result = await survivor.run_once()
        assert result.reclaimed == 1
        assert result.published == 1
        for message in publisher.published:
            await consumer(message)

        # Упавший воркер "проснулся" и доставил ту же копию
        assert await consumer.handle(claimed[0]) is False
        assert await crashed._mark_processed(claimed[0]) == "lost"

        assert applied == [claimed[0].idempotency_key]
        event = (await _events(db))[0]
        assert event.status == OutboxStatus.PROCESSED

        async with db.get_session() as session:
            assert await InboxRepository(session).count("notifications") == 1

    @pytest.mark.asyncio
    async def test_long_batch_not_reclaimed(self, db, order_service, order_data):
        """Тест: пачку живого воркера не перехватывают, даже если она дольше stale_after"""
        for _ in range(4):
            await order_service.create_order(order_data(LineItemType.PHYSICAL))
        slow = RecordingPublisher(delay=0.5)
        other = RecordingPublisher()
        busy = make_relay(db, slow, worker_id="busy", stale_after=1)
        idle = make_relay(db, other, worker_id="idle", stale_after=1)

        batch = asyncio.create_task(busy.run_once())
        await asyncio.sleep(1.4)
        result = await idle.run_once()
        busy_result = await batch

        assert result.reclaimed == 0
        assert result.claimed == 0
        assert other.published == []
        assert busy_result.published == 4
        assert len({message.event_id for message in slow.published}) == 4

    @pytest.mark.asyncio
    async def test_lost_claim_skipped_before_publish(self, db, order_service, order_data):
        """Тест: событие, перехваченное другим воркером, не публикуется повторно"""
        for _ in range(2):
            await order_service.create_order(order_data(LineItemType.PHYSICAL))

        class HijackingPublisher(RecordingPublisher):
            async def publish(self, message):
                await super().publish(message)
                # Пока публикуется первое событие, остальные достаются другому воркеру
                async with db.get_session() as session:
                    await session.execute(
                        update(OutboxEvent)
                        .where(OutboxEvent.id != message.event_id)
                        .values(claimed_by="worker-2")
                    )

        publisher = HijackingPublisher()
        relay = make_relay(db, publisher, worker_id="worker-1")

        result = await relay.run_once()

        assert result.claimed == 2
        assert result.published == 1
        assert result.lost == 1
        assert len(publisher.attempts) == 1

    @pytest.mark.asyncio
    async def test_graceful_shutdown(self, db, order_service, order_data):
        """Тест: остановка дожидается текущей пачки и не берет новые"""
        await order_service.create_order(order_data(LineItemType.PHYSICAL))
        relay = make_relay(db, RecordingPublisher(delay=0.2))

        batch = asyncio.create_task(relay.run_once())
        await asyncio.sleep(0.05)
        assert await relay.shutdown(timeout=5.0) is True

        result = await batch
        assert result.published == 1
        assert not relay.is_accepting

        await order_service.create_order(order_data(LineItemType.PHYSICAL))
        assert (await relay.run_once()).claimed == 0


class TestIdempotentConsumer:
    """Тесты идемпотентного потребителя"""

    @pytest.mark.asyncio
    async def test_handler_error_allows_redelivery(self, db):
        """Тест: ошибка обработчика не запоминает ключ"""
        calls = []

        async def handler(message, session):
            calls.append(message.idempotency_key)
            if len(calls) == 1:
                raise RuntimeError("temporary")

        consumer = IdempotentConsumer(db, "billing", handler)
        message = OutboxMessage(
            event_id=1,
            event_type="order.created",
            aggregate_type="order",
            aggregate_id=1,
            idempotency_key="order:1:created",
        )

        with pytest.raises(RuntimeError):
            await consumer.handle(message)
        assert await consumer.handle(message) is True
        assert await consumer.handle(message) is False
        assert len(calls) == 2
