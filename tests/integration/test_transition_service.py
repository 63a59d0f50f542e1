"""
Тесты для LineItemTransitionService: переходы, журнал, outbox и roll-up
"""
import asyncio

import pytest
from sqlalchemy import func, select

from orderflow.core.constants import (
    DigitalItemStatus,
    LineItemType,
    OrderStatus,
    OutboxStatus,
    PhysicalItemStatus,
    ServiceItemStatus,
)
from orderflow.database.orm_database import ORMDatabase
from orderflow.database.orm_models import LineItem, OutboxEvent, TransitionRecord
from orderflow.domain.line_item_state_machine import (
    InvalidStateTransitionError,
    LineItemStateMachine,
    RefundNotAllowedError,
)
from orderflow.domain.refund_policy import RefundPolicy
from orderflow.repositories.exceptions import EntityNotFoundError
from orderflow.repositories.outbox_repository import OutboxRepository
from orderflow.schemas.transition import BookingSchema, ShipmentSchema
from orderflow.services.transition_service import LineItemTransitionService


async def _create_paid_order(order_service, order_data, *item_types):
    details = await order_service.create_order(order_data(*item_types))
    await order_service.confirm_payment(details.id, "pay-1")
    return details


async def _item(db, item_id) -> LineItem:
    async with db.get_session() as session:
        return await session.get(LineItem, item_id)


async def _line_item_events(db, item_id) -> list[OutboxEvent]:
    async with db.get_session() as session:
        return await OutboxRepository(session).list_by_aggregate("line_item", item_id)


class TestPhysicalScenario:
    """Физическая позиция от оплаты до доставки"""

    @pytest.mark.asyncio
    async def test_happy_path(self, db, order_service, transition_service, order_data):
        """Тест полного пути доставки с журналом, событиями и статусом заказа"""
        details = await _create_paid_order(order_service, order_data, LineItemType.PHYSICAL)
        item_id = details.items[0].id

        await transition_service.attempt_transition(
            item_id, PhysicalItemStatus.PREPARING, actor_id="merchant-1"
        )
        await transition_service.attempt_transition(
            item_id, PhysicalItemStatus.READY_TO_SHIP, actor_id="merchant-1"
        )
        await order_service.ship_line_item(
            item_id, ShipmentSchema(carrier="UPS", tracking_number="1Z999"), actor_id="merchant-1"
        )
        await transition_service.attempt_transition(item_id, PhysicalItemStatus.OUT_FOR_DELIVERY)
        outcome = await transition_service.attempt_transition(
            item_id, PhysicalItemStatus.DELIVERED
        )

        assert outcome.changed
        assert outcome.order_status == OrderStatus.COMPLETED

        item = await _item(db, item_id)
        assert item.status == PhysicalItemStatus.DELIVERED
        assert item.fulfillment_data["carrier"] == "UPS"
        assert item.fulfillment_data["tracking_number"] == "1Z999"
        assert item.fulfillment_data["delivered_at"]

        history = await order_service.get_line_item_history(item_id)
        transitions = [record for record in history if record.from_status is not None]
        assert [record.to_status for record in transitions] == [
            PhysicalItemStatus.PAYMENT_CONFIRMED,
            PhysicalItemStatus.PREPARING,
            PhysicalItemStatus.READY_TO_SHIP,
            PhysicalItemStatus.SHIPPED,
            PhysicalItemStatus.OUT_FOR_DELIVERY,
            PhysicalItemStatus.DELIVERED,
        ]
        # Журнал образует непрерывную цепочку
        for previous, current in zip(history, history[1:]):
            assert current.from_status == previous.to_status
        assert LineItemStateMachine.is_valid_walk(
            LineItemType.PHYSICAL, [history[0].to_status] + [r.to_status for r in transitions]
        )

        events = await _line_item_events(db, item_id)
        assert [event.payload["to_status"] for event in events] == [
            record.to_status for record in transitions
        ]
        assert all(event.event_type == "physical.status_changed" for event in events)

        order = await order_service.get_order_details(details.id)
        assert order.status == OrderStatus.COMPLETED
        assert order.completed_at is not None
        assert [record.to_status for record in order.history] == [
            OrderStatus.PENDING,
            OrderStatus.PROCESSING,
            OrderStatus.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_skip_out_for_delivery_rejected(
        self, db, order_service, transition_service, order_data
    ):
        """Тест: из shipped сразу в delivered перейти нельзя"""
        details = await _create_paid_order(order_service, order_data, LineItemType.PHYSICAL)
        item_id = details.items[0].id
        for status in (PhysicalItemStatus.PREPARING, PhysicalItemStatus.READY_TO_SHIP):
            await transition_service.attempt_transition(item_id, status)
        await order_service.ship_line_item(
            item_id, ShipmentSchema(carrier="UPS", tracking_number="1Z999")
        )

        with pytest.raises(InvalidStateTransitionError):
            await transition_service.attempt_transition(item_id, PhysicalItemStatus.DELIVERED)

        assert (await _item(db, item_id)).status == PhysicalItemStatus.SHIPPED

    @pytest.mark.asyncio
    async def test_ship_without_tracking_rejected(
        self, db, order_service, transition_service, order_data
    ):
        """Тест: отправка без трек-номера отклоняется"""
        details = await _create_paid_order(order_service, order_data, LineItemType.PHYSICAL)
        item_id = details.items[0].id
        for status in (PhysicalItemStatus.PREPARING, PhysicalItemStatus.READY_TO_SHIP):
            await transition_service.attempt_transition(item_id, status)

        with pytest.raises(InvalidStateTransitionError, match="tracking_number"):
            await transition_service.attempt_transition(
                item_id, PhysicalItemStatus.SHIPPED, metadata={"carrier": "UPS"}
            )


class TestDigitalScenario:
    """Цифровая позиция: возврат без скачивания"""

    @pytest.mark.asyncio
    async def test_refund_without_download(
        self, db, order_service, transition_service, order_data
    ):
        """Тест возврата цифрового товара до скачивания"""
        details = await _create_paid_order(order_service, order_data, LineItemType.DIGITAL)
        item_id = details.items[0].id

        granted = await transition_service.attempt_transition(
            item_id, DigitalItemStatus.ACCESS_GRANTED
        )
        assert granted.order_status == OrderStatus.PROCESSING
        item = await _item(db, item_id)
        assert item.fulfillment_data["download_url"] == f"/downloads/{item_id}"
        access_key = item.fulfillment_data["access_key"]
        assert access_key

        await transition_service.attempt_transition(
            item_id, DigitalItemStatus.REFUND_REQUESTED, reason="Не подошел формат"
        )
        outcome = await transition_service.attempt_transition(item_id, DigitalItemStatus.REFUNDED)
        assert outcome.order_status == OrderStatus.REFUNDED

        item = await _item(db, item_id)
        assert item.fulfillment_data["access_key"] is None
        assert item.fulfillment_data["download_count"] == 0

        events = await _line_item_events(db, item_id)
        refunded = [event for event in events if event.payload["to_status"] == "refunded"]
        assert len(refunded) == 1
        assert refunded[0].event_type == "digital.status_changed"
        assert refunded[0].status == OutboxStatus.PENDING
        # Секретный ключ доступа не попадает в события ни в каком виде
        assert all("access_key" not in event.payload["fulfillment"] for event in events)
        assert all(access_key not in str(event.payload) for event in events)

    @pytest.mark.asyncio
    async def test_refund_window_policy(self, db, order_service, order_data):
        """Тест: политика окна возврата отклоняет возврат скачанного товара"""
        service = LineItemTransitionService(db, refund_policy=RefundPolicy(digital_window_days=0))
        details = await _create_paid_order(order_service, order_data, LineItemType.DIGITAL)
        item_id = details.items[0].id

        await service.attempt_transition(item_id, DigitalItemStatus.ACCESS_GRANTED)
        await service.attempt_transition(item_id, DigitalItemStatus.DOWNLOADED)
        await asyncio.sleep(0.01)

        with pytest.raises(RefundNotAllowedError):
            await service.attempt_transition(item_id, DigitalItemStatus.REFUND_REQUESTED)
        assert (await _item(db, item_id)).status == DigitalItemStatus.DOWNLOADED


class TestServiceScenario:
    """Услуга: неявка клиента"""

    @pytest.mark.asyncio
    async def test_no_show_then_completed_rejected(
        self, db, order_service, transition_service, order_data
    ):
        """Тест: после no_show завершить услугу нельзя"""
        details = await _create_paid_order(order_service, order_data, LineItemType.SERVICE)
        item_id = details.items[0].id

        await order_service.confirm_booking(
            item_id, BookingSchema(booking_date="2025-12-01", booking_time="10:00")
        )
        await transition_service.attempt_transition(
            item_id, ServiceItemStatus.NO_SHOW, metadata={"notes": "Клиент не пришел"}
        )

        with pytest.raises(InvalidStateTransitionError):
            await transition_service.attempt_transition(item_id, ServiceItemStatus.COMPLETED)

        item = await _item(db, item_id)
        assert item.status == ServiceItemStatus.NO_SHOW
        assert item.fulfillment_data["booking_date"] == "2025-12-01"
        assert item.fulfillment_data["no_show_notes"] == "Клиент не пришел"


class TestTransitionGuarantees:
    """Атомарность, идемпотентность и конкурентный доступ"""

    @pytest.mark.asyncio
    async def test_invalid_transition_changes_nothing(
        self, db, order_service, transition_service, order_data
    ):
        """Тест: отклоненный переход не оставляет журнала и событий"""
        details = await order_service.create_order(order_data(LineItemType.PHYSICAL))
        item_id = details.items[0].id
        events_before = await _line_item_events(db, item_id)

        with pytest.raises(InvalidStateTransitionError):
            await transition_service.attempt_transition(item_id, PhysicalItemStatus.SHIPPED)

        item = await _item(db, item_id)
        assert item.status == PhysicalItemStatus.PENDING
        assert item.version == 1
        assert len(await order_service.get_line_item_history(item_id)) == 1
        assert len(await _line_item_events(db, item_id)) == len(events_before)

    @pytest.mark.asyncio
    async def test_same_status_is_noop(self, db, order_service, transition_service, order_data):
        """Тест: повтор того же статуса ничего не пишет"""
        details = await _create_paid_order(order_service, order_data, LineItemType.PHYSICAL)
        item_id = details.items[0].id
        history_before = await order_service.get_line_item_history(item_id)

        outcome = await transition_service.attempt_transition(
            item_id, PhysicalItemStatus.PAYMENT_CONFIRMED
        )

        assert not outcome.changed
        assert outcome.event_id is None
        assert len(await order_service.get_line_item_history(item_id)) == len(history_before)

    @pytest.mark.asyncio
    async def test_not_found(self, transition_service):
        """Тест перехода несуществующей позиции"""
        with pytest.raises(EntityNotFoundError):
            await transition_service.attempt_transition(999_999, PhysicalItemStatus.PREPARING)

    @pytest.mark.asyncio
    async def test_version_and_idempotency_key(
        self, db, order_service, transition_service, order_data
    ):
        """Тест: версия растет на каждый переход и входит в ключ события"""
        details = await _create_paid_order(order_service, order_data, LineItemType.PHYSICAL)
        item_id = details.items[0].id

        outcome = await transition_service.attempt_transition(
            item_id, PhysicalItemStatus.PREPARING
        )

        item = await _item(db, item_id)
        assert item.version == 3
        assert outcome.idempotency_key == f"line_item:{item_id}:preparing:3"

    @pytest.mark.asyncio
    async def test_concurrent_conflicting_transitions(
        self, db, order_service, transition_service, order_data
    ):
        """Тест: из двух конфликтующих переходов применяется ровно один"""
        details = await _create_paid_order(order_service, order_data, LineItemType.PHYSICAL)
        item_id = details.items[0].id
        await transition_service.attempt_transition(item_id, PhysicalItemStatus.PREPARING)

        results = await asyncio.gather(
            transition_service.attempt_transition(item_id, PhysicalItemStatus.CANCELLED),
            transition_service.attempt_transition(item_id, PhysicalItemStatus.READY_TO_SHIP),
            return_exceptions=True,
        )

        successes = [result for result in results if not isinstance(result, BaseException)]
        failures = [result for result in results if isinstance(result, BaseException)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidStateTransitionError)

        item = await _item(db, item_id)
        assert item.status == successes[0].to_status

        history = await order_service.get_line_item_history(item_id)
        assert history[-1].to_status == item.status
        assert history[-2].to_status == PhysicalItemStatus.PREPARING

    @pytest.mark.asyncio
    async def test_outbox_failure_rolls_back_transition(
        self, db, order_service, transition_service, order_data, monkeypatch
    ):
        """Тест: ошибка записи в outbox отменяет переход и запись журнала"""
        details = await _create_paid_order(order_service, order_data, LineItemType.PHYSICAL)
        item_id = details.items[0].id
        history_before = await order_service.get_line_item_history(item_id)

        async def failing_add_event(self, *args, **kwargs):
            raise RuntimeError("outbox unavailable")

        monkeypatch.setattr(OutboxRepository, "add_event", failing_add_event)

        with pytest.raises(RuntimeError, match="outbox unavailable"):
            await transition_service.attempt_transition(item_id, PhysicalItemStatus.PREPARING)

        monkeypatch.undo()
        item = await _item(db, item_id)
        assert item.status == PhysicalItemStatus.PAYMENT_CONFIRMED
        assert len(await order_service.get_line_item_history(item_id)) == len(history_before)

    @pytest.mark.asyncio
    async def test_committed_transition_survives_restart(
        self, db, order_service, transition_service, order_data
    ):
        """Тест: после commit переход, журнал и событие переживают перезапуск"""
        details = await _create_paid_order(order_service, order_data, LineItemType.PHYSICAL)
        item_id = details.items[0].id
        outcome = await transition_service.attempt_transition(
            item_id, PhysicalItemStatus.PREPARING
        )

        database_url = db.database_url
        await db.disconnect()

        reopened = ORMDatabase(database_url)
        await reopened.connect()
        try:
            async with reopened.get_session() as session:
                item = await session.get(LineItem, item_id)
                records = await session.execute(
                    select(func.count(TransitionRecord.id)).where(
                        TransitionRecord.line_item_id == item_id,
                        TransitionRecord.to_status == PhysicalItemStatus.PREPARING,
                    )
                )
                event = await OutboxRepository(session).get_by_idempotency_key(
                    outcome.idempotency_key
                )
                assert item.status == PhysicalItemStatus.PREPARING
                assert records.scalar_one() == 1
                assert event is not None
                assert event.status == OutboxStatus.PENDING
        finally:
            await reopened.disconnect()
