"""
Сервис заказов: точки входа внешних коллабораторов

checkout  → create_order
оплата    → confirm_payment
мерчант   → ship_line_item, list_merchant_line_items
бронирование → confirm_booking (и attempt_transition для остальных статусов услуги)
витрина   → get_order_details, get_order_by_number, track_order, list_user_orders,
            get_line_item_history
"""

import logging
import math

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from orderflow.core.constants import (
    ITEM_CANCELLED,
    ITEM_PAYMENT_CONFIRMED,
    ITEM_PENDING,
    EventType,
    LineItemType,
    OrderStatus,
    PaymentStatus,
    PhysicalItemStatus,
    ServiceItemStatus,
)
from orderflow.database.orm_database import ORMDatabase
from orderflow.database.orm_models import LineItem, Order
from orderflow.domain.fulfillment_data import init_fulfillment_data
from orderflow.domain.line_item_state_machine import (
    InvalidStateTransitionError,
    LineItemStateMachine,
)
from orderflow.repositories.exceptions import ConcurrentModificationError, EntityNotFoundError
from orderflow.repositories.line_item_repository import LineItemRepository
from orderflow.repositories.order_repository import OrderRepository
from orderflow.repositories.transition_repository import TransitionRepository
from orderflow.schemas.order import (
    LineItemReadSchema,
    OrderCreateSchema,
    OrderDetailsSchema,
    OrderPageSchema,
    OrderTrackingSchema,
    TrackingItemSchema,
    TransitionRecordSchema,
)
from orderflow.schemas.transition import BookingSchema, ShipmentSchema
from orderflow.services.outbox_writer import OutboxWriter, order_event_key
from orderflow.services.transition_service import LineItemTransitionService, TransitionOutcome
from orderflow.utils.helpers import generate_order_number, get_now
from orderflow.utils.retry import retry_on_conflict


logger = logging.getLogger(__name__)

# Поля отправки, которые видны в публичном отслеживании
TRACKING_FIELDS = ("carrier", "tracking_number", "tracking_url", "estimated_delivery")


class OrderService:
    """Сервис для работы с заказами"""

    def __init__(self, db: ORMDatabase, transitions: LineItemTransitionService):
        """
        Инициализация сервиса

        Args:
            db: База данных
            transitions: Сервис переходов позиций
        """
        self.db = db
        self.transitions = transitions

    async def create_order(
        self, data: OrderCreateSchema, actor_id: str | None = None
    ) -> OrderDetailsSchema:
        """
        Создание заказа коллаборатором checkout

        Все позиции создаются в статусе pending со снимком товара и цены.
        Для заказа и каждой позиции пишется начальная запись журнала
        (null → pending), в outbox - событие order.created.

        Args:
            data: Провалидированные данные заказа
            actor_id: Инициатор

        Returns:
            Созданный заказ с позициями и историей
        """
        async with self.db.get_session() as session:
            now = get_now()
            recorder = TransitionRepository(session)

            order = Order(
                order_number=generate_order_number(now),
                user_id=data.user_id,
                guest_email=data.guest_email,
                guest_phone=data.guest_phone,
                status=OrderStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                currency=data.currency,
                subtotal=data.subtotal,
                tax_amount=data.tax_amount,
                shipping_amount=data.shipping_amount,
                discount_amount=data.discount_amount,
                total_amount=data.total_amount,
                shipping_address=(
                    data.shipping_address.model_dump() if data.shipping_address else None
                ),
                billing_address=(
                    data.billing_address.model_dump() if data.billing_address else None
                ),
                order_metadata=data.metadata,
                created_at=now,
                updated_at=now,
            )
            await OrderRepository(session).add(order)
            await recorder.record(
                OrderStatus.PENDING,
                None,
                order_id=order.id,
                reason="Заказ создан",
                actor_id=actor_id,
            )

            items_repo = LineItemRepository(session)
            created_items: list[LineItem] = []
            for item_data in data.items:
                item = LineItem(
                    order_id=order.id,
                    merchant_id=item_data.merchant_id,
                    product_id=item_data.product_id,
                    variant_id=item_data.variant_id,
                    item_type=item_data.item_type,
                    status=ITEM_PENDING,
                    quantity=item_data.quantity,
                    unit_price=item_data.unit_price,
                    total_price=item_data.total_price,
                    currency=item_data.currency,
                    fulfillment_data=init_fulfillment_data(
                        item_data.item_type, item_data.fulfillment_details
                    ),
                    product_name=item_data.product_name,
                    product_sku=item_data.product_sku,
                    variant_attributes=item_data.variant_attributes,
                    last_status_change=now,
                    created_at=now,
                    updated_at=now,
                )
                await items_repo.add(item)
                await recorder.record(
                    ITEM_PENDING,
                    None,
                    line_item_id=item.id,
                    reason="Позиция создана",
                    actor_id=actor_id,
                )
                created_items.append(item)

            await OutboxWriter(session).write_order_event(
                order,
                EventType.ORDER_CREATED,
                {
                    "user_id": order.user_id,
                    "guest_email": order.guest_email,
                    "currency": order.currency,
                    "total_amount": order.total_amount,
                    "line_items": [
                        {
                            "line_item_id": item.id,
                            "merchant_id": item.merchant_id,
                            "product_id": item.product_id,
                            "item_type": item.item_type,
                            "quantity": item.quantity,
                            "total_price": item.total_price,
                        }
                        for item in created_items
                    ],
                    "occurred_at": now.isoformat(),
                },
                idempotency_key=order_event_key(order.id, "created"),
            )
            order_id = order.id

        logger.info(
            "Создан заказ #%s (%s), позиций: %d", order_id, order.order_number, len(created_items)
        )
        return await self.get_order_details(order_id)

    async def confirm_payment(
        self, order_id: int, payment_reference: str, actor_id: str | None = None
    ) -> list[TransitionOutcome]:
        """
        Подтверждение оплаты: pending → payment_confirmed для всех позиций заказа

        Повторная доставка сигнала оплаты ничего не меняет.

        Args:
            order_id: ID заказа
            payment_reference: Идентификатор платежа
            actor_id: Инициатор (обычно None - вебхук платежной системы)

        Returns:
            Результаты переходов позиций

        Raises:
            EntityNotFoundError: Заказа нет
            InvalidStateTransitionError: Все позиции заказа уже отменены
        """

        @retry_on_conflict(
            (ConcurrentModificationError,), max_attempts=self.transitions.conflict_retries
        )
        async def _confirm() -> list[TransitionOutcome]:
            async with self.db.get_session() as session:
                return await self._confirm_payment_in_session(
                    session, order_id, payment_reference, actor_id
                )

        return await _confirm()

    async def _confirm_payment_in_session(
        self, session: AsyncSession, order_id: int, payment_reference: str, actor_id: str | None
    ) -> list[TransitionOutcome]:
        orders = OrderRepository(session)
        order = await orders.get_or_raise(order_id)
        if order.payment_status == PaymentStatus.CAPTURED:
            logger.info("Оплата заказа #%s уже подтверждена, пропускаем", order_id)
            return []

        items = LineItemRepository(session)
        order_items = await items.get_by_order(order_id)
        if order_items and all(item.status == ITEM_CANCELLED for item in order_items):
            # Оплату отмененного заказа не фиксируем, возврат платежа вне сервиса
            logger.warning(
                "Заказ #%s отменен, сигнал оплаты %s отклонен", order_id, payment_reference
            )
            raise InvalidStateTransitionError(
                "order", order.status, ITEM_PAYMENT_CONFIRMED, "все позиции заказа отменены"
            )

        outcomes: list[TransitionOutcome] = []
        for item in order_items:
            # Блокируем позицию, затем решаем по актуальному статусу
            locked = await items.get_for_update(item.id)
            if locked.status != ITEM_PENDING:
                continue
            outcomes.append(
                await self.transitions.transition_in_session(
                    session,
                    locked.id,
                    ITEM_PAYMENT_CONFIRMED,
                    reason="Оплата подтверждена",
                    actor_id=actor_id,
                    metadata={"payment_reference": payment_reference},
                )
            )

        order = await orders.get_for_update(order_id)
        if order.payment_status != PaymentStatus.CAPTURED:
            expected_version = order.version
            order.payment_status = PaymentStatus.CAPTURED
            order.payment_reference = payment_reference
            try:
                await session.flush()
            except StaleDataError as e:
                raise ConcurrentModificationError("Order", order_id, expected_version) from e

            await OutboxWriter(session).write_order_event(
                order,
                EventType.ORDER_PAYMENT_CONFIRMED,
                {
                    "payment_reference": payment_reference,
                    "line_item_ids": [outcome.line_item_id for outcome in outcomes],
                    "occurred_at": get_now().isoformat(),
                },
                idempotency_key=order_event_key(order.id, "payment_confirmed"),
            )
            logger.info(
                "Оплата заказа #%s подтверждена (%s), позиций: %d",
                order_id,
                payment_reference,
                len(outcomes),
            )
        return outcomes

    async def cancel_order(
        self, order_id: int, reason: str | None = None, actor_id: str | None = None
    ) -> list[TransitionOutcome]:
        """
        Отмена всех позиций заказа, которые еще можно отменить

        Raises:
            EntityNotFoundError: Заказа нет
            InvalidStateTransitionError: Ни одну позицию отменить нельзя
        """

        @retry_on_conflict(
            (ConcurrentModificationError,), max_attempts=self.transitions.conflict_retries
        )
        async def _cancel() -> list[TransitionOutcome]:
            async with self.db.get_session() as session:
                order = await OrderRepository(session).get_or_raise(order_id)
                items = LineItemRepository(session)
                outcomes: list[TransitionOutcome] = []
                for item in await items.get_by_order(order_id):
                    locked = await items.get_for_update(item.id)
                    if not LineItemStateMachine.is_cancellable(locked.item_type, locked.status):
                        continue
                    outcomes.append(
                        await self.transitions.transition_in_session(
                            session,
                            locked.id,
                            ITEM_CANCELLED,
                            reason=reason or "Заказ отменен",
                            actor_id=actor_id,
                        )
                    )

                if not outcomes and order.status != OrderStatus.CANCELLED:
                    raise InvalidStateTransitionError(
                        "order", order.status, ITEM_CANCELLED, "нет позиций, которые можно отменить"
                    )
                return outcomes

        outcomes = await _cancel()
        logger.info("Заказ #%s: отменено позиций: %d", order_id, len(outcomes))
        return outcomes

    async def ship_line_item(
        self, line_item_id: int, shipment: ShipmentSchema, actor_id: str | None = None
    ) -> TransitionOutcome:
        """Мерчант отправил физическую позицию (ready_to_ship → shipped)"""
        return await self.transitions.attempt_transition(
            line_item_id,
            PhysicalItemStatus.SHIPPED,
            reason=f"Отправлено: {shipment.carrier} {shipment.tracking_number}",
            actor_id=actor_id,
            metadata=shipment.to_metadata(),
        )

    async def confirm_booking(
        self, line_item_id: int, booking: BookingSchema, actor_id: str | None = None
    ) -> TransitionOutcome:
        """Коллаборатор бронирования подтвердил слот (payment_confirmed → booking_confirmed)"""
        return await self.transitions.attempt_transition(
            line_item_id,
            ServiceItemStatus.BOOKING_CONFIRMED,
            reason="Бронирование подтверждено",
            actor_id=actor_id,
            metadata=booking.to_metadata(),
        )

    async def archive_order(self, order_id: int) -> OrderDetailsSchema:
        """
        Архивация заказа в финальном статусе

        Заказы не удаляются, только получают archived_at.

        Raises:
            EntityNotFoundError: Заказа нет
            InvalidStateTransitionError: Заказ еще в работе
        """
        async with self.db.get_session() as session:
            order = await OrderRepository(session).get_for_update(order_id)
            if order.status not in OrderStatus.final_statuses():
                raise InvalidStateTransitionError(
                    "order", order.status, "archived", "заказ еще не завершен"
                )
            if order.archived_at is None:
                order.archived_at = get_now()
                logger.info("Заказ #%s архивирован", order_id)
        return await self.get_order_details(order_id)

    # ==================== ЧТЕНИЕ ====================

    async def get_order_details(self, order_id: int) -> OrderDetailsSchema:
        """
        Заказ, позиции и полная история переходов (только чтение)

        Raises:
            EntityNotFoundError: Заказа нет
        """
        async with self.db.get_session() as session:
            order = await OrderRepository(session).get_with_items(order_id)
            if order is None:
                raise EntityNotFoundError("Order", order_id)
            return await self._build_details(session, order)

    async def get_order_by_number(self, order_number: str) -> OrderDetailsSchema:
        """
        Заказ по публичному номеру (ORD-...)

        Raises:
            EntityNotFoundError: Заказа нет
        """
        async with self.db.get_session() as session:
            order = await OrderRepository(session).get_by_number(order_number)
            if order is None:
                raise EntityNotFoundError("Order", order_number)
            return await self._build_details(session, order)

    async def _build_details(
        self, session: AsyncSession, order: Order, with_history: bool = True
    ) -> OrderDetailsSchema:
        if not with_history:
            items = tuple(LineItemReadSchema.model_validate(item) for item in order.line_items)
            return OrderDetailsSchema.model_validate(order).model_copy(update={"items": items})

        transitions = TransitionRepository(session)
        item_history = await transitions.get_history_for_items(
            [item.id for item in order.line_items]
        )
        order_history = await transitions.get_order_history(order.id)

        items = tuple(
            LineItemReadSchema.model_validate(item).model_copy(
                update={
                    "history": tuple(
                        TransitionRecordSchema.model_validate(record)
                        for record in item_history
                        if record.line_item_id == item.id
                    )
                }
            )
            for item in order.line_items
        )
        return OrderDetailsSchema.model_validate(order).model_copy(
            update={
                "items": items,
                "history": tuple(
                    TransitionRecordSchema.model_validate(record) for record in order_history
                ),
            }
        )

    async def track_order(self, order_number: str, email: str | None = None) -> OrderTrackingSchema:
        """
        Публичное отслеживание заказа

        Для гостевого заказа нужен email покупателя. При несовпадении
        отвечаем так же, как для несуществующего заказа.

        Raises:
            EntityNotFoundError: Заказа нет или email не совпал
        """
        async with self.db.get_session() as session:
            order = await OrderRepository(session).get_by_number(order_number)
            if order is None:
                raise EntityNotFoundError("Order", order_number)
            if order.user_id is None and (
                not email or (order.guest_email or "").lower() != email.strip().lower()
            ):
                logger.warning("Отслеживание %s: email не совпал", order_number)
                raise EntityNotFoundError("Order", order_number)

            items = []
            for item in order.line_items:
                tracking = {}
                if item.item_type == LineItemType.PHYSICAL:
                    data = item.fulfillment_data or {}
                    tracking = {key: data.get(key) for key in TRACKING_FIELDS}
                items.append(
                    TrackingItemSchema(
                        product_name=item.product_name,
                        quantity=item.quantity,
                        item_type=item.item_type,
                        status=item.status,
                        **tracking,
                    )
                )
            return OrderTrackingSchema(
                order_number=order.order_number,
                status=order.status,
                created_at=order.created_at,
                items=tuple(items),
            )

    async def list_user_orders(
        self, user_id: str, page: int = 1, limit: int = 10, status: str | None = None
    ) -> OrderPageSchema:
        """
        Заказы покупателя постранично, новые первыми

        Args:
            user_id: ID покупателя
            page: Номер страницы (с 1)
            limit: Размер страницы
            status: Фильтр по статусу заказа
        """
        page = max(page, 1)
        limit = max(limit, 1)
        async with self.db.get_session() as session:
            orders, total = await OrderRepository(session).list_by_user(
                user_id, status=status, offset=(page - 1) * limit, limit=limit
            )
            details = [
                await self._build_details(session, order, with_history=False) for order in orders
            ]
        return OrderPageSchema(
            orders=tuple(details),
            total=total,
            page=page,
            total_pages=math.ceil(total / limit),
        )

    async def list_merchant_line_items(
        self, merchant_id: str, status: str | None = None, limit: int = 100
    ) -> list[LineItemReadSchema]:
        """Позиции мерчанта (его часть мультивендорных заказов), новые первыми"""
        async with self.db.get_session() as session:
            items = await LineItemRepository(session).list_by_merchant(
                merchant_id, status=status, limit=limit
            )
            return [LineItemReadSchema.model_validate(item) for item in items]

    async def get_line_item_history(self, line_item_id: int) -> list[TransitionRecordSchema]:
        """
        История переходов позиции в хронологическом порядке

        Raises:
            EntityNotFoundError: Позиции нет
        """
        async with self.db.get_session() as session:
            await LineItemRepository(session).get_or_raise(line_item_id)
            history = await TransitionRepository(session).get_line_item_history(line_item_id)
            return [TransitionRecordSchema.model_validate(record) for record in history]
