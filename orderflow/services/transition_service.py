"""
Сервис переходов статусов позиций заказа
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from orderflow.core.config import Config
from orderflow.core.constants import ITEM_REFUND_REQUESTED
from orderflow.database.orm_database import ORMDatabase
from orderflow.domain.fulfillment_data import apply_fulfillment_effects
from orderflow.domain.line_item_state_machine import (
    InvalidStateTransitionError,
    LineItemStateMachine,
    RefundNotAllowedError,
)
from orderflow.domain.refund_policy import RefundPolicy
from orderflow.repositories.exceptions import ConcurrentModificationError
from orderflow.repositories.line_item_repository import LineItemRepository
from orderflow.repositories.transition_repository import TransitionRepository
from orderflow.services.order_rollup import OrderRollupService
from orderflow.services.outbox_writer import OutboxWriter
from orderflow.utils.helpers import get_now
from orderflow.utils.retry import retry_on_conflict


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionOutcome:
    """Результат попытки перехода"""

    line_item_id: int
    order_id: int
    item_type: str
    from_status: str
    to_status: str
    changed: bool  # False - статус уже был целевым (no-op)
    order_status: str | None = None
    event_id: int | None = None
    idempotency_key: str | None = None


class LineItemTransitionService:
    """
    Применение переходов позиции в одной транзакции

    Блокировка позиции, изменение статуса и payload, запись в журнал,
    событие outbox и пересчет заказа фиксируются одним commit.
    """

    def __init__(
        self,
        db: ORMDatabase,
        refund_policy: RefundPolicy | None = None,
        rollup: OrderRollupService | None = None,
        conflict_retries: int | None = None,
    ):
        """
        Args:
            db: База данных
            refund_policy: Политика окна возврата (None = возврат без ограничения по времени)
            rollup: Сервис пересчета статуса заказа
            conflict_retries: Попыток при конфликте версий
        """
        self.db = db
        self.refund_policy = refund_policy
        self.rollup = rollup or OrderRollupService()
        self.conflict_retries = conflict_retries or Config.TRANSITION_CONFLICT_RETRIES

    async def attempt_transition(
        self,
        line_item_id: int,
        target_status: str,
        reason: str | None = None,
        actor_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> TransitionOutcome:
        """
        Перевести позицию в целевой статус

        Args:
            line_item_id: ID позиции
            target_status: Целевой статус
            reason: Причина перехода
            actor_id: Инициатор (None = система)
            metadata: Данные перехода (carrier/tracking, бронирование и т.п.)

        Returns:
            TransitionOutcome

        Raises:
            EntityNotFoundError: Позиции нет
            InvalidStateTransitionError: Ребра нет в графе переходов
            ConcurrentModificationError: Конфликт версий не разрешился повторами
            StoreUnavailableError: БД недоступна
        """

        @retry_on_conflict((ConcurrentModificationError,), max_attempts=self.conflict_retries)
        async def _attempt() -> TransitionOutcome:
            async with self.db.get_session() as session:
                return await self.transition_in_session(
                    session, line_item_id, target_status, reason, actor_id, metadata
                )

        return await _attempt()

    async def transition_in_session(
        self,
        session: AsyncSession,
        line_item_id: int,
        target_status: str,
        reason: str | None = None,
        actor_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> TransitionOutcome:
        """
        Переход внутри уже открытой транзакции вызывающего кода

        Используется подтверждением оплаты и отменой заказа, чтобы все
        позиции заказа менялись одним commit.
        """
        item = await LineItemRepository(session).get_for_update(line_item_id)
        from_status = item.status

        if from_status == target_status:
            logger.debug("Позиция #%s уже в статусе %s, пропускаем", item.id, target_status)
            return TransitionOutcome(
                line_item_id=item.id,
                order_id=item.order_id,
                item_type=item.item_type,
                from_status=from_status,
                to_status=target_status,
                changed=False,
            )

        try:
            LineItemStateMachine.validate_transition(
                item.item_type, from_status, target_status, metadata
            )
        except InvalidStateTransitionError as e:
            logger.warning("Позиция #%s: переход отклонен: %s", item.id, e)
            raise

        now = get_now()
        if target_status == ITEM_REFUND_REQUESTED and self.refund_policy is not None:
            decision = self.refund_policy.evaluate(item.item_type, item.fulfillment_data, now)
            if not decision.allowed:
                logger.warning("Позиция #%s: возврат запрещен: %s", item.id, decision.reason)
                raise RefundNotAllowedError(
                    item.item_type, from_status, target_status, decision.reason or ""
                )

        expected_version = item.version
        item.status = target_status
        item.last_status_change = now
        item.fulfillment_data = apply_fulfillment_effects(
            item.item_type, item.fulfillment_data, target_status, metadata, now, item_id=item.id
        )
        try:
            await session.flush()
        except StaleDataError as e:
            raise ConcurrentModificationError("LineItem", item.id, expected_version) from e

        await TransitionRepository(session).record(
            target_status,
            from_status,
            line_item_id=item.id,
            reason=reason,
            actor_id=actor_id,
            metadata=metadata,
        )
        event = await OutboxWriter(session).write_line_item_transition(
            item, from_status, target_status, reason, actor_id, occurred_at=now
        )
        order_status = await self.rollup.recompute(
            session, item.order_id, actor_id=actor_id, line_item_id=item.id
        )

        logger.info(
            "Позиция #%s (%s): %s",
            item.id,
            item.item_type,
            LineItemStateMachine.get_transition_description(from_status, target_status),
        )
        return TransitionOutcome(
            line_item_id=item.id,
            order_id=item.order_id,
            item_type=item.item_type,
            from_status=from_status,
            to_status=target_status,
            changed=True,
            order_status=order_status,
            event_id=event.id,
            idempotency_key=event.idempotency_key,
        )
