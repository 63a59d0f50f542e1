"""Сервисы: переходы позиций, заказы, outbox relay"""

from orderflow.services.idempotent_consumer import IdempotentConsumer
from orderflow.services.order_rollup import OrderRollupService
from orderflow.services.order_service import OrderService
from orderflow.services.outbox_admin import OutboxAdminService
from orderflow.services.outbox_relay import OutboxRelay, RelayRunResult
from orderflow.services.outbox_writer import OutboxWriter
from orderflow.services.publisher import (
    EventPublisher,
    InProcessEventPublisher,
    LoggingEventPublisher,
    OutboxMessage,
    OutboxPublishError,
)
from orderflow.services.service_factory import ServiceFactory
from orderflow.services.transition_service import LineItemTransitionService, TransitionOutcome


__all__ = [
    "EventPublisher",
    "IdempotentConsumer",
    "InProcessEventPublisher",
    "LineItemTransitionService",
    "LoggingEventPublisher",
    "OrderRollupService",
    "OrderService",
    "OutboxAdminService",
    "OutboxMessage",
    "OutboxPublishError",
    "OutboxRelay",
    "OutboxWriter",
    "RelayRunResult",
    "ServiceFactory",
    "TransitionOutcome",
]
