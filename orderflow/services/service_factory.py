"""
Factory для создания сервисов
"""

import logging

from orderflow.core.config import Config
from orderflow.database.orm_database import ORMDatabase
from orderflow.domain.refund_policy import RefundPolicy
from orderflow.services.order_service import OrderService
from orderflow.services.outbox_admin import OutboxAdminService
from orderflow.services.outbox_relay import DeadLetterCallback, OutboxRelay
from orderflow.services.publisher import EventPublisher, LoggingEventPublisher
from orderflow.services.scheduler import OutboxScheduler
from orderflow.services.transition_service import LineItemTransitionService
from orderflow.utils.sentry import alert_dead_letter


logger = logging.getLogger(__name__)


class ServiceFactory:
    """
    Factory для создания сервисов с инжекцией зависимостей
    """

    def __init__(
        self,
        db: ORMDatabase,
        publisher: EventPublisher | None = None,
        on_dead_letter: DeadLetterCallback | None = None,
    ):
        """
        Инициализация фабрики

        Args:
            db: База данных
            publisher: Публикатор событий relay (по умолчанию - в лог)
            on_dead_letter: Алерт при dead letter (по умолчанию - ERROR в лог и Sentry)
        """
        self.db = db
        self.publisher = publisher or LoggingEventPublisher()
        self.on_dead_letter = on_dead_letter or alert_dead_letter
        self._refund_policy: RefundPolicy | None = None
        self._transition_service = None
        self._order_service = None
        self._relay = None
        self._outbox_admin = None
        self._scheduler = None

    @property
    def refund_policy(self) -> RefundPolicy | None:
        """Политика окна возврата, если включена в конфигурации"""
        if self._refund_policy is None and Config.REFUND_POLICY_ENABLED:
            self._refund_policy = RefundPolicy.from_config()
        return self._refund_policy

    @property
    def transition_service(self) -> LineItemTransitionService:
        """Ленивая инициализация LineItemTransitionService"""
        if self._transition_service is None:
            self._transition_service = LineItemTransitionService(
                self.db, refund_policy=self.refund_policy
            )
        return self._transition_service

    @property
    def order_service(self) -> OrderService:
        """Получение Order Service"""
        if self._order_service is None:
            self._order_service = OrderService(self.db, self.transition_service)
        return self._order_service

    @property
    def relay(self) -> OutboxRelay:
        """Ленивая инициализация OutboxRelay"""
        if self._relay is None:
            self._relay = OutboxRelay(
                self.db, self.publisher, on_dead_letter=self.on_dead_letter
            )
        return self._relay

    @property
    def outbox_admin(self) -> OutboxAdminService:
        if self._outbox_admin is None:
            self._outbox_admin = OutboxAdminService(self.db)
        return self._outbox_admin

    @property
    def scheduler(self) -> OutboxScheduler:
        if self._scheduler is None:
            self._scheduler = OutboxScheduler(self.relay, self.outbox_admin)
        return self._scheduler

    def reset(self):
        """Сброс кэшированных сервисов (для тестирования)"""
        self._refund_policy = None
        self._transition_service = None
        self._order_service = None
        self._relay = None
        self._outbox_admin = None
        self._scheduler = None
        logger.debug("ServiceFactory: сервисы сброшены")
