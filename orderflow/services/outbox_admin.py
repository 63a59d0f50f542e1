"""
Администрирование outbox: метрики, здоровье, dead letter, очистка
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from orderflow.core.config import Config
from orderflow.core.constants import OutboxStatus
from orderflow.database.orm_database import ORMDatabase
from orderflow.repositories.outbox_repository import OutboxRepository
from orderflow.utils.helpers import get_now


logger = logging.getLogger(__name__)


class HealthStatus:
    """Статусы здоровья outbox"""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class OutboxMetrics:
    """Снимок состояния outbox"""

    pending: int = 0
    processing: int = 0
    processed: int = 0
    failed: int = 0
    total: int = 0
    retried: int = 0
    retry_rate: float = 0.0  # процент событий, потребовавших повтора
    avg_processing_seconds: float = 0.0
    oldest_pending_lag_seconds: float = 0.0

    @property
    def dead_letter_size(self) -> int:
        return self.failed


@dataclass
class OutboxHealth:
    status: str
    metrics: OutboxMetrics
    alerts: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DeadLetterEntry:
    """Событие в dead letter для разбора оператором"""

    event_id: int
    event_type: str
    aggregate_type: str
    aggregate_id: int
    idempotency_key: str
    retry_count: int
    last_error: str | None
    created_at: datetime


class OutboxAdminService:
    """Сервис администрирования outbox"""

    def __init__(self, db: ORMDatabase):
        self.db = db

    async def get_metrics(self) -> OutboxMetrics:
        async with self.db.get_session() as session:
            repo = OutboxRepository(session)
            counts = await repo.count_by_status()
            retried = await repo.count_retried()
            oldest_pending = await repo.oldest_pending_created_at()
            durations = await repo.recent_processing_times()

        total = sum(counts.values())
        return OutboxMetrics(
            pending=counts[OutboxStatus.PENDING],
            processing=counts[OutboxStatus.PROCESSING],
            processed=counts[OutboxStatus.PROCESSED],
            failed=counts[OutboxStatus.FAILED],
            total=total,
            retried=retried,
            retry_rate=round(retried / total * 100, 2) if total else 0.0,
            avg_processing_seconds=round(sum(durations) / len(durations), 3) if durations else 0.0,
            oldest_pending_lag_seconds=(
                max((get_now() - oldest_pending).total_seconds(), 0.0) if oldest_pending else 0.0
            ),
        )

    async def get_health(self) -> OutboxHealth:
        """
        Оценка здоровья outbox по порогам из конфигурации

        unhealthy - отставание публикации больше OUTBOX_LAG_UNHEALTHY
        degraded  - отставание больше OUTBOX_LAG_DEGRADED, большой dead letter,
                    высокая доля повторов или много событий в processing
        """
        metrics = await self.get_metrics()
        alerts: list[str] = []
        status = HealthStatus.HEALTHY

        lag = metrics.oldest_pending_lag_seconds
        if lag > Config.OUTBOX_LAG_UNHEALTHY:
            status = HealthStatus.UNHEALTHY
            alerts.append(f"Отставание публикации {lag:.0f} с")
        elif lag > Config.OUTBOX_LAG_DEGRADED:
            status = HealthStatus.DEGRADED
            alerts.append(f"Отставание публикации {lag:.0f} с")

        degraded_alerts = []
        if metrics.dead_letter_size > Config.OUTBOX_DLQ_ALERT_SIZE:
            degraded_alerts.append(f"Dead letter: {metrics.dead_letter_size} событий")
        if metrics.retry_rate > Config.OUTBOX_RETRY_RATE_ALERT:
            degraded_alerts.append(f"Доля повторов {metrics.retry_rate}%")
        if metrics.processing > Config.OUTBOX_PROCESSING_ALERT:
            degraded_alerts.append(f"В processing {metrics.processing} событий")

        if degraded_alerts and status == HealthStatus.HEALTHY:
            status = HealthStatus.DEGRADED
        alerts.extend(degraded_alerts)

        return OutboxHealth(status=status, metrics=metrics, alerts=alerts)

    async def list_dead_letters(self, limit: int = 100) -> list[DeadLetterEntry]:
        """Dead letter, старые первыми"""
        async with self.db.get_session() as session:
            events = await OutboxRepository(session).list_dead_letters(limit)
            return [
                DeadLetterEntry(
                    event_id=event.id,
                    event_type=event.event_type,
                    aggregate_type=event.aggregate_type,
                    aggregate_id=event.aggregate_id,
                    idempotency_key=event.idempotency_key,
                    retry_count=event.retry_count,
                    last_error=event.last_error,
                    created_at=event.created_at,
                )
                for event in events
            ]

    async def requeue_dead_letter(self, event_id: int) -> None:
        """
        Вернуть событие из dead letter в очередь

        Raises:
            EntityNotFoundError: События нет
            ValueError: Событие не в dead letter
        """
        async with self.db.get_session() as session:
            await OutboxRepository(session).requeue_dead_letter(event_id)
        logger.info("Событие #%s возвращено из dead letter в очередь", event_id)

    async def cleanup_processed_events(self, older_than_days: int | None = None) -> int:
        """Удаление опубликованных событий старше срока хранения"""
        days = older_than_days if older_than_days is not None else Config.OUTBOX_RETENTION_DAYS
        cutoff = get_now() - timedelta(days=days)
        async with self.db.get_session() as session:
            deleted = await OutboxRepository(session).delete_processed_before(cutoff)
        logger.info("Очистка outbox: удалено %d событий старше %d дн.", deleted, days)
        return deleted

    async def log_metrics(self) -> OutboxHealth:
        health = await self.get_health()
        metrics = health.metrics
        log = logger.warning if health.status != HealthStatus.HEALTHY else logger.info
        log(
            "Outbox [%s]: pending=%d processing=%d processed=%d failed=%d "
            "retry_rate=%.1f%% lag=%.0fs",
            health.status,
            metrics.pending,
            metrics.processing,
            metrics.processed,
            metrics.failed,
            metrics.retry_rate,
            metrics.oldest_pending_lag_seconds,
        )
        for alert in health.alerts:
            logger.warning("Outbox alert: %s", alert)
        return health
