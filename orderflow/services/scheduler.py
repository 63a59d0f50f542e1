"""
Планировщик фоновых задач outbox
"""

import logging
from datetime import timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from orderflow.core.config import Config
from orderflow.repositories.exceptions import StoreUnavailableError
from orderflow.services.outbox_admin import OutboxAdminService
from orderflow.services.outbox_relay import OutboxRelay


logger = logging.getLogger(__name__)


class OutboxScheduler:
    """Планировщик relay, очистки и метрик outbox"""

    def __init__(
        self,
        relay: OutboxRelay,
        admin: OutboxAdminService,
        poll_interval: float | None = None,
    ):
        """
        Инициализация планировщика

        Args:
            relay: Воркер relay
            admin: Сервис администрирования outbox
            poll_interval: Интервал опроса outbox (секунды)
        """
        self.relay = relay
        self.admin = admin
        self.poll_interval = poll_interval or Config.OUTBOX_POLL_INTERVAL
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)

    async def start(self):
        """Запуск планировщика"""
        # Проход relay; перекрывающиеся запуски схлопываются
        self.scheduler.add_job(
            self.run_relay,
            trigger=IntervalTrigger(seconds=self.poll_interval),
            id="outbox_relay",
            name="Публикация событий outbox",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        # Очистка опубликованных событий (в 3:00 каждый день)
        self.scheduler.add_job(
            self.cleanup_outbox,
            trigger=CronTrigger(hour=3, minute=0, timezone=timezone.utc),
            id="outbox_cleanup",
            name="Очистка outbox",
            replace_existing=True,
        )

        # Метрики outbox (каждую минуту)
        self.scheduler.add_job(
            self.admin.log_metrics,
            trigger=IntervalTrigger(minutes=1),
            id="outbox_metrics",
            name="Метрики outbox",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.start()
        logger.info("Планировщик outbox запущен (интервал relay %s с)", self.poll_interval)

    async def stop(self, timeout: float = 30.0):
        """Остановка: relay дорабатывает текущую пачку, новые не берет"""
        await self.relay.shutdown(timeout=timeout)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        try:
            await self.relay.publisher.close()
        except Exception:
            logger.exception("Ошибка закрытия публикатора событий")
        logger.info("Планировщик outbox остановлен")

    async def run_relay(self):
        """Один проход relay"""
        try:
            await self.relay.run_once()
        except StoreUnavailableError as e:
            logger.warning("Relay: БД недоступна, повтор на следующем проходе: %s", e)

    async def cleanup_outbox(self):
        """Очистка опубликованных событий старше OUTBOX_RETENTION_DAYS"""
        try:
            await self.admin.cleanup_processed_events()
        except StoreUnavailableError as e:
            logger.warning("Очистка outbox отложена, БД недоступна: %s", e)
