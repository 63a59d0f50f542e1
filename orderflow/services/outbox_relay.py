"""
Outbox Relay: доставка событий outbox потребителям

Воркеров может быть несколько: они координируются только через захват
строк в БД (SKIP LOCKED), без внутрипроцессных флагов и блокировок.
Цикл одного прохода:

    1. вернуть в pending события, зависшие в processing дольше stale_after
    2. захватить пачку (pending → processing), commit
    3. перед каждой публикацией продлить захват оставшихся событий пачки;
       событие, захват которого потерян, пропускается
    4. опубликовать событие с таймаутом вне транзакции
    5. отметить результат: processed, повтор с backoff или dead letter
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from orderflow.core.config import Config
from orderflow.database.orm_database import ORMDatabase
from orderflow.repositories.outbox_repository import OutboxRepository
from orderflow.services.publisher import EventPublisher, OutboxMessage
from orderflow.utils.helpers import get_now
from orderflow.utils.retry import calculate_backoff


logger = logging.getLogger(__name__)

DeadLetterCallback = Callable[[OutboxMessage, str], Awaitable[None]]


@dataclass
class RelayRunResult:
    """Итог одного прохода relay"""

    reclaimed: int = 0
    claimed: int = 0
    published: int = 0
    retried: int = 0
    dead_lettered: int = 0
    lost: int = 0  # захват перехвачен другим воркером до отметки результата


class OutboxRelay:
    """Воркер relay"""

    def __init__(
        self,
        db: ORMDatabase,
        publisher: EventPublisher,
        worker_id: str | None = None,
        batch_size: int | None = None,
        publish_timeout: float | None = None,
        max_retries: int | None = None,
        initial_backoff: float | None = None,
        max_backoff: float | None = None,
        backoff_jitter: float = 0.2,
        stale_after: float | None = None,
        on_dead_letter: DeadLetterCallback | None = None,
    ):
        """
        Args:
            db: База данных
            publisher: Публикатор событий
            worker_id: Идентификатор воркера (для захвата строк)
            batch_size: Размер пачки
            publish_timeout: Таймаут публикации одного события (секунды)
            max_retries: Число неудачных попыток до dead letter
            initial_backoff: Первая задержка повтора (секунды)
            max_backoff: Максимальная задержка повтора (секунды)
            backoff_jitter: Доля случайного разброса задержки
            stale_after: Через сколько секунд захват считается брошенным
            on_dead_letter: Алерт оператору при переходе события в dead letter
        """
        self.db = db
        self.publisher = publisher
        self.worker_id = worker_id or Config.RELAY_WORKER_ID
        self.batch_size = batch_size or Config.OUTBOX_BATCH_SIZE
        self.publish_timeout = publish_timeout or Config.OUTBOX_PUBLISH_TIMEOUT
        self.max_retries = max_retries or Config.OUTBOX_MAX_RETRIES
        self.initial_backoff = initial_backoff or Config.OUTBOX_INITIAL_BACKOFF
        self.max_backoff = max_backoff or Config.OUTBOX_MAX_BACKOFF
        self.backoff_jitter = backoff_jitter
        self.stale_after = timedelta(seconds=stale_after or Config.OUTBOX_STALE_AFTER)
        self.on_dead_letter = on_dead_letter

        self._accepting = True
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def is_accepting(self) -> bool:
        return self._accepting

    async def run_once(self) -> RelayRunResult:
        """
        Один проход: reclaim, захват пачки, публикация, отметка результатов

        Returns:
            RelayRunResult
        """
        result = RelayRunResult()
        if not self._accepting:
            return result

        self._idle.clear()
        try:
            result.reclaimed, messages = await self._claim()
            result.claimed = len(messages)
            for index, message in enumerate(messages):
                owned = await self._renew_claims(messages[index:])
                if message.event_id in owned:
                    outcome = await self._deliver(message)
                else:
                    logger.warning(
                        "Relay %s: захват события #%s потерян до публикации, пропускаем",
                        self.worker_id,
                        message.event_id,
                    )
                    outcome = "lost"
                setattr(result, outcome, getattr(result, outcome) + 1)
        finally:
            self._idle.set()

        if result.claimed or result.reclaimed:
            logger.info(
                "Relay %s: захвачено %d, опубликовано %d, повтор %d, dead letter %d, "
                "возвращено зависших %d",
                self.worker_id,
                result.claimed,
                result.published,
                result.retried,
                result.dead_lettered,
                result.reclaimed,
            )
        return result

    async def drain(self, max_batches: int = 100) -> RelayRunResult:
        """Проходы, пока есть готовые к публикации события"""
        total = RelayRunResult()
        for _ in range(max_batches):
            batch = await self.run_once()
            for name in total.__dataclass_fields__:
                setattr(total, name, getattr(total, name) + getattr(batch, name))
            if not batch.claimed:
                break
        return total

    async def claim_batch(self) -> list[OutboxMessage]:
        """Захват пачки без публикации"""
        _, messages = await self._claim()
        return messages

    async def _claim(self) -> tuple[int, list[OutboxMessage]]:
        now = get_now()
        async with self.db.get_session() as session:
            repo = OutboxRepository(session)
            reclaimed = await repo.reclaim_stale(now - self.stale_after, now)
            if reclaimed:
                logger.warning(
                    "Relay %s: %d событий возвращено из зависшего processing",
                    self.worker_id,
                    reclaimed,
                )
            events = await repo.claim_batch(self.worker_id, self.batch_size, self.max_retries, now)
            messages = [OutboxMessage.from_event(event) for event in events]
        return reclaimed, messages

    async def _renew_claims(self, messages: list[OutboxMessage]) -> set[int]:
        async with self.db.get_session() as session:
            return await OutboxRepository(session).renew_claims(
                [message.event_id for message in messages], self.worker_id
            )

    async def _deliver(self, message: OutboxMessage) -> str:
        try:
            await asyncio.wait_for(self.publisher.publish(message), timeout=self.publish_timeout)
        except asyncio.TimeoutError:
            error = f"Таймаут публикации ({self.publish_timeout} с)"
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
        else:
            return await self._mark_processed(message)
        return await self._mark_failed(message, error)

    async def _mark_processed(self, message: OutboxMessage) -> str:
        async with self.db.get_session() as session:
            repo = OutboxRepository(session)
            event = await repo.get_claimed(message.event_id, self.worker_id)
            if event is None:
                logger.warning(
                    "Relay %s: событие #%s перехвачено другим воркером, отметка пропущена",
                    self.worker_id,
                    message.event_id,
                )
                return "lost"
            await repo.mark_processed(event)
        logger.debug("Событие #%s опубликовано", message.event_id)
        return "published"

    async def _mark_failed(self, message: OutboxMessage, error: str) -> str:
        async with self.db.get_session() as session:
            repo = OutboxRepository(session)
            event = await repo.get_claimed(message.event_id, self.worker_id)
            if event is None:
                logger.warning(
                    "Relay %s: событие #%s перехвачено другим воркером",
                    self.worker_id,
                    message.event_id,
                )
                return "lost"

            attempts = event.retry_count + 1
            if attempts >= self.max_retries:
                await repo.mark_dead_letter(event, error)
                dead = True
            else:
                delay = calculate_backoff(
                    attempts, self.initial_backoff, self.max_backoff, jitter=self.backoff_jitter
                )
                await repo.release_for_retry(event, error, get_now() + timedelta(seconds=delay))
                dead = False

        if not dead:
            logger.warning(
                "Событие #%s (%s): попытка %d/%d неудачна, повтор через %.1f с: %s",
                message.event_id,
                message.event_type,
                attempts,
                self.max_retries,
                delay,
                error,
            )
            return "retried"

        logger.error(
            "DEAD LETTER: событие #%s (%s, %s) не доставлено после %d попыток: %s",
            message.event_id,
            message.event_type,
            message.idempotency_key,
            attempts,
            error,
        )
        if self.on_dead_letter is not None:
            try:
                await self.on_dead_letter(message, error)
            except Exception:
                logger.exception("Ошибка алерта dead letter для события #%s", message.event_id)
        return "dead_lettered"

    async def shutdown(self, timeout: float = 30.0) -> bool:
        """
        Плавная остановка: новые пачки не захватываются, текущая дорабатывает

        Returns:
            True если текущая пачка завершилась за timeout
        """
        self._accepting = False
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Relay %s: пачка не завершилась за %s с; незавершенные события "
                "будут возвращены в очередь по таймауту захвата",
                self.worker_id,
                timeout,
            )
            return False
        logger.info("Relay %s остановлен", self.worker_id)
        return True
