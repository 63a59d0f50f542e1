"""
Алерты relay: dead letter в лог и (опционально) в Sentry

Sentry подключается только при заданном SENTRY_DSN и установленном
extra [monitoring]. Без него алерты остаются записями уровня ERROR.
"""

import logging
import os
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from orderflow.services.publisher import OutboxMessage


logger = logging.getLogger(__name__)

# Поля, которые не должны попасть в Sentry
SCRUBBED_KEYS = frozenset({"access_key", "payment_reference", "customer_email"})


def scrub_event(event: dict[str, Any], hint: Any = None) -> dict[str, Any]:
    """before_send: вырезаем ключи доступа и персональные данные из extra"""
    extra = event.get("extra")
    if isinstance(extra, dict):
        event["extra"] = {
            key: "[скрыто]" if key in SCRUBBED_KEYS else value for key, value in extra.items()
        }
    return event


def init_sentry(worker_id: str | None = None) -> str | None:
    """
    Подключение Sentry для воркера relay

    Ошибки relay (исчерпанные попытки, dead letter) уходят в Sentry
    событиями, остальные записи лога становятся breadcrumbs.

    Args:
        worker_id: Идентификатор воркера, добавляется тегом к событиям

    Returns:
        DSN, если Sentry подключен, иначе None
    """
    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        logger.info("SENTRY_DSN не задан, алерты dead letter только в логе")
        return None

    try:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration
    except ImportError:
        logger.warning("SENTRY_DSN задан, но sentry-sdk не установлен: pip install -e .[monitoring]")
        return None

    environment = os.getenv("ENVIRONMENT", "development")
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
        before_send=scrub_event,
        send_default_pii=False,
        max_breadcrumbs=50,
    )
    if worker_id:
        sentry_sdk.set_tag("relay_worker", worker_id)

    logger.info("Sentry подключен (environment: %s, воркер: %s)", environment, worker_id or "-")
    return dsn


async def alert_dead_letter(message: "OutboxMessage", error: str) -> None:
    """
    Алерт оператору: событие ушло в dead letter

    Используется как on_dead_letter у relay по умолчанию. Запись уровня
    ERROR при подключенном Sentry превращается в событие.
    """
    logger.error(
        "DEAD LETTER: событие #%s %s (%s) после %s попыток: %s",
        message.event_id,
        message.event_type,
        message.idempotency_key,
        message.attempt,
        error,
        extra={
            "outbox_event_id": message.event_id,
            "event_type": message.event_type,
            "aggregate": f"{message.aggregate_type}:{message.aggregate_id}",
            "idempotency_key": message.idempotency_key,
        },
    )
