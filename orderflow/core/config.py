"""
Конфигурация приложения
"""

import os
import socket

from dotenv import load_dotenv


# Загрузка переменных окружения
load_dotenv()


def _get_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _get_optional_int(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    return int(value) if value else None


class Config:
    """Конфигурация ядра исполнения заказов"""

    # База данных
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "orderflow.db")
    DATABASE_URL: str | None = os.getenv("DATABASE_URL")
    DB_BUSY_TIMEOUT: int = int(os.getenv("DB_BUSY_TIMEOUT", "30"))  # секунды ожидания блокировки

    # Логирование
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOGS_DIR: str = os.getenv("LOGS_DIR", "logs")

    # Outbox relay
    OUTBOX_POLL_INTERVAL: int = int(os.getenv("OUTBOX_POLL_INTERVAL", "10"))  # секунды
    OUTBOX_BATCH_SIZE: int = int(os.getenv("OUTBOX_BATCH_SIZE", "100"))
    OUTBOX_PUBLISH_TIMEOUT: float = float(os.getenv("OUTBOX_PUBLISH_TIMEOUT", "5"))
    OUTBOX_MAX_RETRIES: int = int(os.getenv("OUTBOX_MAX_RETRIES", "5"))
    OUTBOX_INITIAL_BACKOFF: float = float(os.getenv("OUTBOX_INITIAL_BACKOFF", "1"))
    OUTBOX_MAX_BACKOFF: float = float(os.getenv("OUTBOX_MAX_BACKOFF", "300"))
    OUTBOX_STALE_AFTER: int = int(os.getenv("OUTBOX_STALE_AFTER", "600"))  # секунды
    OUTBOX_RETENTION_DAYS: int = int(os.getenv("OUTBOX_RETENTION_DAYS", "30"))
    RELAY_WORKER_ID: str = os.getenv("RELAY_WORKER_ID", f"{socket.gethostname()}-{os.getpid()}")

    # Пороги здоровья outbox
    OUTBOX_LAG_DEGRADED: int = int(os.getenv("OUTBOX_LAG_DEGRADED", "60"))
    OUTBOX_LAG_UNHEALTHY: int = int(os.getenv("OUTBOX_LAG_UNHEALTHY", "300"))
    OUTBOX_DLQ_ALERT_SIZE: int = int(os.getenv("OUTBOX_DLQ_ALERT_SIZE", "100"))
    OUTBOX_RETRY_RATE_ALERT: float = float(os.getenv("OUTBOX_RETRY_RATE_ALERT", "50"))
    OUTBOX_PROCESSING_ALERT: int = int(os.getenv("OUTBOX_PROCESSING_ALERT", "10"))

    # Повторы при конфликте версий
    TRANSITION_CONFLICT_RETRIES: int = int(os.getenv("TRANSITION_CONFLICT_RETRIES", "3"))

    # Цифровая доставка
    DIGITAL_ACCESS_TTL_DAYS: int = int(os.getenv("DIGITAL_ACCESS_TTL_DAYS", "30"))
    DIGITAL_MAX_DOWNLOADS: int = int(os.getenv("DIGITAL_MAX_DOWNLOADS", "5"))

    # Окно возврата (внешняя политика, по умолчанию выключена)
    REFUND_POLICY_ENABLED: bool = _get_bool("REFUND_POLICY_ENABLED", False)
    PHYSICAL_REFUND_WINDOW_DAYS: int = int(os.getenv("PHYSICAL_REFUND_WINDOW_DAYS", "14"))
    DIGITAL_REFUND_WINDOW_DAYS: int = int(os.getenv("DIGITAL_REFUND_WINDOW_DAYS", "7"))
    SERVICE_REFUND_WINDOW_DAYS: int | None = _get_optional_int("SERVICE_REFUND_WINDOW_DAYS")

    @classmethod
    def get_database_url(cls) -> str:
        """Async URL базы данных (DATABASE_URL или SQLite по DATABASE_PATH)"""
        if cls.DATABASE_URL:
            return cls.DATABASE_URL
        return f"sqlite+aiosqlite:///{cls.DATABASE_PATH}"

    @classmethod
    def get_sync_database_url(cls) -> str:
        """Синхронный URL для Alembic"""
        url = cls.get_database_url()
        return url.replace("+aiosqlite", "").replace("+asyncpg", "+psycopg")

    @classmethod
    def validate(cls):
        """Проверка конфигурации"""
        if cls.OUTBOX_POLL_INTERVAL <= 0:
            raise ValueError("OUTBOX_POLL_INTERVAL должен быть больше 0")
        if cls.OUTBOX_BATCH_SIZE <= 0:
            raise ValueError("OUTBOX_BATCH_SIZE должен быть больше 0")
        if cls.OUTBOX_PUBLISH_TIMEOUT <= 0:
            raise ValueError("OUTBOX_PUBLISH_TIMEOUT должен быть больше 0")
        if cls.OUTBOX_MAX_RETRIES < 1:
            raise ValueError("OUTBOX_MAX_RETRIES должен быть не меньше 1")
        if cls.OUTBOX_INITIAL_BACKOFF <= 0:
            raise ValueError("OUTBOX_INITIAL_BACKOFF должен быть больше 0")
        if cls.OUTBOX_MAX_BACKOFF < cls.OUTBOX_INITIAL_BACKOFF:
            raise ValueError("OUTBOX_MAX_BACKOFF не может быть меньше OUTBOX_INITIAL_BACKOFF")
        if cls.OUTBOX_STALE_AFTER <= 0:
            raise ValueError("OUTBOX_STALE_AFTER должен быть больше 0")
        # Пачка, публикуемая дольше порога, не должна считаться брошенной
        if cls.OUTBOX_STALE_AFTER <= cls.OUTBOX_BATCH_SIZE * cls.OUTBOX_PUBLISH_TIMEOUT:
            raise ValueError(
                "OUTBOX_STALE_AFTER должен быть больше OUTBOX_BATCH_SIZE * OUTBOX_PUBLISH_TIMEOUT"
            )
        if cls.TRANSITION_CONFLICT_RETRIES < 1:
            raise ValueError("TRANSITION_CONFLICT_RETRIES должен быть не меньше 1")
