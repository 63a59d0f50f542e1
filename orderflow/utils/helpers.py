"""
Вспомогательные функции
"""

import secrets
from datetime import datetime, timezone


def get_now() -> datetime:
    """
    Получить текущее время в UTC

    Все временные метки в БД хранятся как naive UTC, чтобы сравнения
    в SQL одинаково работали в SQLite и PostgreSQL.

    Returns:
        naive datetime в UTC
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_order_number(now: datetime | None = None) -> str:
    """
    Генерация человекочитаемого номера заказа

    Args:
        now: Время создания заказа

    Returns:
        Номер вида ORD-20250101-1A2B3C4D
    """
    now = now or get_now()
    return f"ORD-{now:%Y%m%d}-{secrets.token_hex(4).upper()}"


def parse_timestamp(value: str | None) -> datetime | None:
    """
    Разбор временной метки из fulfillment payload

    Args:
        value: Строка в формате ISO 8601

    Returns:
        datetime или None
    """
    if not value:
        return None
    return datetime.fromisoformat(value)
