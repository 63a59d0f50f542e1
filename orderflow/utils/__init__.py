"""Утилиты"""

from orderflow.utils.helpers import generate_order_number, get_now, parse_timestamp
from orderflow.utils.retry import calculate_backoff, retry_on_conflict
from orderflow.utils.sentry import init_sentry


__all__ = [
    "calculate_backoff",
    "generate_order_number",
    "get_now",
    "init_sentry",
    "parse_timestamp",
    "retry_on_conflict",
]
