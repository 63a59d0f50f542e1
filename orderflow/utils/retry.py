"""
Retry механизм с экспоненциальным backoff
"""
import asyncio
import logging
import random
from functools import wraps
from typing import Any, Callable, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 300.0,
    exponential_base: float = 2.0,
    jitter: float = 0.0,
) -> float:
    """
    Задержка перед следующей попыткой

    Args:
        attempt: Номер неудачной попытки (начиная с 1)
        base_delay: Базовая задержка (секунды)
        max_delay: Максимальная задержка (секунды)
        exponential_base: База экспоненциального роста
        jitter: Доля случайного разброса (0.2 = ±20%)

    Returns:
        Задержка в секундах, не больше max_delay

    Example:
        >>> calculate_backoff(3, base_delay=1.0)
        4.0
    """
    delay = min(base_delay * (exponential_base ** (max(attempt, 1) - 1)), max_delay)
    if jitter:
        delay *= 1 + random.uniform(-jitter, jitter)
    return max(0.0, min(delay, max_delay))


def retry_on_conflict(
    exceptions: tuple[type[BaseException], ...],
    max_attempts: int = 3,
    base_delay: float = 0.05,
    max_delay: float = 1.0,
    exponential_base: float = 2.0,
) -> Callable:
    """
    Декоратор для повтора операций при временных конфликтах

    Повторяются только переданные исключения (конфликт версий, занятая БД).
    Бизнес-ошибки пробрасываются сразу. После исчерпания попыток
    пробрасывается последнее исключение.

    Args:
        exceptions: Кортеж исключений для повтора
        max_attempts: Максимальное количество попыток
        base_delay: Базовая задержка между попытками (секунды)
        max_delay: Максимальная задержка между попытками (секунды)
        exponential_base: База для экспоненциального роста задержки

    Returns:
        Декоратор функции

    Example:
        @retry_on_conflict((ConcurrentModificationError,), max_attempts=5)
        async def transition(item_id, status):
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        logger.error(
                            "%s: попытки исчерпаны (%d). Последняя ошибка: %s",
                            func.__name__,
                            max_attempts,
                            e,
                        )
                        raise

                    delay = calculate_backoff(
                        attempt, base_delay, max_delay, exponential_base, jitter=0.2
                    )
                    logger.warning(
                        "%s: %s. Попытка %d/%d, повтор через %.2f сек",
                        func.__name__,
                        type(e).__name__,
                        attempt,
                        max_attempts,
                        delay,
                    )
                    await asyncio.sleep(delay)
            raise RuntimeError("unreachable")

        return wrapper

    return decorator
