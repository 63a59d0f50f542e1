"""
Тесты для retry механизма
"""
import pytest

from orderflow.repositories.exceptions import ConcurrentModificationError
from orderflow.utils.retry import calculate_backoff, retry_on_conflict


class TestCalculateBackoff:
    """Тесты расчета задержки"""

    def test_exponential_growth(self):
        """Тест экспоненциального роста задержки"""
        delays = [calculate_backoff(attempt, base_delay=1.0) for attempt in range(1, 6)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_capped(self):
        """Тест ограничения максимальной задержкой"""
        assert calculate_backoff(20, base_delay=1.0, max_delay=300.0) == 300.0

    def test_jitter_stays_within_bounds(self):
        """Тест: разброс не выходит за ±доля и за максимум"""
        for _ in range(100):
            delay = calculate_backoff(3, base_delay=1.0, max_delay=5.0, jitter=0.2)
            assert 3.2 <= delay <= 4.8

        for _ in range(100):
            assert calculate_backoff(10, base_delay=1.0, max_delay=5.0, jitter=0.5) <= 5.0


class TestRetryOnConflict:
    """Тесты декоратора повтора"""

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        """Тест успеха после конфликтов"""
        calls = []

        @retry_on_conflict((ConcurrentModificationError,), max_attempts=3, base_delay=0.001)
        async def operation():
            calls.append(1)
            if len(calls) < 3:
                raise ConcurrentModificationError("LineItem", 1, 1)
            return "ok"

        assert await operation() == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_reraises_after_max_attempts(self):
        """Тест: после исчерпания попыток пробрасывается последняя ошибка"""
        calls = []

        @retry_on_conflict((ConcurrentModificationError,), max_attempts=2, base_delay=0.001)
        async def operation():
            calls.append(1)
            raise ConcurrentModificationError("LineItem", 1, len(calls))

        with pytest.raises(ConcurrentModificationError) as exc_info:
            await operation()
        assert len(calls) == 2
        assert exc_info.value.expected_version == 2

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        """Тест: бизнес-ошибки не повторяются"""
        calls = []

        @retry_on_conflict((ConcurrentModificationError,), max_attempts=5, base_delay=0.001)
        async def operation():
            calls.append(1)
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await operation()
        assert len(calls) == 1
