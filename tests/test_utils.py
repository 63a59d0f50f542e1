"""
Тесты для вспомогательных функций
"""
import re
from datetime import datetime

from orderflow.utils.helpers import generate_order_number, get_now, parse_timestamp


class TestHelpers:
    """Тесты для helpers"""

    def test_get_now_naive_utc(self):
        """Тест: время без таймзоны"""
        assert get_now().tzinfo is None

    def test_generate_order_number(self):
        """Тест формата номера заказа"""
        number = generate_order_number(datetime(2025, 1, 2, 3, 4, 5))
        assert re.fullmatch(r"ORD-20250102-[0-9A-F]{8}", number)

    def test_order_numbers_unique(self):
        numbers = {generate_order_number() for _ in range(100)}
        assert len(numbers) == 100

    def test_parse_timestamp(self):
        """Тест разбора временной метки"""
        assert parse_timestamp("2025-11-03T12:00:00") == datetime(2025, 11, 3, 12, 0, 0)
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None
