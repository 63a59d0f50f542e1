"""
Политика окна возврата

Ребро '→ refund_requested' в графе переходов безусловно. Окно возврата
это внешняя бизнес-политика, которая подключается к сервису переходов
отдельно и может быть выключена.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from orderflow.core.config import Config
from orderflow.core.constants import LineItemType
from orderflow.utils.helpers import parse_timestamp


@dataclass(frozen=True)
class RefundDecision:
    """Решение политики возврата"""

    allowed: bool
    reason: str | None = None


class RefundPolicy:
    """
    Окна возврата по типам позиций

    physical - N дней после доставки
    digital  - сразу, пока товар не скачан; иначе N дней после выдачи доступа
    service  - N дней после оказания (None = без ограничения)
    """

    def __init__(
        self,
        physical_window_days: int = 14,
        digital_window_days: int = 7,
        service_window_days: int | None = None,
    ):
        self.physical_window = timedelta(days=physical_window_days)
        self.digital_window = timedelta(days=digital_window_days)
        self.service_window = (
            timedelta(days=service_window_days) if service_window_days is not None else None
        )

    @classmethod
    def from_config(cls) -> "RefundPolicy":
        return cls(
            physical_window_days=Config.PHYSICAL_REFUND_WINDOW_DAYS,
            digital_window_days=Config.DIGITAL_REFUND_WINDOW_DAYS,
            service_window_days=Config.SERVICE_REFUND_WINDOW_DAYS,
        )

    def evaluate(
        self, item_type: str, fulfillment_data: Mapping[str, Any] | None, now: datetime
    ) -> RefundDecision:
        """
        Проверка, можно ли запросить возврат позиции

        Args:
            item_type: Тип позиции
            fulfillment_data: Текущий payload позиции
            now: Момент запроса

        Returns:
            RefundDecision
        """
        data = fulfillment_data or {}

        if item_type == LineItemType.PHYSICAL:
            return self._within(
                parse_timestamp(data.get("delivered_at")), self.physical_window, now, "доставки"
            )

        if item_type == LineItemType.DIGITAL:
            if not data.get("download_count"):
                return RefundDecision(True)
            return self._within(
                parse_timestamp(data.get("access_granted_at")),
                self.digital_window,
                now,
                "выдачи доступа",
            )

        if item_type == LineItemType.SERVICE:
            if self.service_window is None:
                return RefundDecision(True)
            return self._within(
                parse_timestamp(data.get("completed_at")), self.service_window, now, "оказания услуги"
            )

        return RefundDecision(False, f"Неизвестный тип позиции: {item_type}")

    @staticmethod
    def _within(
        started_at: datetime | None, window: timedelta, now: datetime, label: str
    ) -> RefundDecision:
        if started_at is None:
            return RefundDecision(True)
        if now - started_at <= window:
            return RefundDecision(True)
        return RefundDecision(
            False, f"Окно возврата ({window.days} дн. с момента {label}) истекло"
        )
