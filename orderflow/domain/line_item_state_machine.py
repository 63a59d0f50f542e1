"""
State Machine для валидации переходов статусов позиций заказа

Каждый тип позиции (physical, digital, service) имеет собственный граф
переходов. Граф неизменяем и загружается один раз при импорте модуля.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from orderflow.core.constants import (
    TERMINAL_SUCCESS_STATUSES,
    DigitalItemStatus,
    LineItemType,
    PhysicalItemStatus,
    ServiceItemStatus,
)


class InvalidStateTransitionError(Exception):
    """Исключение при попытке недопустимого перехода статуса позиции"""

    def __init__(self, item_type: str, from_state: str | None, to_state: str, reason: str = ""):
        self.item_type = item_type
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        message = f"Недопустимый переход {item_type}: '{from_state}' → '{to_state}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class RefundNotAllowedError(InvalidStateTransitionError):
    """Возврат запрещен политикой окна возврата"""


@dataclass
class LineItemTransitionResult:
    """Результат валидации перехода статуса"""

    is_valid: bool
    error_message: str | None = None
    warnings: list[str] | None = None


def _freeze(table: dict[str, dict[str, set[str]]]) -> Mapping[str, Mapping[str, frozenset[str]]]:
    return MappingProxyType(
        {
            item_type: MappingProxyType(
                {status: frozenset(targets) for status, targets in edges.items()}
            )
            for item_type, edges in table.items()
        }
    )


class LineItemStateMachine:
    """
    State Machine для жизненного цикла позиции заказа

    physical:
        pending → payment_confirmed → preparing → ready_to_ship → shipped
          → out_for_delivery → delivered → refund_requested → refunded
        {pending, payment_confirmed, preparing} → cancelled

    digital:
        pending → payment_confirmed → access_granted → downloaded
        {pending, payment_confirmed} → cancelled
        {access_granted, downloaded} → refund_requested → refunded

    service:
        pending → payment_confirmed → booking_confirmed → reminder_sent
          → in_progress → completed → refund_requested → refunded
        booking_confirmed → no_show
        {pending, payment_confirmed, booking_confirmed} → cancelled
    """

    TRANSITIONS: Mapping[str, Mapping[str, frozenset[str]]] = _freeze(
        {
            LineItemType.PHYSICAL: {
                PhysicalItemStatus.PENDING: {
                    PhysicalItemStatus.PAYMENT_CONFIRMED,
                    PhysicalItemStatus.CANCELLED,
                },
                PhysicalItemStatus.PAYMENT_CONFIRMED: {
                    PhysicalItemStatus.PREPARING,
                    PhysicalItemStatus.CANCELLED,
                },
                PhysicalItemStatus.PREPARING: {
                    PhysicalItemStatus.READY_TO_SHIP,
                    PhysicalItemStatus.CANCELLED,
                },
                PhysicalItemStatus.READY_TO_SHIP: {PhysicalItemStatus.SHIPPED},
                PhysicalItemStatus.SHIPPED: {PhysicalItemStatus.OUT_FOR_DELIVERY},
                PhysicalItemStatus.OUT_FOR_DELIVERY: {PhysicalItemStatus.DELIVERED},
                PhysicalItemStatus.DELIVERED: {PhysicalItemStatus.REFUND_REQUESTED},
                PhysicalItemStatus.REFUND_REQUESTED: {PhysicalItemStatus.REFUNDED},
                PhysicalItemStatus.CANCELLED: set(),
                PhysicalItemStatus.REFUNDED: set(),
            },
            LineItemType.DIGITAL: {
                DigitalItemStatus.PENDING: {
                    DigitalItemStatus.PAYMENT_CONFIRMED,
                    DigitalItemStatus.CANCELLED,
                },
                DigitalItemStatus.PAYMENT_CONFIRMED: {
                    DigitalItemStatus.ACCESS_GRANTED,
                    DigitalItemStatus.CANCELLED,
                },
                DigitalItemStatus.ACCESS_GRANTED: {
                    DigitalItemStatus.DOWNLOADED,
                    DigitalItemStatus.REFUND_REQUESTED,
                },
                DigitalItemStatus.DOWNLOADED: {DigitalItemStatus.REFUND_REQUESTED},
                DigitalItemStatus.REFUND_REQUESTED: {DigitalItemStatus.REFUNDED},
                DigitalItemStatus.CANCELLED: set(),
                DigitalItemStatus.REFUNDED: set(),
            },
            LineItemType.SERVICE: {
                ServiceItemStatus.PENDING: {
                    ServiceItemStatus.PAYMENT_CONFIRMED,
                    ServiceItemStatus.CANCELLED,
                },
                ServiceItemStatus.PAYMENT_CONFIRMED: {
                    ServiceItemStatus.BOOKING_CONFIRMED,
                    ServiceItemStatus.CANCELLED,
                },
                ServiceItemStatus.BOOKING_CONFIRMED: {
                    ServiceItemStatus.REMINDER_SENT,
                    ServiceItemStatus.NO_SHOW,
                    ServiceItemStatus.CANCELLED,
                },
                ServiceItemStatus.REMINDER_SENT: {ServiceItemStatus.IN_PROGRESS},
                ServiceItemStatus.IN_PROGRESS: {ServiceItemStatus.COMPLETED},
                ServiceItemStatus.COMPLETED: {ServiceItemStatus.REFUND_REQUESTED},
                ServiceItemStatus.REFUND_REQUESTED: {ServiceItemStatus.REFUNDED},
                ServiceItemStatus.NO_SHOW: set(),
                ServiceItemStatus.CANCELLED: set(),
                ServiceItemStatus.REFUNDED: set(),
            },
        }
    )

    INITIAL_STATE = "pending"

    # Обязательные поля metadata для перехода (item_type, to_status)
    REQUIRED_METADATA: dict[tuple[str, str], tuple[str, ...]] = {
        (LineItemType.PHYSICAL, PhysicalItemStatus.SHIPPED): ("carrier", "tracking_number"),
    }

    DESCRIPTIONS: dict[str, str] = {
        "pending": "Ожидает оплаты",
        "payment_confirmed": "Оплата подтверждена",
        "preparing": "Комплектуется",
        "ready_to_ship": "Готов к отправке",
        "shipped": "Отправлен",
        "out_for_delivery": "Передан курьеру",
        "delivered": "Доставлен",
        "access_granted": "Доступ выдан",
        "downloaded": "Скачан",
        "booking_confirmed": "Бронь подтверждена",
        "reminder_sent": "Напоминание отправлено",
        "in_progress": "Оказывается",
        "completed": "Оказана",
        "no_show": "Клиент не пришел",
        "cancelled": "Отменен",
        "refund_requested": "Запрошен возврат",
        "refunded": "Возвращен",
    }

    @classmethod
    def _edges(cls, item_type: str) -> Mapping[str, frozenset[str]]:
        try:
            return cls.TRANSITIONS[item_type]
        except KeyError:
            raise ValueError(f"Неизвестный тип позиции: {item_type}") from None

    @classmethod
    def all_states(cls, item_type: str) -> list[str]:
        """Все статусы типа"""
        return list(cls._edges(item_type).keys())

    @classmethod
    def can_transition(cls, item_type: str, from_state: str, to_state: str) -> bool:
        """
        Проверка наличия ребра в графе переходов

        Args:
            item_type: Тип позиции
            from_state: Текущий статус
            to_state: Целевой статус

        Returns:
            True если ребро существует. Переход в тот же статус ребром не является.
        """
        return to_state in cls._edges(item_type).get(from_state, frozenset())

    @classmethod
    def validate_transition(
        cls,
        item_type: str,
        from_state: str,
        to_state: str,
        metadata: Mapping[str, Any] | None = None,
        raise_exception: bool = True,
    ) -> LineItemTransitionResult:
        """
        Валидация перехода статуса позиции

        Args:
            item_type: Тип позиции
            from_state: Текущий статус
            to_state: Целевой статус
            metadata: Данные перехода (например carrier/tracking_number для shipped)
            raise_exception: Выбрасывать ли исключение при ошибке

        Returns:
            LineItemTransitionResult с результатом валидации

        Raises:
            InvalidStateTransitionError: Если переход недопустим и raise_exception=True
        """
        if from_state == to_state:
            return LineItemTransitionResult(
                is_valid=True,
                warnings=["Переход в тот же статус (idempotent)"],
            )

        if not cls.can_transition(item_type, from_state, to_state):
            available = sorted(cls.get_available_transitions(item_type, from_state))
            error_msg = (
                f"из '{cls.get_state_name(from_state)}' нельзя перейти "
                f"в '{cls.get_state_name(to_state)}'"
            )
            if available:
                error_msg += f"; допустимо: {', '.join(available)}"
            else:
                error_msg += "; статус терминальный"
            if raise_exception:
                raise InvalidStateTransitionError(item_type, from_state, to_state, error_msg)
            return LineItemTransitionResult(is_valid=False, error_message=error_msg)

        missing = [
            key
            for key in cls.get_transition_requirements(item_type, to_state)
            if not (metadata or {}).get(key)
        ]
        if missing:
            error_msg = f"не заполнены обязательные поля: {', '.join(missing)}"
            if raise_exception:
                raise InvalidStateTransitionError(item_type, from_state, to_state, error_msg)
            return LineItemTransitionResult(is_valid=False, error_message=error_msg)

        return LineItemTransitionResult(is_valid=True)

    @classmethod
    def get_available_transitions(cls, item_type: str, from_state: str) -> set[str]:
        """Статусы, в которые можно перейти из текущего"""
        return set(cls._edges(item_type).get(from_state, frozenset()))

    @classmethod
    def get_transition_requirements(cls, item_type: str, to_state: str) -> tuple[str, ...]:
        """Обязательные поля metadata для перехода в статус"""
        return cls.REQUIRED_METADATA.get((item_type, to_state), ())

    @classmethod
    def is_terminal_state(cls, item_type: str, state: str) -> bool:
        """Статус без исходящих ребер"""
        return not cls._edges(item_type).get(state)

    @classmethod
    def is_terminal_success(cls, item_type: str, state: str) -> bool:
        """Успешное завершение исполнения (delivered / downloaded / completed)"""
        return TERMINAL_SUCCESS_STATUSES.get(item_type) == state

    @classmethod
    def is_cancellable(cls, item_type: str, state: str) -> bool:
        return cls.can_transition(item_type, state, "cancelled")

    @classmethod
    def is_refundable(cls, item_type: str, state: str) -> bool:
        return cls.can_transition(item_type, state, "refund_requested")

    @classmethod
    def is_valid_walk(cls, item_type: str, statuses: Iterable[str]) -> bool:
        """
        Проверка, что последовательность статусов - путь по графу от pending

        Args:
            item_type: Тип позиции
            statuses: Статусы в хронологическом порядке, начиная с pending

        Returns:
            True если каждый следующий статус достижим из предыдущего одним ребром
        """
        statuses = list(statuses)
        if not statuses or statuses[0] != cls.INITIAL_STATE:
            return False
        return all(
            cls.can_transition(item_type, current, following)
            for current, following in zip(statuses, statuses[1:])
        )

    @classmethod
    def get_state_name(cls, state: str | None) -> str:
        """Название статуса на русском"""
        if state is None:
            return "-"
        return cls.DESCRIPTIONS.get(state, state)

    @classmethod
    def get_transition_description(cls, from_state: str | None, to_state: str) -> str:
        """Человекочитаемое описание перехода"""
        return f"{cls.get_state_name(from_state)} → {cls.get_state_name(to_state)}"
