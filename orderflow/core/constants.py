"""
Константы приложения - типы позиций, статусы позиций, заказов и outbox
"""


class LineItemType:
    """Типы позиций заказа"""

    PHYSICAL = "physical"  # Физический товар с доставкой
    DIGITAL = "digital"  # Цифровой товар (скачивание)
    SERVICE = "service"  # Услуга с бронированием слота

    @classmethod
    def all_types(cls) -> list[str]:
        """Список всех типов позиций"""
        return [cls.PHYSICAL, cls.DIGITAL, cls.SERVICE]


class PhysicalItemStatus:
    """Статусы физической позиции"""

    PENDING = "pending"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PREPARING = "preparing"
    READY_TO_SHIP = "ready_to_ship"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUND_REQUESTED = "refund_requested"
    REFUNDED = "refunded"

    @classmethod
    def all_statuses(cls) -> list[str]:
        """Список всех статусов"""
        return [
            cls.PENDING,
            cls.PAYMENT_CONFIRMED,
            cls.PREPARING,
            cls.READY_TO_SHIP,
            cls.SHIPPED,
            cls.OUT_FOR_DELIVERY,
            cls.DELIVERED,
            cls.CANCELLED,
            cls.REFUND_REQUESTED,
            cls.REFUNDED,
        ]


class DigitalItemStatus:
    """Статусы цифровой позиции"""

    PENDING = "pending"
    PAYMENT_CONFIRMED = "payment_confirmed"
    ACCESS_GRANTED = "access_granted"
    DOWNLOADED = "downloaded"
    CANCELLED = "cancelled"
    REFUND_REQUESTED = "refund_requested"
    REFUNDED = "refunded"

    @classmethod
    def all_statuses(cls) -> list[str]:
        """Список всех статусов"""
        return [
            cls.PENDING,
            cls.PAYMENT_CONFIRMED,
            cls.ACCESS_GRANTED,
            cls.DOWNLOADED,
            cls.CANCELLED,
            cls.REFUND_REQUESTED,
            cls.REFUNDED,
        ]


class ServiceItemStatus:
    """Статусы позиции-услуги"""

    PENDING = "pending"
    PAYMENT_CONFIRMED = "payment_confirmed"
    BOOKING_CONFIRMED = "booking_confirmed"
    REMINDER_SENT = "reminder_sent"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"
    REFUND_REQUESTED = "refund_requested"
    REFUNDED = "refunded"

    @classmethod
    def all_statuses(cls) -> list[str]:
        """Список всех статусов"""
        return [
            cls.PENDING,
            cls.PAYMENT_CONFIRMED,
            cls.BOOKING_CONFIRMED,
            cls.REMINDER_SENT,
            cls.IN_PROGRESS,
            cls.COMPLETED,
            cls.NO_SHOW,
            cls.CANCELLED,
            cls.REFUND_REQUESTED,
            cls.REFUNDED,
        ]


# Общие для всех типов статусы
ITEM_PENDING = "pending"
ITEM_PAYMENT_CONFIRMED = "payment_confirmed"
ITEM_CANCELLED = "cancelled"
ITEM_REFUND_REQUESTED = "refund_requested"
ITEM_REFUNDED = "refunded"

# Успешное завершение для каждого типа
TERMINAL_SUCCESS_STATUSES: dict[str, str] = {
    LineItemType.PHYSICAL: PhysicalItemStatus.DELIVERED,
    LineItemType.DIGITAL: DigitalItemStatus.DOWNLOADED,
    LineItemType.SERVICE: ServiceItemStatus.COMPLETED,
}


class OrderStatus:
    """Статусы заказа (вычисляются из статусов позиций)"""

    PENDING = "PENDING"  # Ни одна позиция не сдвинулась
    PROCESSING = "PROCESSING"  # Исполнение идет
    COMPLETED = "COMPLETED"  # Все позиции успешно завершены
    CANCELLED = "CANCELLED"  # Все позиции отменены
    REFUNDED = "REFUNDED"  # Все позиции возвращены
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"  # Часть позиций возвращена

    @classmethod
    def all_statuses(cls) -> list[str]:
        """Список всех статусов"""
        return [
            cls.PENDING,
            cls.PROCESSING,
            cls.COMPLETED,
            cls.CANCELLED,
            cls.REFUNDED,
            cls.PARTIALLY_REFUNDED,
        ]

    @classmethod
    def final_statuses(cls) -> list[str]:
        """Статусы, после которых заказ можно архивировать"""
        return [cls.COMPLETED, cls.CANCELLED, cls.REFUNDED, cls.PARTIALLY_REFUNDED]

    @classmethod
    def get_status_name(cls, status: str) -> str:
        """Получение названия статуса на русском"""
        names = {
            cls.PENDING: "Ожидает оплаты",
            cls.PROCESSING: "В работе",
            cls.COMPLETED: "Выполнен",
            cls.CANCELLED: "Отменен",
            cls.REFUNDED: "Возвращен",
            cls.PARTIALLY_REFUNDED: "Частично возвращен",
        }
        return names.get(status, status)


class PaymentStatus:
    """Статусы оплаты заказа"""

    PENDING = "PENDING"
    CAPTURED = "CAPTURED"

    @classmethod
    def all_statuses(cls) -> list[str]:
        """Список всех статусов"""
        return [cls.PENDING, cls.CAPTURED]


class OutboxStatus:
    """Статусы событий outbox"""

    PENDING = "pending"  # Ожидает публикации
    PROCESSING = "processing"  # Захвачено воркером relay
    PROCESSED = "processed"  # Опубликовано
    FAILED = "failed"  # Исчерпаны попытки (dead letter)

    @classmethod
    def all_statuses(cls) -> list[str]:
        """Список всех статусов"""
        return [cls.PENDING, cls.PROCESSING, cls.PROCESSED, cls.FAILED]


class AggregateType:
    """Типы агрегатов для событий outbox"""

    ORDER = "order"
    LINE_ITEM = "line_item"

    @classmethod
    def all_types(cls) -> list[str]:
        """Список всех типов агрегатов"""
        return [cls.ORDER, cls.LINE_ITEM]


class EventType:
    """Типы событий заказа (события позиций: '<type>.status_changed')"""

    ORDER_CREATED = "order.created"
    ORDER_PAYMENT_CONFIRMED = "order.payment_confirmed"
    ORDER_STATUS_CHANGED = "order.status_changed"

    @staticmethod
    def line_item_status_changed(item_type: str) -> str:
        """Тип события смены статуса позиции"""
        return f"{item_type}.status_changed"
