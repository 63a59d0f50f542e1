"""
SQLAlchemy ORM модели для базы данных
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

from orderflow.utils.helpers import get_now


# Базовый класс для всех моделей
Base = declarative_base()


class Order(Base):
    """Модель заказа"""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)

    # Владелец: зарегистрированный пользователь или гость
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    guest_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    guest_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")
    payment_status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")
    payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Суммы в минимальных единицах валюты
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    subtotal: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tax_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shipping_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    shipping_address: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    billing_address: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    order_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata", JSON, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=get_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=get_now, onupdate=get_now
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    line_items: Mapped[list["LineItem"]] = relationship(
        "LineItem", back_populates="order", order_by="LineItem.id", lazy="raise"
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_orders_status", "status"),
        Index("idx_orders_user_id", "user_id"),
        Index("idx_orders_created_at", "created_at"),
        CheckConstraint(
            "user_id IS NOT NULL OR guest_email IS NOT NULL OR guest_phone IS NOT NULL",
            name="chk_orders_owner",
        ),
        CheckConstraint(
            "status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'CANCELLED', "
            "'REFUNDED', 'PARTIALLY_REFUNDED')",
            name="chk_orders_status",
        ),
        CheckConstraint("total_amount >= 0", name="chk_orders_total_amount"),
    )

    def __repr__(self) -> str:
        return f"<Order #{self.id} {self.order_number} {self.status}>"


class LineItem(Base):
    """Модель позиции заказа"""

    __tablename__ = "order_line_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), nullable=False)
    merchant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    variant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    item_type: Mapped[str] = mapped_column("type", String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    total_price: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    fulfillment_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Снимок товара на момент заказа
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    variant_attributes: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    last_status_change: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=get_now)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=get_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=get_now, onupdate=get_now
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    order: Mapped["Order"] = relationship("Order", back_populates="line_items", lazy="raise")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_line_items_order_id", "order_id"),
        Index("idx_line_items_merchant_status", "merchant_id", "status"),
        CheckConstraint("type IN ('physical', 'digital', 'service')", name="chk_line_items_type"),
        CheckConstraint("quantity >= 1", name="chk_line_items_quantity"),
        CheckConstraint("unit_price >= 0", name="chk_line_items_unit_price"),
    )

    def __repr__(self) -> str:
        return f"<LineItem #{self.id} {self.item_type}:{self.status}>"


class TransitionRecord(Base):
    """
    Запись журнала переходов (только добавление)

    Ссылается ровно на один из объектов: заказ или позицию.
    """

    __tablename__ = "order_status_transitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("orders.id"), nullable=True
    )
    line_item_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("order_line_items.id"), nullable=True
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)  # None = система
    record_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata", JSON, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=get_now)

    __table_args__ = (
        Index("idx_transitions_line_item", "line_item_id", "created_at"),
        Index("idx_transitions_order", "order_id", "created_at"),
        CheckConstraint(
            "(order_id IS NOT NULL AND line_item_id IS NULL) "
            "OR (order_id IS NULL AND line_item_id IS NOT NULL)",
            name="chk_transitions_single_subject",
        ),
    )


class OutboxEvent(Base):
    """Событие transactional outbox"""

    __tablename__ = "order_outbox"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    aggregate_id: Mapped[int] = mapped_column(Integer, nullable=False)
    aggregate_type: Mapped[str] = mapped_column(String(32), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=get_now)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Служебные поля relay
    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    claimed_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        Index("idx_outbox_status_next_attempt", "status", "next_attempt_at", "created_at"),
        Index("idx_outbox_aggregate", "aggregate_type", "aggregate_id"),
        Index("idx_outbox_processed_at", "processed_at"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'processed', 'failed')",
            name="chk_outbox_status",
        ),
        CheckConstraint("retry_count >= 0", name="chk_outbox_retry_count"),
    )

    def __repr__(self) -> str:
        return f"<OutboxEvent #{self.id} {self.event_type} {self.status}>"


class ConsumedEvent(Base):
    """Журнал обработанных событий на стороне потребителя (дедупликация)"""

    __tablename__ = "consumed_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    consumer: Mapped[str] = mapped_column(String(128), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    consumed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=get_now)

    __table_args__ = (
        UniqueConstraint("consumer", "idempotency_key", name="uq_consumed_events_key"),
    )
