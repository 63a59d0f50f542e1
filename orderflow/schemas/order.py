"""Pydantic схемы для оформления и чтения заказов"""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from orderflow.core.constants import LineItemType


class AddressSchema(BaseModel):
    """Снимок адреса"""

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    address1: str = Field(..., min_length=1, max_length=255)
    address2: str | None = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str | None = Field(None, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(..., min_length=2, max_length=2, description="ISO 3166-1 alpha-2")
    phone: str | None = Field(None, max_length=32)

    @field_validator("country")
    @classmethod
    def validate_country(cls, v: str) -> str:
        return v.upper()

    class Config:
        str_strip_whitespace = True


class LineItemCreateSchema(BaseModel):
    """Позиция заказа от checkout"""

    merchant_id: str = Field(..., min_length=1, max_length=64)
    product_id: str = Field(..., min_length=1, max_length=64)
    variant_id: str | None = Field(None, max_length=64)
    item_type: str = Field(..., description="physical / digital / service")
    product_name: str = Field(..., min_length=1, max_length=255)
    product_sku: str | None = Field(None, max_length=100)
    variant_attributes: dict[str, Any] | None = None
    quantity: int = Field(1, ge=1, le=10_000)
    unit_price: int = Field(..., ge=0, description="Цена в минимальных единицах валюты")
    currency: str = Field("USD", min_length=3, max_length=3)
    fulfillment_details: dict[str, Any] | None = Field(
        None, description="Начальные данные исполнения (например слот бронирования)"
    )

    @field_validator("item_type")
    @classmethod
    def validate_item_type(cls, v: str) -> str:
        """Тип позиции должен быть из списка"""
        v = v.strip().lower()
        if v not in LineItemType.all_types():
            raise ValueError(
                f"Недопустимый тип позиции. Допустимые: {', '.join(LineItemType.all_types())}"
            )
        return v

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return v.upper()

    @property
    def total_price(self) -> int:
        return self.unit_price * self.quantity

    class Config:
        str_strip_whitespace = True


class OrderCreateSchema(BaseModel):
    """Схема создания заказа коллаборатором checkout"""

    user_id: str | None = Field(None, max_length=64)
    guest_email: str | None = Field(None, max_length=255)
    guest_phone: str | None = Field(None, max_length=32)
    currency: str = Field("USD", min_length=3, max_length=3)
    items: list[LineItemCreateSchema] = Field(..., min_length=1)
    tax_amount: int = Field(0, ge=0)
    shipping_amount: int = Field(0, ge=0)
    discount_amount: int = Field(0, ge=0)
    shipping_address: AddressSchema | None = None
    billing_address: AddressSchema | None = None
    metadata: dict[str, Any] | None = None

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator("guest_email")
    @classmethod
    def validate_guest_email(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("Неверный формат email")
        return v

    @model_validator(mode="after")
    def validate_order(self):
        """Владелец обязателен, валюта позиций совпадает с валютой заказа"""
        if not (self.user_id or self.guest_email or self.guest_phone):
            raise ValueError("Заказ должен принадлежать пользователю или гостю (email/телефон)")

        for item in self.items:
            if item.currency != self.currency:
                raise ValueError(
                    f"Валюта позиции {item.product_id} ({item.currency}) "
                    f"не совпадает с валютой заказа ({self.currency})"
                )

        if self.discount_amount > self.subtotal + self.tax_amount + self.shipping_amount:
            raise ValueError("Скидка не может превышать сумму заказа")

        if self.billing_address is None and self.shipping_address is not None:
            self.billing_address = self.shipping_address

        return self

    @property
    def subtotal(self) -> int:
        return sum(item.total_price for item in self.items)

    @property
    def total_amount(self) -> int:
        return self.subtotal + self.tax_amount + self.shipping_amount - self.discount_amount

    class Config:
        str_strip_whitespace = True


class TransitionRecordSchema(BaseModel):
    """Запись журнала переходов (только чтение)"""

    id: int
    order_id: int | None
    line_item_id: int | None
    from_status: str | None
    to_status: str
    reason: str | None
    actor_id: str | None
    metadata: dict[str, Any] | None = Field(None, validation_alias="record_metadata")
    created_at: datetime

    class Config:
        from_attributes = True
        frozen = True


class LineItemReadSchema(BaseModel):
    """Позиция заказа (только чтение)"""

    id: int
    order_id: int
    merchant_id: str
    product_id: str
    variant_id: str | None
    item_type: str
    status: str
    quantity: int
    unit_price: int
    total_price: int
    currency: str
    product_name: str
    product_sku: str | None
    variant_attributes: dict[str, Any] | None
    fulfillment_data: dict[str, Any] | None
    last_status_change: datetime
    history: tuple[TransitionRecordSchema, ...] = ()

    class Config:
        from_attributes = True
        frozen = True


class OrderDetailsSchema(BaseModel):
    """Заказ, позиции и полная история для витрины и аудита"""

    id: int
    order_number: str
    user_id: str | None
    guest_email: str | None
    guest_phone: str | None
    status: str
    payment_status: str
    payment_reference: str | None
    currency: str
    subtotal: int
    tax_amount: int
    shipping_amount: int
    discount_amount: int
    total_amount: int
    shipping_address: dict[str, Any] | None
    billing_address: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    archived_at: datetime | None
    items: tuple[LineItemReadSchema, ...] = ()
    history: tuple[TransitionRecordSchema, ...] = ()

    class Config:
        from_attributes = True
        frozen = True


class OrderPageSchema(BaseModel):
    """Страница заказов покупателя"""

    orders: tuple[OrderDetailsSchema, ...]
    total: int
    page: int
    total_pages: int

    class Config:
        frozen = True


class TrackingItemSchema(BaseModel):
    product_name: str
    quantity: int
    item_type: str
    status: str
    carrier: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    estimated_delivery: str | None = None

    class Config:
        frozen = True


class OrderTrackingSchema(BaseModel):
    """Публичное отслеживание заказа по номеру (без адресов и платежных данных)"""

    order_number: str
    status: str
    created_at: datetime
    items: tuple[TrackingItemSchema, ...] = ()

    class Config:
        frozen = True
