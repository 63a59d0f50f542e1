"""Pydantic схемы запросов на переход статуса"""
from typing import Any

from pydantic import BaseModel, Field


class ShipmentSchema(BaseModel):
    """Данные отправки физической позиции от мерчанта"""

    carrier: str = Field(..., min_length=1, max_length=100)
    tracking_number: str = Field(..., min_length=1, max_length=100)
    tracking_url: str | None = Field(None, max_length=500)
    estimated_delivery: str | None = Field(None, max_length=32)

    def to_metadata(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    class Config:
        str_strip_whitespace = True


class BookingSchema(BaseModel):
    """Данные подтвержденного бронирования услуги"""

    booking_id: str | None = Field(None, max_length=64)
    booking_date: str = Field(..., min_length=1, max_length=32)
    booking_time: str | None = Field(None, max_length=16)
    duration_minutes: int | None = Field(None, gt=0)
    location: str | None = Field(None, max_length=500)
    provider_id: str | None = Field(None, max_length=64)

    def to_metadata(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    class Config:
        str_strip_whitespace = True
