"""Pydantic схемы для валидации данных"""

from orderflow.schemas.order import (
    AddressSchema,
    LineItemCreateSchema,
    LineItemReadSchema,
    OrderCreateSchema,
    OrderDetailsSchema,
    OrderPageSchema,
    OrderTrackingSchema,
    TrackingItemSchema,
    TransitionRecordSchema,
)
from orderflow.schemas.transition import BookingSchema, ShipmentSchema


__all__ = [
    "AddressSchema",
    "BookingSchema",
    "LineItemCreateSchema",
    "LineItemReadSchema",
    "OrderCreateSchema",
    "OrderDetailsSchema",
    "OrderPageSchema",
    "OrderTrackingSchema",
    "ShipmentSchema",
    "TrackingItemSchema",
    "TransitionRecordSchema",
]
