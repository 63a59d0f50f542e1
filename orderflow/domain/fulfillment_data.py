"""
Типоспецифичный fulfillment payload позиции

physical - перевозчик, трек-номер, даты отправки и доставки
digital  - дескриптор скачивания (ссылка, ключ, срок действия, счетчик)
service  - слот бронирования, место, отметки оказания услуги

Функции возвращают новый словарь и не изменяют переданный, чтобы
изменение JSON-колонки гарантированно попало в UPDATE.
"""

import secrets
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from orderflow.core.config import Config
from orderflow.core.constants import (
    DigitalItemStatus,
    LineItemType,
    PhysicalItemStatus,
    ServiceItemStatus,
)


# Поля, которые переносятся из metadata перехода в payload
PHYSICAL_SHIPMENT_FIELDS = ("carrier", "tracking_number", "tracking_url", "estimated_delivery")
SERVICE_BOOKING_FIELDS = (
    "booking_id",
    "booking_date",
    "booking_time",
    "duration_minutes",
    "location",
    "provider_id",
)

# Общие для всех типов отметки времени: статус -> поле
COMMON_TIMESTAMPS = {
    "cancelled": "cancelled_at",
    "refund_requested": "refund_requested_at",
    "refunded": "refunded_at",
}

TYPE_TIMESTAMPS: dict[str, dict[str, str]] = {
    LineItemType.PHYSICAL: {
        PhysicalItemStatus.PREPARING: "preparing_at",
        PhysicalItemStatus.SHIPPED: "shipped_at",
        PhysicalItemStatus.OUT_FOR_DELIVERY: "out_for_delivery_at",
        PhysicalItemStatus.DELIVERED: "delivered_at",
    },
    LineItemType.DIGITAL: {
        DigitalItemStatus.ACCESS_GRANTED: "access_granted_at",
        DigitalItemStatus.DOWNLOADED: "last_downloaded_at",
    },
    LineItemType.SERVICE: {
        ServiceItemStatus.BOOKING_CONFIRMED: "booking_confirmed_at",
        ServiceItemStatus.REMINDER_SENT: "reminder_sent_at",
        ServiceItemStatus.IN_PROGRESS: "started_at",
        ServiceItemStatus.COMPLETED: "completed_at",
        ServiceItemStatus.NO_SHOW: "no_show_at",
    },
}


def init_fulfillment_data(item_type: str, details: Mapping[str, Any] | None = None) -> dict:
    """
    Начальный payload позиции при оформлении заказа

    Args:
        item_type: Тип позиции
        details: Данные от checkout (слот бронирования, вес, и т.п.)

    Returns:
        Словарь fulfillment payload
    """
    data: dict[str, Any] = {"type": item_type}
    details = dict(details or {})

    if item_type == LineItemType.DIGITAL:
        data.update(
            {
                "download_url": None,
                "access_key": None,
                "expires_at": None,
                "download_count": 0,
                "max_downloads": details.pop("max_downloads", Config.DIGITAL_MAX_DOWNLOADS),
            }
        )
    elif item_type == LineItemType.PHYSICAL:
        data.update({"carrier": None, "tracking_number": None})

    data.update(details)
    return data


def _take(source: Mapping[str, Any], fields: tuple[str, ...]) -> dict[str, Any]:
    return {key: source[key] for key in fields if source.get(key) is not None}


def apply_fulfillment_effects(
    item_type: str,
    current: Mapping[str, Any] | None,
    to_status: str,
    metadata: Mapping[str, Any] | None,
    now: datetime,
    item_id: int | None = None,
    access_ttl_days: int | None = None,
) -> dict:
    """
    Побочные эффекты перехода на fulfillment payload

    Args:
        item_type: Тип позиции
        current: Текущий payload
        to_status: Целевой статус
        metadata: Данные перехода
        now: Время перехода
        item_id: ID позиции (для ссылки на скачивание)
        access_ttl_days: Срок действия доступа к цифровому товару

    Returns:
        Новый payload
    """
    data = dict(current or {})
    metadata = metadata or {}
    stamp = now.isoformat()

    field = TYPE_TIMESTAMPS.get(item_type, {}).get(to_status) or COMMON_TIMESTAMPS.get(to_status)
    if field:
        data[field] = stamp

    if item_type == LineItemType.PHYSICAL and to_status == PhysicalItemStatus.SHIPPED:
        data.update(_take(metadata, PHYSICAL_SHIPMENT_FIELDS))

    elif item_type == LineItemType.DIGITAL:
        if to_status == DigitalItemStatus.ACCESS_GRANTED:
            ttl = access_ttl_days if access_ttl_days is not None else Config.DIGITAL_ACCESS_TTL_DAYS
            access_key = secrets.token_urlsafe(24)
            data.update(
                {
                    "access_key": access_key,
                    "download_url": f"/downloads/{item_id}",
                    "expires_at": (now + timedelta(days=ttl)).isoformat(),
                    "download_count": 0,
                }
            )
            data.setdefault("max_downloads", Config.DIGITAL_MAX_DOWNLOADS)
        elif to_status == DigitalItemStatus.DOWNLOADED:
            data["download_count"] = int(data.get("download_count") or 0) + 1
        elif to_status == DigitalItemStatus.REFUNDED:
            # Отзываем доступ
            data["access_key"] = None
            data["download_url"] = None
            data["access_revoked_at"] = stamp

    elif item_type == LineItemType.SERVICE:
        if to_status == ServiceItemStatus.BOOKING_CONFIRMED:
            data.update(_take(metadata, SERVICE_BOOKING_FIELDS))
        elif to_status == ServiceItemStatus.NO_SHOW and metadata.get("notes"):
            data["no_show_notes"] = metadata["notes"]

    if to_status in ("cancelled", "refund_requested") and metadata.get("reason_code"):
        data[f"{to_status}_reason_code"] = metadata["reason_code"]

    return data


def fulfillment_snapshot(item_type: str, data: Mapping[str, Any] | None) -> dict:
    """
    Срез payload для события outbox

    Секретный ключ доступа к цифровому товару в событие не попадает:
    ни отдельным полем, ни внутри других строковых значений.
    """
    snapshot = dict(data or {})
    if item_type != LineItemType.DIGITAL:
        return snapshot
    access_key = snapshot.pop("access_key", None)
    if access_key:
        snapshot = {
            key: value
            for key, value in snapshot.items()
            if not (isinstance(value, str) and access_key in value)
        }
    return snapshot
