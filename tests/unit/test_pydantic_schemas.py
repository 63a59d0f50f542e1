"""Тесты для Pydantic схем валидации"""
import pytest
from pydantic import ValidationError

from orderflow.schemas import (
    LineItemCreateSchema,
    OrderCreateSchema,
    ShipmentSchema,
)


ITEM = {
    "merchant_id": "merchant-1",
    "product_id": "prod-1",
    "item_type": "physical",
    "product_name": "Кофемолка",
    "quantity": 2,
    "unit_price": 1500,
}

ADDRESS = {
    "first_name": "Иван",
    "last_name": "Петров",
    "address1": "ул. Ленина, 10",
    "city": "Москва",
    "postal_code": "101000",
    "country": "ru",
}


class TestLineItemCreateSchema:
    """Тесты валидации позиции"""

    def test_valid_item(self):
        """Тест позиции с валидными данными"""
        item = LineItemCreateSchema(**ITEM)
        assert item.total_price == 3000
        assert item.currency == "USD"

    def test_item_type_normalized(self):
        item = LineItemCreateSchema(**{**ITEM, "item_type": " Digital "})
        assert item.item_type == "digital"

    def test_invalid_item_type(self):
        """Тест неизвестного типа позиции"""
        with pytest.raises(ValidationError) as exc_info:
            LineItemCreateSchema(**{**ITEM, "item_type": "subscription"})
        assert "Недопустимый тип позиции" in str(exc_info.value)

    def test_zero_quantity(self):
        with pytest.raises(ValidationError):
            LineItemCreateSchema(**{**ITEM, "quantity": 0})


class TestOrderCreateSchema:
    """Тесты валидации заказа"""

    def test_totals(self):
        """Тест расчета сумм заказа"""
        order = OrderCreateSchema(
            user_id="user-1",
            items=[ITEM, {**ITEM, "product_id": "prod-2", "quantity": 1}],
            tax_amount=200,
            shipping_amount=500,
            discount_amount=100,
        )
        assert order.subtotal == 4500
        assert order.total_amount == 5100

    def test_owner_required(self):
        """Тест: заказ без владельца"""
        with pytest.raises(ValidationError, match="пользователю или гостю"):
            OrderCreateSchema(items=[ITEM])

    def test_guest_order(self):
        order = OrderCreateSchema(guest_email=" Guest@Example.com ", items=[ITEM])
        assert order.guest_email == "guest@example.com"

    def test_invalid_guest_email(self):
        with pytest.raises(ValidationError):
            OrderCreateSchema(guest_email="guest", items=[ITEM])

    def test_empty_items(self):
        """Тест: заказ без позиций"""
        with pytest.raises(ValidationError):
            OrderCreateSchema(user_id="user-1", items=[])

    def test_currency_mismatch(self):
        """Тест: валюта позиции отличается от валюты заказа"""
        with pytest.raises(ValidationError, match="не совпадает"):
            OrderCreateSchema(user_id="user-1", currency="EUR", items=[ITEM])

    def test_discount_exceeds_total(self):
        with pytest.raises(ValidationError, match="Скидка"):
            OrderCreateSchema(user_id="user-1", items=[ITEM], discount_amount=10_000)

    def test_billing_defaults_to_shipping(self):
        """Тест: адрес оплаты по умолчанию совпадает с адресом доставки"""
        order = OrderCreateSchema(user_id="user-1", items=[ITEM], shipping_address=ADDRESS)
        assert order.shipping_address.country == "RU"
        assert order.billing_address == order.shipping_address


class TestTransitionSchemas:
    def test_shipment_metadata(self):
        """Тест metadata отправки без пустых полей"""
        shipment = ShipmentSchema(carrier="DHL", tracking_number="TRK-1")
        assert shipment.to_metadata() == {"carrier": "DHL", "tracking_number": "TRK-1"}
