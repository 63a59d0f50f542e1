"""
Pytest fixtures и конфигурация для тестов
"""
import sys
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio


# Добавляем корневую директорию в PYTHONPATH
ROOT_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT_DIR))

from orderflow.core.constants import LineItemType
from orderflow.database.orm_database import ORMDatabase
from orderflow.schemas.order import OrderCreateSchema
from orderflow.services.order_service import OrderService
from orderflow.services.publisher import InProcessEventPublisher
from orderflow.services.service_factory import ServiceFactory
from orderflow.services.transition_service import LineItemTransitionService


def make_order_data(*item_types: str, **overrides) -> OrderCreateSchema:
    """
    Данные заказа для checkout

    Args:
        item_types: Типы позиций (по умолчанию одна физическая)
        overrides: Переопределение полей заказа
    """
    item_types = item_types or (LineItemType.PHYSICAL,)
    items = [
        {
            "merchant_id": f"merchant-{index % 2 + 1}",
            "product_id": f"prod-{index + 1}",
            "item_type": item_type,
            "product_name": f"Товар {index + 1} ({item_type})",
            "quantity": 1,
            "unit_price": 1000 * (index + 1),
        }
        for index, item_type in enumerate(item_types)
    ]
    data = {"user_id": "user-1", "items": items, "tax_amount": 100}
    data.update(overrides)
    return OrderCreateSchema(**data)


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> AsyncGenerator[ORMDatabase, None]:
    """
    Фикстура для тестовой базы данных

    Файловая SQLite: параллельные сессии работают через отдельные соединения.
    """
    database = ORMDatabase(f"sqlite+aiosqlite:///{tmp_path / 'orderflow_test.db'}")
    await database.connect()
    await database.init_db()
    yield database
    await database.disconnect()


@pytest.fixture
def publisher() -> InProcessEventPublisher:
    """Фикстура для внутрипроцессного публикатора"""
    return InProcessEventPublisher()


@pytest.fixture
def factory(db: ORMDatabase, publisher: InProcessEventPublisher) -> ServiceFactory:
    """Фикстура для фабрики сервисов"""
    return ServiceFactory(db, publisher=publisher)


@pytest.fixture
def transition_service(factory: ServiceFactory) -> LineItemTransitionService:
    return factory.transition_service


@pytest.fixture
def order_service(factory: ServiceFactory) -> OrderService:
    return factory.order_service


@pytest.fixture
def order_data():
    """Фикстура-фабрика данных заказа: order_data("physical", "digital")"""
    return make_order_data
