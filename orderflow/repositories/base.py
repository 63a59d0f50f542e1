"""
Базовый репозиторий для работы с базой данных
"""

import logging
from typing import Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.repositories.exceptions import EntityNotFoundError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Базовый класс для всех репозиториев

    Репозиторий работает внутри сессии вызывающего кода и не управляет
    транзакцией: commit/rollback выполняет ORMDatabase.get_session().
    """

    model: type[T]
    entity_name: str = "Entity"

    def __init__(self, session: AsyncSession):
        """
        Инициализация репозитория

        Args:
            session: Сессия текущей транзакции
        """
        self.session = session

    async def get(self, entity_id: int) -> T | None:
        """Получение записи по ID"""
        return await self.session.get(self.model, entity_id)

    async def get_or_raise(self, entity_id: int) -> T:
        """
        Получение записи по ID

        Raises:
            EntityNotFoundError: Если записи нет
        """
        entity = await self.get(entity_id)
        if entity is None:
            raise EntityNotFoundError(self.entity_name, entity_id)
        return entity

    async def get_for_update(self, entity_id: int) -> T:
        """
        Получение записи под блокировкой строки

        SELECT ... FOR UPDATE в PostgreSQL; в SQLite транзакция уже
        открыта через BEGIN IMMEDIATE. populate_existing перечитывает
        запись, даже если она уже есть в identity map сессии.

        Raises:
            EntityNotFoundError: Если записи нет
        """
        stmt = (
            select(self.model)
            .where(self.model.id == entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        entity = result.scalar_one_or_none()
        if entity is None:
            raise EntityNotFoundError(self.entity_name, entity_id)
        return entity

    async def add(self, entity: T) -> T:
        """Добавление записи и получение ID"""
        self.session.add(entity)
        await self.session.flush()
        return entity
