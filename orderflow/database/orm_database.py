"""
SQLAlchemy ORM Database класс
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from orderflow.core.config import Config
from orderflow.database.orm_models import Base
from orderflow.repositories.exceptions import StoreUnavailableError


logger = logging.getLogger(__name__)


def _enable_sqlite_immediate_transactions(engine: AsyncEngine) -> None:
    """
    Каждая транзакция SQLite открывается через BEGIN IMMEDIATE

    Писатель получает блокировку БД при старте транзакции, поэтому
    чтение статуса позиции и его изменение не разделяются чужой записью.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Отключаем собственное управление транзакциями pysqlite
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class ORMDatabase:
    """Класс для работы с базой данных через SQLAlchemy ORM"""

    def __init__(self, database_url: str | None = None, echo: bool = False):
        """
        Инициализация ORM Database

        Args:
            database_url: URL базы данных (SQLite или PostgreSQL)
            echo: Логировать SQL
        """
        self.database_url = database_url or Config.get_database_url()
        self.echo = echo
        self.engine: AsyncEngine | None = None
        self.session_factory: async_sessionmaker[AsyncSession] | None = None
        self._is_sqlite = self.database_url.startswith("sqlite")

    @property
    def is_sqlite(self) -> bool:
        return self._is_sqlite

    async def connect(self):
        """Подключение к базе данных"""
        logger.info("Инициализация подключения к БД: %s", self.database_url)

        if self._is_sqlite:
            self.engine = create_async_engine(
                self.database_url,
                echo=self.echo,
                connect_args={"check_same_thread": False, "timeout": Config.DB_BUSY_TIMEOUT},
            )
            _enable_sqlite_immediate_transactions(self.engine)
        else:
            self.engine = create_async_engine(
                self.database_url,
                echo=self.echo,
                pool_pre_ping=True,  # Проверка соединения перед использованием
                pool_recycle=3600,  # Переподключение каждый час
            )

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,  # Важно для async работы
        )
        logger.info("OK: Подключено к базе данных")
        logger.debug("Используйте 'alembic upgrade head' для применения миграций БД")

    async def init_db(self):
        """Создание таблиц по ORM моделям (тесты и локальная разработка)"""
        if not self.engine:
            raise RuntimeError("База данных не подключена")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Схема БД создана")

    async def disconnect(self):
        """Отключение от базы данных"""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None
            logger.info("Отключено от базы данных")

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """
        Context manager для получения сессии (одна транзакция)

        Usage:
            async with db.get_session() as session:
                item = await session.get(LineItem, item_id)
                # Автоматический commit/rollback

        Raises:
            StoreUnavailableError: БД недоступна или блокировка не получена вовремя
        """
        if not self.session_factory:
            raise RuntimeError("База данных не подключена")

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
                logger.debug("OK: Транзакция успешно завершена (commit)")
            except OperationalError as e:
                await session.rollback()
                logger.error("ERROR: БД недоступна, транзакция отменена: %s", e)
                raise StoreUnavailableError(str(e)) from e
            except Exception as e:
                await session.rollback()
                logger.debug("Транзакция отменена (rollback): %s", e)
                raise
