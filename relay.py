"""
Воркер Outbox Relay: публикация событий исполнения заказов

Можно запускать несколько экземпляров параллельно: воркеры делят
события через захват строк в БД.
"""

import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from orderflow.core.config import Config
from orderflow.database.orm_database import ORMDatabase
from orderflow.services.service_factory import ServiceFactory
from orderflow.utils.sentry import init_sentry


"""
Настройка логирования:
- Пишем в файл logs/relay.log с ротацией, если есть права на запись
- Иначе только в консоль
"""

log_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

console_handler = logging.StreamHandler(sys.stdout)
console_handler.setFormatter(log_formatter)

handlers: list[logging.Handler] = [console_handler]

log_file_path = Path(Config.LOGS_DIR) / "relay.log"
try:
    log_file_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        str(log_file_path),
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(log_formatter)
    handlers.insert(0, file_handler)
except (PermissionError, OSError) as e:
    sys.stderr.write(f"[logging] WARNING: cannot use file logging at {log_file_path}: {e}\n")

log_level = getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO)
logging.basicConfig(level=log_level, handlers=handlers)

logger = logging.getLogger(__name__)

if log_level == logging.DEBUG:
    logging.getLogger("orderflow").setLevel(logging.DEBUG)
    logging.getLogger("apscheduler").setLevel(logging.INFO)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logger.info("DEBUG режим включен (LOG_LEVEL=DEBUG)")
else:
    logging.getLogger("orderflow").setLevel(log_level)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


async def main():
    """Основная функция запуска relay"""
    init_sentry(Config.RELAY_WORKER_ID)

    try:
        Config.validate()
    except ValueError as e:
        logger.error("Ошибка конфигурации: %s", e)
        sys.exit(1)

    db = ORMDatabase()
    await db.connect()

    factory = ServiceFactory(db)
    scheduler = factory.scheduler

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows: остановка через KeyboardInterrupt
            pass

    try:
        await scheduler.start()
        logger.info(
            "Relay %s запущен (pid %s, пачка %s, таймаут публикации %s с)",
            factory.relay.worker_id,
            os.getpid(),
            factory.relay.batch_size,
            factory.relay.publish_timeout,
        )
        await stop_event.wait()
    finally:
        logger.info("Остановка relay...")
        await scheduler.stop()
        await db.disconnect()
        logger.info("Relay остановлен")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Relay остановлен пользователем")
