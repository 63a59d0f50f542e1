"""Тесты для публикаторов событий"""
import pytest

from orderflow.services.publisher import (
    InProcessEventPublisher,
    LoggingEventPublisher,
    OutboxMessage,
    OutboxPublishError,
)


def _message(event_type: str = "physical.status_changed") -> OutboxMessage:
    return OutboxMessage(
        event_id=1,
        event_type=event_type,
        aggregate_type="line_item",
        aggregate_id=10,
        idempotency_key="line_item:10:shipped:5",
        payload={"to_status": "shipped"},
    )


class TestInProcessEventPublisher:
    """Тесты внутрипроцессной публикации"""

    @pytest.mark.asyncio
    async def test_pattern_subscription(self):
        """Тест подписки по шаблону типа события"""
        publisher = InProcessEventPublisher()
        received = []

        async def physical_handler(message):
            received.append(("physical", message.idempotency_key))

        async def order_handler(message):
            received.append(("order", message.idempotency_key))

        publisher.subscribe("physical.*", physical_handler)
        publisher.subscribe("order.*", order_handler)

        await publisher.publish(_message())
        assert received == [("physical", "line_item:10:shipped:5")]

    @pytest.mark.asyncio
    async def test_handler_error_fails_publish(self):
        """Тест: ошибка обработчика делает попытку неудачной"""
        publisher = InProcessEventPublisher()
        delivered = []

        async def good_handler(message):
            delivered.append(message.event_id)

        async def bad_handler(message):
            raise RuntimeError("consumer down")

        publisher.subscribe("*", good_handler)
        publisher.subscribe("*", bad_handler)

        with pytest.raises(OutboxPublishError, match="consumer down"):
            await publisher.publish(_message())
        assert delivered == [1]

    @pytest.mark.asyncio
    async def test_no_subscribers(self):
        publisher = InProcessEventPublisher()
        await publisher.publish(_message("digital.status_changed"))
        assert publisher.handlers_for("digital.status_changed") == []


@pytest.mark.asyncio
async def test_logging_publisher():
    """Тест публикатора в лог"""
    publisher = LoggingEventPublisher()
    await publisher.publish(_message())
    await publisher.close()
