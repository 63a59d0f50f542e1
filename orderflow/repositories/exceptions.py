"""
Ошибки хранилища заказов и outbox

Все ошибки наследуют RepositoryError. Временные (конфликт версий,
недоступность БД) сервисы повторяют, EntityNotFoundError отдается
вызывающему как есть.
"""


def _ref(entity_type: str, entity_id: int | str) -> str:
    # Номера заказов строковые, ID числовые
    if isinstance(entity_id, int):
        return f"{entity_type} #{entity_id}"
    return f"{entity_type} {entity_id}"


class RepositoryError(Exception):
    """Ошибка хранилища"""


class ConcurrentModificationError(RepositoryError):
    """
    Конфликт версий: заказ или позицию успел изменить другой запрос

    Транзакция отменена целиком, вызывающий перечитывает запись и повторяет
    переход (см. retry_on_conflict).
    """

    def __init__(self, entity_type: str, entity_id: int, expected_version: int | None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"{_ref(entity_type, entity_id)}: конфликт версий "
            f"(ожидалась версия {expected_version}), перечитайте запись"
        )


class EntityNotFoundError(RepositoryError):
    """Заказ, позиция или событие outbox не найдены"""

    def __init__(self, entity_type: str, entity_id: int | str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{_ref(entity_type, entity_id)} не найден")


class StoreUnavailableError(RepositoryError):
    """
    БД недоступна или блокировка не получена вовремя

    Частичных записей нет. Relay и планировщик пропускают проход и
    повторяют на следующем.
    """
