"""Ошибки конвейера расчетов"""


class SettlementError(Exception):
    """Базовая ошибка"""


class NotFoundError(SettlementError):
    """Событие, лот или выплата не найдены"""


class PermissionDeniedError(SettlementError):
    """У пользователя нет нужной роли"""


class StateConflictError(SettlementError):
    """Операция невозможна в текущем статусе"""


class ExternalServiceError(SettlementError):
    """Ошибка платежного процессора или внешнего сервиса"""


class MetadataValidationError(SettlementError):
    """Некорректные метаданные платежа в вебхуке"""
