from __future__ import annotations


class SecretaryError(Exception):
    """Base error for AI Secretary."""


class ValidationError(SecretaryError):
    """A required field is missing or a value is malformed."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(SecretaryError):
    """Entity or tenant is absent."""

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind.capitalize()} not found")
        self.kind = kind
        self.entity_id = entity_id


class InvalidTransition(ValidationError):
    """Requested status change moves a record backwards."""


class PlanLimitExceeded(SecretaryError):
    """Tenant plan does not allow the requested write."""

    def __init__(self, message: str, *, limit: int, used: int) -> None:
        super().__init__(message)
        self.limit = limit
        self.used = used


class StoreUnavailable(SecretaryError):
    """Key-value store could not be reached."""


class ClassifierFailure(SecretaryError):
    """Classifier returned nothing usable or could not be reached."""


class NotificationError(SecretaryError):
    """Chat provider rejected or failed a push/reply."""


class ProviderConfigError(SecretaryError):
    """Missing or invalid provider configuration."""


class CalendarAuthError(SecretaryError):
    """Calendar provider token exchange or refresh failed."""
