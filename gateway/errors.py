"""Error taxonomy shared by providers, storage and schedulers."""

from __future__ import annotations


class AIError(Exception):
    """Base class for every gateway failure."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @staticmethod
    def from_exception(exc: BaseException) -> AIError:
        if isinstance(exc, AIError):
            return exc
        error = NetworkError(f"Unknown error: {exc}")
        error.__cause__ = exc
        return error


class NetworkError(AIError):
    """Transport/HTTP failure or an error reported by the vendor."""


class ConfigurationError(AIError):
    """Missing or invalid credentials or URLs."""


class UnsupportedProviderError(AIError):
    """Provider type has no registered constructor."""


class ParseError(AIError):
    """Response body did not match the expected schema."""


class DatabaseError(AIError):
    """Session or task storage failed."""


class NotFoundError(AIError):
    """Unknown session or task id."""


class UnsupportedOperationError(AIError):
    """Operation not offered by this provider."""


class ValidationError(AIError):
    """Caller input rejected; ``errors`` lists every reason."""

    def __init__(self, message: str, errors: list[str]) -> None:
        super().__init__(message)
        self.errors = list(errors)
