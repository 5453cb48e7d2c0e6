"""Exception taxonomy for the sourcing pipeline."""


class SourcingError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(SourcingError):
    """Missing credentials or unusable settings. Fatal, never retried."""


class InvalidInputError(SourcingError):
    """Malformed caller input, rejected before any external call."""


class ProviderError(SourcingError):
    """An external provider answered with an error or an unreadable payload."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class AccessDeniedError(SourcingError):
    """The caller may not read or mutate the requested resource."""


class NotFoundError(SourcingError):
    """A referenced row does not exist."""
