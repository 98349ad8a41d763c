"""Error taxonomy shared by the domain services."""


class ConvoCrmError(Exception):
    """Base class for all domain errors."""


class NotFoundError(ConvoCrmError):
    """A referenced record does not exist."""


class ValidationError(ConvoCrmError):
    """The request is missing required data or carries invalid values."""


class TransientUpstreamError(ConvoCrmError):
    """A chat-channel or partner HTTP call failed in a way worth retrying."""

    def __init__(self, message: str, status_code: int | None = None, details: object = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class ConfigurationError(ConvoCrmError):
    """Missing credentials or an unmapped status. Never retried."""
