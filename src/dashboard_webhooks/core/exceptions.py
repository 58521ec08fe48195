"""Common exceptions for domain, service and repository layers."""
from __future__ import annotations


class WebhookServiceError(Exception):
    """Base error for the webhook service."""


class ValidationError(WebhookServiceError):
    """Raised when caller input is rejected (bad URL, unknown event, reserved header)."""


class InvalidURLError(ValidationError):
    """Raised when a webhook URL is not an absolute http(s) URL."""


class UnknownEventTypeError(ValidationError):
    """Raised by strict callers when an event type is not in the catalog."""


class RegistrationTestFailedError(WebhookServiceError):
    """Raised when the probe delivery performed during registration fails."""


class RepositoryError(WebhookServiceError):
    """Raised when store operations fail."""


class NotFoundError(RepositoryError):
    """Raised when a webhook does not exist or belongs to another owner."""


class DeliveryError(WebhookServiceError):
    """Delivery attempt failed (timeout, connection error, 5xx).

    Only used inside the delivery path; it never reaches event producers.
    """

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
