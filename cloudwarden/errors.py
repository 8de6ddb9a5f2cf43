"""
Exception taxonomy.

Validation and entity-resolution errors abort the single operation that hit
them. Probe failures never appear here: they are folded into
HealthCheckResult. Notification failures are DeliveryResult values.
"""

from __future__ import annotations


class CloudwardenError(Exception):
    """Base class. ``code`` is a stable identifier for the HTTP layer."""

    code = "CLOUDWARDEN_ERROR"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(CloudwardenError):
    code = "VALIDATION_ERROR"


class NotFound(CloudwardenError):
    code = "NOT_FOUND"


class TemplateNotFound(NotFound):
    code = "TEMPLATE_NOT_FOUND"


class CredentialNotFound(NotFound):
    code = "CREDENTIAL_NOT_FOUND"


class TaskNotFound(NotFound):
    code = "TASK_NOT_FOUND"


class AccessDenied(CloudwardenError):
    code = "ACCESS_DENIED"


class NoHealthyCredential(CloudwardenError):
    code = "NO_HEALTHY_CREDENTIAL"

    def __init__(self, message: str, *, log_id: int | None = None) -> None:
        super().__init__(message)
        self.log_id = log_id


class ProviderCreateFailure(CloudwardenError):
    """Instance creation failed. The log entry already says ``failed``."""

    code = "PROVIDER_CREATE_FAILED"

    def __init__(self, message: str, *, log_id: int | None = None) -> None:
        super().__init__(message)
        self.log_id = log_id


class ProviderError(Exception):
    """Raised by CloudProviderClient implementations for non-2xx responses.

    ``status_code`` is None for transport-level failures.
    """

    def __init__(self, message: str, status_code: int | None = None, provider: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.provider = provider

    def __str__(self) -> str:
        return self.message
