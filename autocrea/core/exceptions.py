"""Custom exceptions for AUTOCREA."""

import re
from enum import Enum
from typing import Any


class AutocreaError(Exception):
    """Base exception for AUTOCREA."""

    status_code: int = 500
    headers: dict[str, str] = {}

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def code(self) -> str:
        name = type(self).__name__.removesuffix("Error")
        return re.sub(r"(?<!^)(?=[A-Z])", "_", name).upper()


class ValidationError(AutocreaError):
    """Validation error."""

    status_code = 400


class AuthenticationError(AutocreaError):
    """Missing or unrecognised bearer credentials."""

    status_code = 401
    headers = {"WWW-Authenticate": "Bearer"}


class NotFoundError(AutocreaError):
    """Requested resource does not exist for the caller."""

    status_code = 404


class DeploymentNotFoundError(NotFoundError):
    """Deployment not found."""

    def __init__(self, deployment_id: str):
        super().__init__(
            f"Deployment not found: {deployment_id}",
            {"deployment_id": deployment_id},
        )


class InvalidStateError(AutocreaError):
    """Requested transition is not legal from the record's current status."""

    status_code = 409

    def __init__(self, deployment_id: str, status: str, action: str):
        super().__init__(
            f"Cannot {action} deployment {deployment_id} in status '{status}'",
            {"deployment_id": deployment_id, "status": status, "action": action},
        )


class ConcurrentModificationError(AutocreaError):
    """A write was attempted against a stale version of a record."""

    status_code = 409

    def __init__(self, deployment_id: str, expected: int, actual: int):
        super().__init__(
            f"Deployment {deployment_id} was modified concurrently",
            {"deployment_id": deployment_id, "expected_version": expected, "actual_version": actual},
        )


class RateLimitExceededError(AutocreaError):
    """Too many deployments created in the current window."""

    status_code = 429

    def __init__(self, retry_after: int):
        super().__init__(
            "Deployment rate limit exceeded. Please try again later.",
            {"retry_after": retry_after},
        )
        self.retry_after = retry_after
        self.headers = {"Retry-After": str(retry_after)}


class DeploymentError(AutocreaError):
    """A provider operation failed while serving a request."""

    status_code = 502

    def __init__(self, message: str, build_logs: str | None = None, **details: Any):
        if build_logs:
            details["build_logs"] = build_logs
        super().__init__(f"Deployment failed: {message}", details)


class AdapterErrorKind(str, Enum):
    """Error kinds a provider adapter can report."""

    MISSING_CREDENTIAL = "MISSING_CREDENTIAL"
    TIMEOUT = "TIMEOUT"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    PROVIDER_REJECTED = "PROVIDER_REJECTED"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
    PARTIAL_DEPLOYMENT = "PARTIAL_DEPLOYMENT"


class AdapterError(AutocreaError):
    """Base class for every failure raised by a provider adapter."""

    kind: AdapterErrorKind = AdapterErrorKind.TRANSPORT_ERROR
    status_code = 502

    def __init__(self, provider: str, message: str, **details: Any):
        super().__init__(message, {"provider": provider, **details})
        self.provider = provider

    @property
    def code(self) -> str:
        return self.kind.value


class MissingCredentialError(AdapterError):
    """The provider's API credential is not configured."""

    kind = AdapterErrorKind.MISSING_CREDENTIAL

    def __init__(self, provider: str, setting: str):
        super().__init__(
            provider,
            f"Missing {provider} credential: set {setting.upper()}",
            setting=setting,
        )


class AdapterTimeoutError(AdapterError):
    """The provider did not answer within the configured timeout."""

    kind = AdapterErrorKind.TIMEOUT
    status_code = 504


class TransportError(AdapterError):
    """Network-level or unexpected HTTP failure."""

    kind = AdapterErrorKind.TRANSPORT_ERROR


class ProviderRejectedError(AdapterError):
    """The provider answered with a structured error payload."""

    kind = AdapterErrorKind.PROVIDER_REJECTED


class UnsupportedOperationError(AdapterError):
    """The provider does not offer the requested capability."""

    kind = AdapterErrorKind.UNSUPPORTED_OPERATION
    status_code = 422

    def __init__(self, provider: str, operation: str):
        super().__init__(
            provider,
            f"{operation} is not supported by {provider}",
            operation=operation,
        )


class PartialDeploymentError(AdapterError):
    """A multi-step create failed after some provider resources were created."""

    kind = AdapterErrorKind.PARTIAL_DEPLOYMENT

    def __init__(self, provider: str, message: str, partial_id: str):
        super().__init__(provider, message, partial_id=partial_id)
        self.partial_id = partial_id
