"""Core functionality for AUTOCREA."""

from autocrea.core.exceptions import (
    AdapterError,
    AdapterErrorKind,
    AdapterTimeoutError,
    AutocreaError,
    ConcurrentModificationError,
    DeploymentError,
    DeploymentNotFoundError,
    InvalidStateError,
    MissingCredentialError,
    PartialDeploymentError,
    ProviderRejectedError,
    RateLimitExceededError,
    TransportError,
    UnsupportedOperationError,
    ValidationError,
)
from autocrea.core.status import normalize_status
from autocrea.core.store import (
    DeploymentStore,
    InMemoryDeploymentStore,
    SqliteDeploymentStore,
    create_store,
)

__all__ = [
    "AutocreaError",
    "ValidationError",
    "DeploymentNotFoundError",
    "InvalidStateError",
    "ConcurrentModificationError",
    "RateLimitExceededError",
    "DeploymentError",
    "AdapterError",
    "AdapterErrorKind",
    "MissingCredentialError",
    "AdapterTimeoutError",
    "TransportError",
    "ProviderRejectedError",
    "UnsupportedOperationError",
    "PartialDeploymentError",
    "normalize_status",
    "DeploymentStore",
    "InMemoryDeploymentStore",
    "SqliteDeploymentStore",
    "create_store",
]
