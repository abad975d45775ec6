"""Data models for AUTOCREA."""

from autocrea.models.deployment import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    BuildLogsUpdate,
    CleanupRequest,
    CleanupResult,
    Deployment,
    DeploymentListResponse,
    DeploymentLogs,
    DeploymentRequest,
    DeploymentStats,
    DeploymentStatus,
    Environment,
    EnvVar,
    PreviewRequest,
    Provider,
    ProviderDeployment,
    ProviderStatus,
    SourceRef,
)

__all__ = [
    # Enums
    "Provider",
    "Environment",
    "DeploymentStatus",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    # Requests
    "DeploymentRequest",
    "PreviewRequest",
    "EnvVar",
    "SourceRef",
    "BuildLogsUpdate",
    "CleanupRequest",
    # Records and projections
    "Deployment",
    "DeploymentListResponse",
    "DeploymentLogs",
    "DeploymentStats",
    "CleanupResult",
    # Provider results
    "ProviderDeployment",
    "ProviderStatus",
]
