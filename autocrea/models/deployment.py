"""Deployment data models."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


class Provider(str, Enum):
    """Supported hosting providers."""

    VERCEL = "vercel"
    NETLIFY = "netlify"
    RAILWAY = "railway"


class Environment(str, Enum):
    """Target environment of a deployment."""

    PRODUCTION = "production"
    PREVIEW = "preview"
    DEVELOPMENT = "development"


class DeploymentStatus(str, Enum):
    """Canonical deployment status, independent of provider vocabulary."""

    PENDING = "pending"
    BUILDING = "building"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {DeploymentStatus.SUCCESS, DeploymentStatus.FAILED, DeploymentStatus.CANCELLED}
)
ACTIVE_STATUSES = frozenset({DeploymentStatus.PENDING, DeploymentStatus.BUILDING})


class EnvVar(BaseModel):
    """A single environment variable passed to the build."""

    key: str = Field(..., min_length=1)
    value: str


class SourceRef(BaseModel):
    """Git source of a deployment."""

    repo_url: str = Field(..., min_length=1)
    branch: str = "main"


class DeploymentRequest(BaseModel):
    """Request to deploy a project to a provider."""

    provider: Provider
    project_id: str = Field(..., min_length=1)
    environment: Environment

    project_name: str | None = None
    source: SourceRef | None = None
    build_command: str | None = None
    output_directory: str | None = None
    env_vars: list[EnvVar] = Field(default_factory=list)
    domain: str | None = None

    @property
    def name(self) -> str:
        """Name used for the project on the provider side."""
        return self.project_name or self.project_id

    def env_dict(self) -> dict[str, str]:
        """Environment variables as a mapping, later keys winning."""
        return {var.key: var.value for var in self.env_vars}


class ProviderDeployment(BaseModel):
    """What a provider returns when a deployment is created."""

    external_id: str
    url: str | None = None


class ProviderStatus(BaseModel):
    """Raw status snapshot reported by a provider."""

    raw_status: str | None = None
    url: str | None = None
    logs: str | None = None


def _new_deployment_id() -> str:
    return f"dep_{uuid4().hex}"


class Deployment(BaseModel):
    """A persisted deployment record."""

    id: str = Field(default_factory=_new_deployment_id)
    external_id: str | None = None

    project_id: str
    user_id: str
    provider: Provider
    environment: Environment

    # Configuration copied from the request
    project_name: str | None = None
    source: SourceRef | None = None
    build_command: str | None = None
    output_directory: str | None = None
    env_vars: list[EnvVar] = Field(default_factory=list)
    domain: str | None = None

    status: DeploymentStatus = DeploymentStatus.PENDING
    url: str | None = None
    build_logs: str | None = None
    error: str | None = None
    error_code: str | None = None

    rollback_of: str | None = None
    poll_failures: int = 0
    version: int = 1

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    deployed_at: datetime | None = None

    @classmethod
    def from_request(cls, request: DeploymentRequest, user_id: str) -> "Deployment":
        """Create a pending record from a validated request."""
        return cls(
            project_id=request.project_id,
            user_id=user_id,
            provider=request.provider,
            environment=request.environment,
            project_name=request.project_name,
            source=request.source,
            build_command=request.build_command,
            output_directory=request.output_directory,
            env_vars=list(request.env_vars),
            domain=request.domain,
        )

    def to_request(self) -> DeploymentRequest:
        """Rebuild the request that reproduces this deployment's configuration."""
        return DeploymentRequest(
            provider=self.provider,
            project_id=self.project_id,
            environment=self.environment,
            project_name=self.project_name,
            source=self.source,
            build_command=self.build_command,
            output_directory=self.output_directory,
            env_vars=list(self.env_vars),
            domain=self.domain,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class DeploymentListResponse(BaseModel):
    """Response for listing deployments."""

    deployments: list[Deployment]
    total: int
    limit: int
    offset: int


class DeploymentLogs(BaseModel):
    """Build logs projection of a deployment."""

    deployment_id: str
    status: DeploymentStatus
    logs: str
    last_update: datetime


class BuildLogsUpdate(BaseModel):
    """Text to append to a deployment's build logs."""

    text: str = Field(..., min_length=1)


class DeploymentStats(BaseModel):
    """Aggregate deployment statistics for a user."""

    total_deployments: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_provider: dict[str, int] = Field(default_factory=dict)
    by_environment: dict[str, int] = Field(default_factory=dict)
    success_rate: float = 0.0


class CleanupRequest(BaseModel):
    """Retention policy for deleting old deployment records."""

    before: datetime
    keep_successful: bool = True


class CleanupResult(BaseModel):
    """Outcome of a retention cleanup."""

    deleted_count: int
    deleted_ids: list[str] = Field(default_factory=list)


class PreviewRequest(BaseModel):
    """Shortcut request for a preview deployment of a project."""

    provider: Provider = Provider.VERCEL
    project_name: str | None = None
    source: SourceRef | None = None
    build_command: str | None = None
    output_directory: str | None = None
    env_vars: list[EnvVar] = Field(default_factory=list)

    def to_request(self, project_id: str) -> DeploymentRequest:
        return DeploymentRequest(
            provider=self.provider,
            project_id=project_id,
            environment=Environment.PREVIEW,
            **self.model_dump(exclude={"provider"}),
        )

