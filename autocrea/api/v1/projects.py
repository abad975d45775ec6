"""Project-scoped deployment endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query, status

from autocrea.api.deps import OrchestratorDep, RateLimitDep, UserDep
from autocrea.core.exceptions import NotFoundError
from autocrea.models.deployment import (
    CleanupRequest,
    CleanupResult,
    Deployment,
    DeploymentListResponse,
    DeploymentStatus,
    PreviewRequest,
)

router = APIRouter()


@router.post(
    "/{project_id}/preview",
    response_model=Deployment,
    status_code=status.HTTP_201_CREATED,
    dependencies=[RateLimitDep],
    summary="Create a preview deployment",
)
async def create_preview(
    project_id: str,
    data: PreviewRequest,
    orchestrator: OrchestratorDep,
    user_id: UserDep,
) -> Deployment:
    """Deploy a project to the preview environment."""
    return await orchestrator.create_deployment(data.to_request(project_id), user_id)


@router.get(
    "/{project_id}/deployments",
    response_model=DeploymentListResponse,
    summary="List a project's deployments",
)
async def list_project_deployments(
    project_id: str,
    orchestrator: OrchestratorDep,
    user_id: UserDep,
    status_filter: Annotated[DeploymentStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> DeploymentListResponse:
    deployments, total = await orchestrator.list_deployments(
        user_id=user_id,
        project_id=project_id,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
    return DeploymentListResponse(
        deployments=deployments,
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{project_id}/deployments/latest",
    response_model=Deployment,
    summary="Get the latest successful deployment",
)
async def get_latest_deployment(
    project_id: str,
    orchestrator: OrchestratorDep,
    user_id: UserDep,
) -> Deployment:
    deployment = await orchestrator.get_latest_successful(project_id, user_id=user_id)
    if not deployment:
        raise NotFoundError(
            f"No successful deployment for project: {project_id}",
            {"project_id": project_id},
        )
    return deployment


@router.post(
    "/{project_id}/deployments/cleanup",
    response_model=CleanupResult,
    summary="Delete old deployment records",
)
async def cleanup_deployments(
    project_id: str,
    data: CleanupRequest,
    orchestrator: OrchestratorDep,
    user_id: UserDep,
) -> CleanupResult:
    """Delete the caller's finished deployments created before the cutoff."""
    return await orchestrator.cleanup_deployments(
        project_id,
        before=data.before,
        keep_successful=data.keep_successful,
        user_id=user_id,
    )
