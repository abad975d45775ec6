"""Deployment endpoints."""

import asyncio
import json
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Query, status
from sse_starlette.sse import EventSourceResponse

from autocrea.api.deps import (
    DeploymentDep,
    EventsDep,
    OrchestratorDep,
    RateLimitDep,
    UserDep,
)
from autocrea.core.events import Event
from autocrea.models.deployment import (
    BuildLogsUpdate,
    Deployment,
    DeploymentListResponse,
    DeploymentLogs,
    DeploymentRequest,
    DeploymentStats,
    DeploymentStatus,
)

router = APIRouter()

STREAM_KEEPALIVE_SECONDS = 30.0


@router.post(
    "",
    response_model=Deployment,
    status_code=status.HTTP_201_CREATED,
    dependencies=[RateLimitDep],
    summary="Deploy a project",
    description=(
        "Create a deployment and start it on the provider. The record is returned "
        "with status 201 even when the provider rejected it immediately."
    ),
)
async def create_deployment(
    data: DeploymentRequest,
    orchestrator: OrchestratorDep,
    user_id: UserDep,
) -> Deployment:
    """Create a deployment."""
    return await orchestrator.create_deployment(data, user_id)


@router.get(
    "",
    response_model=DeploymentListResponse,
    summary="List deployments",
)
async def list_deployments(
    orchestrator: OrchestratorDep,
    user_id: UserDep,
    project_id: str | None = None,
    status_filter: Annotated[DeploymentStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> DeploymentListResponse:
    """List the current user's deployments, newest first."""
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
    "/stats",
    response_model=DeploymentStats,
    summary="Deployment statistics",
)
async def get_stats(
    orchestrator: OrchestratorDep,
    user_id: UserDep,
    start: datetime | None = None,
    end: datetime | None = None,
) -> DeploymentStats:
    """Aggregate the current user's deployments."""
    return await orchestrator.get_stats(user_id, start=start, end=end)


@router.get(
    "/{deployment_id}",
    response_model=Deployment,
    summary="Get deployment details",
)
async def get_deployment(deployment: DeploymentDep) -> Deployment:
    return deployment


@router.post(
    "/{deployment_id}/refresh",
    response_model=Deployment,
    summary="Refresh deployment status from the provider",
)
async def refresh_deployment(
    deployment: DeploymentDep,
    orchestrator: OrchestratorDep,
) -> Deployment:
    """Poll the provider now instead of waiting for the background poller."""
    return await orchestrator.refresh_status(deployment.id)


@router.delete(
    "/{deployment_id}",
    response_model=Deployment,
    summary="Cancel a deployment",
    responses={
        409: {"description": "Deployment already finished"},
        422: {"description": "Provider cannot cancel deployments"},
    },
)
async def cancel_deployment(
    deployment: DeploymentDep,
    orchestrator: OrchestratorDep,
) -> Deployment:
    """Cancel a pending or building deployment."""
    return await orchestrator.cancel_deployment(deployment.id)


@router.post(
    "/{deployment_id}/rollback",
    response_model=Deployment,
    status_code=status.HTTP_201_CREATED,
    dependencies=[RateLimitDep],
    summary="Roll back to a deployment",
    responses={409: {"description": "Deployment did not succeed"}},
)
async def rollback_deployment(
    deployment: DeploymentDep,
    orchestrator: OrchestratorDep,
    user_id: UserDep,
) -> Deployment:
    """Redeploy a successful deployment's configuration as a new deployment."""
    return await orchestrator.rollback(deployment.id, user_id)


@router.get(
    "/{deployment_id}/logs",
    response_model=DeploymentLogs,
    summary="Get build logs",
)
async def get_logs(deployment: DeploymentDep) -> DeploymentLogs:
    return DeploymentLogs(
        deployment_id=deployment.id,
        status=deployment.status,
        logs=deployment.build_logs or "",
        last_update=deployment.updated_at,
    )


@router.put(
    "/{deployment_id}/logs",
    response_model=DeploymentLogs,
    summary="Append to build logs",
)
async def append_logs(
    data: BuildLogsUpdate,
    deployment: DeploymentDep,
    orchestrator: OrchestratorDep,
) -> DeploymentLogs:
    updated = await orchestrator.update_build_logs(deployment.id, data.text)
    return DeploymentLogs(
        deployment_id=updated.id,
        status=updated.status,
        logs=updated.build_logs or "",
        last_update=updated.updated_at,
    )


@router.get(
    "/{deployment_id}/stream",
    summary="Stream deployment events (SSE)",
)
async def stream_deployment_events(
    deployment: DeploymentDep,
    events: EventsDep,
) -> EventSourceResponse:
    """Stream status transitions until the deployment reaches a terminal state."""

    async def event_generator():
        queue = events.subscribe(deployment.id)

        try:
            yield {
                "event": "connected",
                "data": json.dumps(
                    {"deployment_id": deployment.id, "status": deployment.status.value}
                ),
            }
            if deployment.is_terminal:
                return

            while True:
                try:
                    event: Event = await asyncio.wait_for(
                        queue.get(), timeout=STREAM_KEEPALIVE_SECONDS
                    )
                except asyncio.TimeoutError:
                    yield {"event": "keepalive", "data": "{}"}
                    continue

                yield {"event": event.event_type, "data": json.dumps(event.data)}
                if event.is_terminal:
                    break

        finally:
            events.unsubscribe(deployment.id, queue)

    return EventSourceResponse(event_generator())
