"""Dependency injection for API endpoints."""

from typing import Annotated

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from autocrea.api.rate_limiting import check_deploy_rate_limit
from autocrea.core.events import EventBus
from autocrea.core.exceptions import AuthenticationError, DeploymentNotFoundError
from autocrea.core.orchestrator import DeploymentOrchestrator
from autocrea.models.deployment import Deployment

bearer_scheme = HTTPBearer(auto_error=False)

ANONYMOUS_USER = "anonymous"


async def get_orchestrator(request: Request) -> DeploymentOrchestrator:
    """Get the orchestrator created at application startup."""
    return request.app.state.orchestrator


async def get_events(request: Request) -> EventBus:
    """Get the event bus."""
    return request.app.state.events


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Resolve the verified user id for the request.

    With ``API_TOKENS`` configured the bearer token must map to a user.
    Without it verification is disabled and ``X-User-Id`` is trusted.
    """
    api_tokens = request.app.state.settings.api_tokens
    if not api_tokens:
        user_id = x_user_id or ANONYMOUS_USER
    elif credentials is None:
        raise AuthenticationError("Missing or invalid authorization header")
    else:
        user_id = api_tokens.get(credentials.credentials)
        if not user_id:
            raise AuthenticationError("Invalid or expired token")

    request.state.user_id = user_id
    return user_id


OrchestratorDep = Annotated[DeploymentOrchestrator, Depends(get_orchestrator)]
UserDep = Annotated[str, Depends(get_current_user)]


async def get_deployment_by_id(
    deployment_id: str,
    orchestrator: OrchestratorDep,
    user_id: UserDep,
) -> Deployment:
    """Get a deployment owned by the current user or raise 404."""
    deployment = await orchestrator.store.get(deployment_id)
    if not deployment or deployment.user_id != user_id:
        raise DeploymentNotFoundError(deployment_id)
    return deployment


async def enforce_deploy_rate_limit(request: Request, user_id: UserDep) -> None:
    """Count a deployment creation against the user's quota."""
    check_deploy_rate_limit(request)


# Type aliases for cleaner signatures
EventsDep = Annotated[EventBus, Depends(get_events)]
DeploymentDep = Annotated[Deployment, Depends(get_deployment_by_id)]
RateLimitDep = Depends(enforce_deploy_rate_limit)
