"""Deployment rate limiting using SlowAPI."""

import time

from fastapi import Request
from limits import parse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from slowapi.wrappers import Limit

from autocrea.config import Settings
from autocrea.utils.logging import get_logger

logger = get_logger(__name__)

DEPLOY_SCOPE = "deployments.create"


def deploy_rate_key(request: Request) -> str:
    """Key quotas by the authenticated user, falling back to the client address."""
    return getattr(request.state, "user_id", None) or get_remote_address(request)


def create_limiter(settings: Settings) -> Limiter:
    """Build the limiter for an application.

    A non-positive ``deploy_rate_limit`` disables limiting.
    """
    return Limiter(
        key_func=deploy_rate_key,
        strategy="moving-window",
        enabled=settings.deploy_rate_limit > 0,
    )


def deploy_limit(settings: Settings) -> Limit:
    """The deployment creation quota, e.g. ``10 per 3600 second``."""
    item = parse(
        f"{max(settings.deploy_rate_limit, 1)} per "
        f"{settings.deploy_rate_window_seconds} second"
    )
    return Limit(item, deploy_rate_key, DEPLOY_SCOPE, False, None, None, None, 1, False)


def check_deploy_rate_limit(request: Request) -> None:
    """Count a deployment creation against the caller's quota.

    Raises:
        RateLimitExceeded: If the quota for the current window is used up.
    """
    limiter: Limiter = request.app.state.limiter
    if not limiter.enabled:
        return

    limit = deploy_limit(request.app.state.settings)
    key = limit.key_func(request)
    if not limiter.limiter.hit(limit.limit, key, DEPLOY_SCOPE):
        logger.warning("rate_limit.exceeded", key=key, limit=str(limit.limit))
        raise RateLimitExceeded(limit)


def retry_after_seconds(request: Request, exc: RateLimitExceeded) -> int:
    """Seconds until the caller's oldest counted hit leaves the window."""
    limiter: Limiter = request.app.state.limiter
    stats = limiter.limiter.get_window_stats(
        exc.limit.limit, exc.limit.key_func(request), DEPLOY_SCOPE
    )
    return max(int(stats.reset_time - time.time()), 0) + 1
