"""Deployment Orchestrator.

Owns the deployment state machine and is the only component that writes
deployment records:

    pending -> building -> success | failed
    pending | building -> cancelled

Provider work is delegated to the adapter selected from the provider
registry. Adapter failures never escape ``create_deployment`` or
``refresh_status``; they are recorded on the deployment instead.
"""

import asyncio
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from autocrea.config import Settings, get_settings
from autocrea.core.events import EventBus
from autocrea.core.exceptions import (
    AdapterError,
    DeploymentError,
    DeploymentNotFoundError,
    InvalidStateError,
    PartialDeploymentError,
    UnsupportedOperationError,
    ValidationError,
)
from autocrea.core.status import normalize_status
from autocrea.core.store import DeploymentStore
from autocrea.models.deployment import (
    CleanupResult,
    Deployment,
    DeploymentRequest,
    DeploymentStats,
    DeploymentStatus,
)
from autocrea.providers.registry import ProviderRegistry
from autocrea.utils.logging import get_logger

TIMEOUT_CODE = "TIMEOUT"
BUILD_FAILED_CODE = "BUILD_FAILED"
INTERNAL_ERROR_CODE = "INTERNAL_ERROR"


class DeploymentOrchestrator:
    """Drives deployments through their lifecycle across providers."""

    def __init__(
        self,
        store: DeploymentStore,
        registry: ProviderRegistry,
        events: EventBus | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.registry = registry
        self.events = events or EventBus()
        self.settings = settings or get_settings()
        self.logger = get_logger("orchestrator")

        # One lock per deployment id serializes read-modify-write cycles.
        # A lock lives only while some task holds or awaits it.
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

    @asynccontextmanager
    async def _locked(self, deployment_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(deployment_id, asyncio.Lock())
        self._lock_users[deployment_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[deployment_id] -= 1
            if self._lock_users[deployment_id] <= 0:
                del self._lock_users[deployment_id]
                self._locks.pop(deployment_id, None)

    def is_locked(self, deployment_id: str) -> bool:
        """Whether an operation on the deployment is in flight."""
        return deployment_id in self._lock_users

    def validate_request(self, data: DeploymentRequest | dict[str, Any]) -> DeploymentRequest:
        """Validate raw input and check the provider has an adapter.

        Raises:
            ValidationError: If the request is malformed or the provider is unsupported
        """
        if isinstance(data, DeploymentRequest):
            request = data
        else:
            try:
                request = DeploymentRequest.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError(
                    "Invalid deployment request",
                    {
                        "errors": [
                            {"loc": [str(part) for part in err["loc"]], "msg": err["msg"]}
                            for err in e.errors()
                        ]
                    },
                ) from e

        self.registry.get(request.provider)
        return request

    async def get_deployment(self, deployment_id: str) -> Deployment:
        """Get a deployment or raise DeploymentNotFoundError."""
        deployment = await self.store.get(deployment_id)
        if deployment is None:
            raise DeploymentNotFoundError(deployment_id)
        return deployment

    async def _transition(
        self, deployment: Deployment, changes: dict[str, Any]
    ) -> Deployment:
        """Persist changes against the version we read and announce status moves."""
        updated = await self.store.update(
            deployment.id, changes, expected_version=deployment.version
        )

        if updated.status != deployment.status:
            self.logger.info(
                "orchestrator.status_changed",
                deployment_id=updated.id,
                provider=updated.provider.value,
                previous=deployment.status.value,
                status=updated.status.value,
            )
            await self.events.publish_status_changed(updated, deployment.status)

        return updated

    async def create_deployment(
        self,
        data: DeploymentRequest | dict[str, Any],
        user_id: str,
        rollback_of: str | None = None,
    ) -> Deployment:
        """Create a deployment and start it on the provider.

        The record is persisted as ``pending`` before the provider is called
        and always leaves this method as ``building`` or ``failed``.

        Raises:
            ValidationError: If the request is invalid (no record is created)
        """
        request = self.validate_request(data)
        adapter = self.registry.get(request.provider)

        deployment = Deployment.from_request(request, user_id)
        deployment.rollback_of = rollback_of

        async with self._locked(deployment.id):
            await self.store.insert(deployment)
            self.logger.info(
                "orchestrator.created",
                deployment_id=deployment.id,
                project_id=deployment.project_id,
                provider=deployment.provider.value,
                environment=deployment.environment.value,
                rollback_of=rollback_of,
            )

            try:
                created = await adapter.create(request)
            except AdapterError as e:
                self.logger.warning(
                    "orchestrator.create_failed",
                    deployment_id=deployment.id,
                    provider=deployment.provider.value,
                    error_code=e.code,
                    error=e.message,
                )
                changes: dict[str, Any] = {
                    "status": DeploymentStatus.FAILED,
                    "error": e.message,
                    "error_code": e.code,
                }
                if isinstance(e, PartialDeploymentError):
                    changes["external_id"] = e.partial_id
                return await self._transition(deployment, changes)
            except Exception as e:
                self.logger.exception(
                    "orchestrator.create_crashed", deployment_id=deployment.id
                )
                return await self._transition(
                    deployment,
                    {
                        "status": DeploymentStatus.FAILED,
                        "error": f"Unexpected error while creating deployment: {e}",
                        "error_code": INTERNAL_ERROR_CODE,
                    },
                )

            return await self._transition(
                deployment,
                {
                    "status": DeploymentStatus.BUILDING,
                    "external_id": created.external_id,
                    "url": created.url,
                },
            )

    async def refresh_status(self, deployment_id: str) -> Deployment:
        """Pull the provider's status and apply the resulting transition.

        Terminal records are returned unchanged. Adapter errors are counted;
        the record only fails once ``max_poll_failures`` consecutive polls
        have errored.
        """
        async with self._locked(deployment_id):
            deployment = await self.get_deployment(deployment_id)
            if deployment.is_terminal or not deployment.external_id:
                return deployment

            adapter = self.registry.get(deployment.provider)
            try:
                snapshot = await adapter.get_status(deployment.external_id)
            except AdapterError as e:
                return await self._record_poll_failure(deployment, e)

            status = normalize_status(deployment.provider, snapshot.raw_status)
            if status == DeploymentStatus.PENDING and deployment.status == DeploymentStatus.BUILDING:
                # Providers may report queued states after a build started; never move backwards
                status = DeploymentStatus.BUILDING

            changes: dict[str, Any] = {}
            if status != deployment.status:
                changes["status"] = status
            if snapshot.url and snapshot.url != deployment.url:
                changes["url"] = snapshot.url
            if snapshot.logs and snapshot.logs != deployment.build_logs:
                changes["build_logs"] = snapshot.logs
            if deployment.poll_failures:
                changes["poll_failures"] = 0

            if status == DeploymentStatus.SUCCESS:
                changes["deployed_at"] = datetime.utcnow()
            elif status == DeploymentStatus.FAILED:
                changes["error"] = (
                    f"{deployment.provider.value} reported deployment status "
                    f"'{snapshot.raw_status}'"
                )
                changes["error_code"] = BUILD_FAILED_CODE

            if not changes:
                return deployment

            return await self._transition(deployment, changes)

    async def _record_poll_failure(
        self, deployment: Deployment, error: AdapterError
    ) -> Deployment:
        failures = deployment.poll_failures + 1
        limit = self.settings.max_poll_failures

        if failures < limit:
            self.logger.warning(
                "orchestrator.poll_failed",
                deployment_id=deployment.id,
                provider=deployment.provider.value,
                attempt=failures,
                max_attempts=limit,
                error_code=error.code,
                error=error.message,
            )
            return await self._transition(deployment, {"poll_failures": failures})

        self.logger.error(
            "orchestrator.poll_exhausted",
            deployment_id=deployment.id,
            provider=deployment.provider.value,
            attempts=failures,
            error=error.message,
        )
        return await self._transition(
            deployment,
            {
                "status": DeploymentStatus.FAILED,
                "poll_failures": failures,
                "error": (
                    f"Timed out waiting for {deployment.provider.value} after "
                    f"{failures} failed status checks: {error.message}"
                ),
                "error_code": TIMEOUT_CODE,
            },
        )

    async def fail_stale_pending(self, now: datetime | None = None) -> list[Deployment]:
        """Fail pending records that never received a provider id.

        A record is stale once it is older than ``create_timeout_seconds``
        and no create call is in flight for it.
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=self.settings.create_timeout_seconds)
        failed: list[Deployment] = []

        for candidate in await self.store.list_active():
            if (
                candidate.status != DeploymentStatus.PENDING
                or candidate.external_id
                or candidate.created_at > cutoff
                or self.is_locked(candidate.id)
            ):
                continue

            async with self._locked(candidate.id):
                deployment = await self.store.get(candidate.id)
                if (
                    deployment is None
                    or deployment.status != DeploymentStatus.PENDING
                    or deployment.external_id
                ):
                    continue

                self.logger.warning(
                    "orchestrator.pending_expired",
                    deployment_id=deployment.id,
                    provider=deployment.provider.value,
                    created_at=deployment.created_at.isoformat(),
                )
                failed.append(
                    await self._transition(
                        deployment,
                        {
                            "status": DeploymentStatus.FAILED,
                            "error": (
                                f"{deployment.provider.value} never acknowledged the "
                                f"deployment within {self.settings.create_timeout_seconds:g}s"
                            ),
                            "error_code": TIMEOUT_CODE,
                        },
                    )
                )

        return failed

    async def cancel_deployment(self, deployment_id: str) -> Deployment:
        """Cancel an in-flight deployment.

        Raises:
            DeploymentNotFoundError: If the deployment does not exist
            InvalidStateError: If the deployment is already terminal
            UnsupportedOperationError: If the provider cannot cancel; the record is unchanged
            DeploymentError: If the provider call failed; the record is unchanged
        """
        async with self._locked(deployment_id):
            deployment = await self.get_deployment(deployment_id)
            if deployment.is_terminal:
                raise InvalidStateError(deployment.id, deployment.status.value, "cancel")

            adapter = self.registry.get(deployment.provider)
            if not adapter.supports_cancel:
                self.logger.info(
                    "orchestrator.cancel_unsupported",
                    deployment_id=deployment.id,
                    provider=deployment.provider.value,
                )
                raise UnsupportedOperationError(deployment.provider.value, "cancel")

            if deployment.external_id:
                try:
                    await adapter.cancel(deployment.external_id)
                except UnsupportedOperationError:
                    raise
                except AdapterError as e:
                    self.logger.warning(
                        "orchestrator.cancel_failed",
                        deployment_id=deployment.id,
                        error_code=e.code,
                        error=e.message,
                    )
                    raise DeploymentError(
                        f"could not cancel on {deployment.provider.value}: {e.message}",
                        deployment_id=deployment.id,
                        error_code=e.code,
                    ) from e

            return await self._transition(deployment, {"status": DeploymentStatus.CANCELLED})

    async def rollback(self, deployment_id: str, user_id: str | None = None) -> Deployment:
        """Redeploy the configuration of a successful deployment as a new record.

        Raises:
            DeploymentNotFoundError: If the deployment does not exist
            InvalidStateError: Unless the source deployment succeeded
        """
        source = await self.get_deployment(deployment_id)
        if source.status != DeploymentStatus.SUCCESS:
            raise InvalidStateError(source.id, source.status.value, "roll back")

        self.logger.info(
            "orchestrator.rollback_started",
            deployment_id=source.id,
            provider=source.provider.value,
        )
        return await self.create_deployment(
            source.to_request(),
            user_id or source.user_id,
            rollback_of=source.id,
        )

    async def update_build_logs(self, deployment_id: str, text: str) -> Deployment:
        """Append text to a deployment's build logs."""
        async with self._locked(deployment_id):
            deployment = await self.get_deployment(deployment_id)
            logs = f"{deployment.build_logs}\n{text}" if deployment.build_logs else text
            updated = await self._transition(deployment, {"build_logs": logs})

        await self.events.publish_logs_updated(updated)
        return updated

    async def list_deployments(
        self,
        user_id: str | None = None,
        project_id: str | None = None,
        status: DeploymentStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Deployment], int]:
        """List deployments newest first."""
        return await self.store.find(
            user_id=user_id,
            project_id=project_id,
            status=status,
            limit=limit,
            offset=offset,
        )

    async def get_latest_successful(
        self, project_id: str, user_id: str | None = None
    ) -> Deployment | None:
        """The most recent successful deployment of a project, if any."""
        deployments, _ = await self.store.find(
            user_id=user_id,
            project_id=project_id,
            status=DeploymentStatus.SUCCESS,
            limit=1,
        )
        return deployments[0] if deployments else None

    async def get_stats(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> DeploymentStats:
        """Aggregate a user's deployments by status, provider and environment."""
        deployments, _ = await self.store.find(user_id=user_id)
        deployments = [
            d
            for d in deployments
            if (start is None or d.created_at >= start)
            and (end is None or d.created_at <= end)
        ]

        total = len(deployments)
        by_status = Counter(d.status.value for d in deployments)
        successes = by_status.get(DeploymentStatus.SUCCESS.value, 0)

        return DeploymentStats(
            total_deployments=total,
            by_status=dict(by_status),
            by_provider=dict(Counter(d.provider.value for d in deployments)),
            by_environment=dict(Counter(d.environment.value for d in deployments)),
            success_rate=(successes / total) * 100 if total else 0.0,
        )

    async def cleanup_deployments(
        self,
        project_id: str,
        before: datetime,
        keep_successful: bool = True,
        user_id: str | None = None,
    ) -> CleanupResult:
        """Delete terminal deployments of a project created before a cutoff.

        Only ``user_id``'s records are considered when it is given.
        In-flight deployments are never deleted.
        """
        deployments, _ = await self.store.find(user_id=user_id, project_id=project_id)
        deleted: list[str] = []

        for candidate in deployments:
            if candidate.created_at >= before:
                continue

            async with self._locked(candidate.id):
                current = await self.store.get(candidate.id)
                if current is None or not current.is_terminal:
                    continue
                if keep_successful and current.status == DeploymentStatus.SUCCESS:
                    continue
                if await self.store.delete(current.id):
                    deleted.append(current.id)

        self.logger.info(
            "orchestrator.cleanup_completed",
            project_id=project_id,
            user_id=user_id,
            deleted_count=len(deleted),
            keep_successful=keep_successful,
        )
        return CleanupResult(deleted_count=len(deleted), deleted_ids=deleted)
