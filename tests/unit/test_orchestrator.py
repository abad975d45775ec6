"""Tests for the deployment orchestrator."""

import asyncio
from datetime import datetime, timedelta

import httpx
import pytest

from autocrea.config import Settings
from autocrea.core.exceptions import (
    AdapterTimeoutError,
    DeploymentError,
    DeploymentNotFoundError,
    InvalidStateError,
    PartialDeploymentError,
    ProviderRejectedError,
    TransportError,
    UnsupportedOperationError,
    ValidationError,
)
from autocrea.core.orchestrator import DeploymentOrchestrator
from autocrea.models.deployment import (
    Deployment,
    DeploymentRequest,
    DeploymentStatus,
    Provider,
    ProviderDeployment,
    ProviderStatus,
    SourceRef,
)
from autocrea.providers import ProviderRegistry, VercelAdapter


async def seed(store, status: DeploymentStatus, provider=Provider.VERCEL, **kwargs) -> Deployment:
    """Insert a record directly in the given status."""
    deployment = Deployment(
        project_id=kwargs.pop("project_id", "proj_1"),
        user_id=kwargs.pop("user_id", "user_1"),
        provider=provider,
        environment=kwargs.pop("environment", "production"),
        status=status,
        **kwargs,
    )
    await store.insert(deployment)
    return deployment


class TestCreateDeployment:
    """Tests for create_deployment."""

    @pytest.mark.asyncio
    async def test_successful_create_is_building(
        self, orchestrator, vercel_adapter, deployment_request, store
    ):
        deployment = await orchestrator.create_deployment(deployment_request, "user_1")

        assert deployment.status == DeploymentStatus.BUILDING
        assert deployment.external_id == "dpl_123"
        assert deployment.url == "https://x.example"
        assert deployment.deployed_at is None
        assert vercel_adapter.call_names() == ["create"]
        assert await store.get(deployment.id) == deployment

    @pytest.mark.asyncio
    async def test_missing_credential_is_persisted_as_failed(self, store, settings):
        settings.vercel_token = ""
        registry = ProviderRegistry()
        registry.register(VercelAdapter(settings=settings))
        orchestrator = DeploymentOrchestrator(store, registry, settings=settings)

        deployment = await orchestrator.create_deployment(
            {"provider": "vercel", "project_id": "proj_1", "environment": "production"},
            "user_1",
        )

        assert deployment.status == DeploymentStatus.FAILED
        assert "credential" in deployment.error
        assert deployment.error_code == "MISSING_CREDENTIAL"
        assert deployment.external_id is None
        assert (await store.get(deployment.id)).status == DeploymentStatus.FAILED

    @pytest.mark.parametrize(
        "error",
        [
            AdapterTimeoutError("vercel", "no answer"),
            TransportError("vercel", "connection reset"),
            ProviderRejectedError("vercel", "bad repo"),
            RuntimeError("boom"),
        ],
    )
    @pytest.mark.asyncio
    async def test_create_never_raises_for_adapter_failures(
        self, orchestrator, vercel_adapter, deployment_request, error
    ):
        vercel_adapter.create_result = error

        deployment = await orchestrator.create_deployment(deployment_request, "user_1")

        assert deployment.status == DeploymentStatus.FAILED
        assert deployment.error
        assert deployment.error_code

    @pytest.mark.asyncio
    async def test_partial_create_keeps_provider_id(
        self, orchestrator, netlify_adapter
    ):
        netlify_adapter.create_result = PartialDeploymentError(
            "netlify", "deploy trigger failed", partial_id="site_1"
        )

        deployment = await orchestrator.create_deployment(
            DeploymentRequest(
                provider="netlify",
                project_id="proj_1",
                environment="preview",
                source=SourceRef(repo_url="acme/site"),
            ),
            "user_1",
        )

        assert deployment.status == DeploymentStatus.FAILED
        assert deployment.error_code == "PARTIAL_DEPLOYMENT"
        assert deployment.external_id == "site_1"

    @pytest.mark.asyncio
    async def test_invalid_request_creates_nothing(self, orchestrator, store, vercel_adapter):
        with pytest.raises(ValidationError):
            await orchestrator.create_deployment(
                {"provider": "heroku", "project_id": "p", "environment": "production"},
                "user_1",
            )

        assert (await store.find())[1] == 0
        assert vercel_adapter.calls == []

    @pytest.mark.asyncio
    async def test_unregistered_provider_rejected(self, store, settings, vercel_adapter):
        registry = ProviderRegistry()
        registry.register(vercel_adapter)
        orchestrator = DeploymentOrchestrator(store, registry, settings=settings)

        with pytest.raises(ValidationError):
            await orchestrator.create_deployment(
                {"provider": "railway", "project_id": "p", "environment": "production"},
                "user_1",
            )

    @pytest.mark.asyncio
    async def test_status_events_published(self, orchestrator, events, deployment_request):
        received = []
        original_publish = events.publish

        async def capture(deployment_id, event):
            received.append(event)
            await original_publish(deployment_id, event)

        events.publish = capture

        await orchestrator.create_deployment(deployment_request, "user_1")

        assert [e.data["status"] for e in received] == ["building"]
        assert received[0].data["previous_status"] == "pending"


class TestRefreshStatus:
    """Tests for refresh_status."""

    @pytest.mark.asyncio
    async def test_ready_becomes_success(self, orchestrator, vercel_adapter, deployment_request):
        created = await orchestrator.create_deployment(deployment_request, "user_1")
        vercel_adapter.status_results = [
            ProviderStatus(raw_status="READY", url="https://final.example")
        ]

        before = datetime.utcnow()
        refreshed = await orchestrator.refresh_status(created.id)

        assert refreshed.status == DeploymentStatus.SUCCESS
        assert refreshed.url == "https://final.example"
        assert refreshed.deployed_at is not None
        assert refreshed.deployed_at >= before

    @pytest.mark.asyncio
    async def test_terminal_refresh_is_idempotent(
        self, orchestrator, vercel_adapter, deployment_request
    ):
        created = await orchestrator.create_deployment(deployment_request, "user_1")
        vercel_adapter.status_results = [ProviderStatus(raw_status="READY")]
        first = await orchestrator.refresh_status(created.id)

        vercel_adapter.status_results = [ProviderStatus(raw_status="ERROR")]
        second = await orchestrator.refresh_status(created.id)
        third = await orchestrator.refresh_status(created.id)

        assert second == first
        assert third == first
        assert vercel_adapter.call_names().count("get_status") == 1

    @pytest.mark.asyncio
    async def test_error_becomes_failed(self, orchestrator, vercel_adapter, deployment_request):
        created = await orchestrator.create_deployment(deployment_request, "user_1")
        vercel_adapter.status_results = [ProviderStatus(raw_status="ERROR", logs="exit 1")]

        refreshed = await orchestrator.refresh_status(created.id)

        assert refreshed.status == DeploymentStatus.FAILED
        assert refreshed.error_code == "BUILD_FAILED"
        assert refreshed.build_logs == "exit 1"
        assert refreshed.deployed_at is None

    @pytest.mark.asyncio
    async def test_unknown_status_does_not_regress_building(
        self, orchestrator, vercel_adapter, deployment_request
    ):
        created = await orchestrator.create_deployment(deployment_request, "user_1")
        vercel_adapter.status_results = [ProviderStatus(raw_status="SOMETHING_NEW")]

        refreshed = await orchestrator.refresh_status(created.id)

        assert refreshed.status == DeploymentStatus.BUILDING
        assert refreshed.version == created.version

    @pytest.mark.asyncio
    async def test_record_without_external_id_is_not_polled(
        self, orchestrator, vercel_adapter, store
    ):
        pending = await seed(store, DeploymentStatus.PENDING)

        refreshed = await orchestrator.refresh_status(pending.id)

        assert refreshed == pending
        assert vercel_adapter.calls == []

    @pytest.mark.asyncio
    async def test_transient_failures_are_counted(
        self, orchestrator, vercel_adapter, deployment_request
    ):
        created = await orchestrator.create_deployment(deployment_request, "user_1")
        vercel_adapter.status_results = [
            TransportError("vercel", "reset"),
            ProviderStatus(raw_status="BUILDING"),
        ]

        after_failure = await orchestrator.refresh_status(created.id)
        assert after_failure.status == DeploymentStatus.BUILDING
        assert after_failure.poll_failures == 1

        recovered = await orchestrator.refresh_status(created.id)
        assert recovered.status == DeploymentStatus.BUILDING
        assert recovered.poll_failures == 0

    @pytest.mark.asyncio
    async def test_failures_escalate_after_limit(
        self, orchestrator, vercel_adapter, deployment_request, settings
    ):
        created = await orchestrator.create_deployment(deployment_request, "user_1")
        vercel_adapter.status_results = [
            AdapterTimeoutError("vercel", "no answer")
            for _ in range(settings.max_poll_failures)
        ]

        for _ in range(settings.max_poll_failures - 1):
            record = await orchestrator.refresh_status(created.id)
            assert record.status == DeploymentStatus.BUILDING

        final = await orchestrator.refresh_status(created.id)

        assert final.status == DeploymentStatus.FAILED
        assert final.error_code == "TIMEOUT"
        assert final.poll_failures == settings.max_poll_failures

    @pytest.mark.asyncio
    async def test_missing_deployment(self, orchestrator):
        with pytest.raises(DeploymentNotFoundError):
            await orchestrator.refresh_status("dep_missing")

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_apply_once(
        self, orchestrator, vercel_adapter, deployment_request
    ):
        created = await orchestrator.create_deployment(deployment_request, "user_1")
        vercel_adapter.status_results = [ProviderStatus(raw_status="READY")]

        results = await asyncio.gather(
            orchestrator.refresh_status(created.id),
            orchestrator.refresh_status(created.id),
        )

        assert {r.status for r in results} == {DeploymentStatus.SUCCESS}
        assert results[0].deployed_at == results[1].deployed_at
        assert vercel_adapter.call_names().count("get_status") == 1

    @pytest.mark.asyncio
    async def test_malformed_provider_status_escalates(self, store, settings):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"id": "dpl_1", "readyState": 5})
        )
        registry = ProviderRegistry()
        registry.register(VercelAdapter(settings=settings, transport=transport))
        orchestrator = DeploymentOrchestrator(store, registry, settings=settings)
        deployment = await seed(store, DeploymentStatus.BUILDING, external_id="dpl_1")

        for attempt in range(1, settings.max_poll_failures):
            record = await orchestrator.refresh_status(deployment.id)
            assert record.status == DeploymentStatus.BUILDING
            assert record.poll_failures == attempt

        final = await orchestrator.refresh_status(deployment.id)

        assert final.status == DeploymentStatus.FAILED
        assert final.error_code == "TIMEOUT"
        assert final.poll_failures == settings.max_poll_failures


class TestDeploymentLocks:
    """Tests for per-deployment lock lifetime."""

    @pytest.mark.asyncio
    async def test_locks_released_after_terminal_state(
        self, orchestrator, vercel_adapter, deployment_request
    ):
        created = await orchestrator.create_deployment(deployment_request, "user_1")
        vercel_adapter.status_results = [ProviderStatus(raw_status="READY")]

        await asyncio.gather(
            orchestrator.refresh_status(created.id),
            orchestrator.refresh_status(created.id),
        )

        assert (await orchestrator.get_deployment(created.id)).is_terminal
        assert orchestrator._locks == {}
        assert not orchestrator.is_locked(created.id)

    @pytest.mark.asyncio
    async def test_locks_released_after_failed_operation(self, orchestrator, store):
        deployment = await seed(store, DeploymentStatus.SUCCESS)

        with pytest.raises(InvalidStateError):
            await orchestrator.cancel_deployment(deployment.id)

        assert orchestrator._locks == {}

    @pytest.mark.asyncio
    async def test_lock_held_during_create(
        self, orchestrator, vercel_adapter, deployment_request
    ):
        held: list[int] = []

        async def observing_create(request):
            held.append(len(orchestrator._locks))
            return ProviderDeployment(external_id="dpl_slow")

        vercel_adapter.create = observing_create

        created = await orchestrator.create_deployment(deployment_request, "user_1")

        assert held == [1]
        assert created.external_id == "dpl_slow"
        assert orchestrator._locks == {}


class TestStalePending:
    """Tests for expiring pending records that never reached the provider."""

    @pytest.mark.asyncio
    async def test_old_pending_without_external_id_fails(self, orchestrator, store, settings):
        now = datetime(2026, 1, 1, 12, 0)
        stale = await seed(
            store,
            DeploymentStatus.PENDING,
            created_at=now - timedelta(seconds=settings.create_timeout_seconds + 1),
        )

        expired = await orchestrator.fail_stale_pending(now=now)

        assert [d.id for d in expired] == [stale.id]
        record = await store.get(stale.id)
        assert record.status == DeploymentStatus.FAILED
        assert record.error_code == "TIMEOUT"
        assert "vercel" in record.error

    @pytest.mark.asyncio
    async def test_recent_or_acknowledged_records_are_kept(self, orchestrator, store, settings):
        now = datetime(2026, 1, 1, 12, 0)
        old = now - timedelta(hours=1)
        recent = await seed(store, DeploymentStatus.PENDING, created_at=now)
        acknowledged = await seed(
            store, DeploymentStatus.PENDING, created_at=old, external_id="dpl_1"
        )
        building = await seed(store, DeploymentStatus.BUILDING, created_at=old)

        assert await orchestrator.fail_stale_pending(now=now) == []
        for record in (recent, acknowledged, building):
            assert (await store.get(record.id)).status == record.status

    @pytest.mark.asyncio
    async def test_in_flight_create_is_not_expired(
        self, orchestrator, vercel_adapter, deployment_request
    ):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_create(request):
            started.set()
            await release.wait()
            return ProviderDeployment(external_id="dpl_slow")

        vercel_adapter.create = slow_create
        task = asyncio.create_task(
            orchestrator.create_deployment(deployment_request, "user_1")
        )
        await started.wait()

        expired = await orchestrator.fail_stale_pending(
            now=datetime.utcnow() + timedelta(hours=1)
        )
        release.set()
        created = await task

        assert expired == []
        assert created.status == DeploymentStatus.BUILDING


class TestCancelDeployment:
    """Tests for cancel_deployment."""

    @pytest.mark.asyncio
    async def test_cancel_building(self, orchestrator, vercel_adapter, deployment_request):
        created = await orchestrator.create_deployment(deployment_request, "user_1")

        cancelled = await orchestrator.cancel_deployment(created.id)

        assert cancelled.status == DeploymentStatus.CANCELLED
        assert ("cancel", "dpl_123") in vercel_adapter.calls

    @pytest.mark.parametrize(
        "status",
        [DeploymentStatus.SUCCESS, DeploymentStatus.FAILED, DeploymentStatus.CANCELLED],
    )
    @pytest.mark.asyncio
    async def test_cancel_terminal_is_invalid(self, orchestrator, store, vercel_adapter, status):
        deployment = await seed(store, status, external_id="dpl_1")

        with pytest.raises(InvalidStateError):
            await orchestrator.cancel_deployment(deployment.id)

        assert await store.get(deployment.id) == deployment
        assert vercel_adapter.calls == []

    @pytest.mark.asyncio
    async def test_cancel_unsupported_leaves_record_pending(
        self, orchestrator, store, railway_adapter
    ):
        deployment = await seed(store, DeploymentStatus.PENDING, provider=Provider.RAILWAY)

        with pytest.raises(UnsupportedOperationError):
            await orchestrator.cancel_deployment(deployment.id)

        assert (await store.get(deployment.id)).status == DeploymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_cancel_provider_failure_leaves_record(
        self, orchestrator, vercel_adapter, deployment_request, store
    ):
        created = await orchestrator.create_deployment(deployment_request, "user_1")
        vercel_adapter.cancel_error = ProviderRejectedError("vercel", "already finished")

        with pytest.raises(DeploymentError):
            await orchestrator.cancel_deployment(created.id)

        assert await store.get(created.id) == created

    @pytest.mark.asyncio
    async def test_cancel_pending_without_external_id(self, orchestrator, store, vercel_adapter):
        deployment = await seed(store, DeploymentStatus.PENDING)

        cancelled = await orchestrator.cancel_deployment(deployment.id)

        assert cancelled.status == DeploymentStatus.CANCELLED
        assert vercel_adapter.calls == []


class TestRollback:
    """Tests for rollback."""

    @pytest.mark.asyncio
    async def test_rollback_creates_new_record(self, orchestrator, store):
        source = await seed(
            store,
            DeploymentStatus.SUCCESS,
            external_id="dpl_old",
            deployed_at=datetime(2026, 1, 1),
            source=SourceRef(repo_url="acme/site", branch="v1"),
        )

        rolled = await orchestrator.rollback(source.id, "user_1")

        assert rolled.id != source.id
        assert rolled.project_id == source.project_id
        assert rolled.provider == source.provider
        assert rolled.environment == source.environment
        assert rolled.source == source.source
        assert rolled.rollback_of == source.id
        assert rolled.status in {DeploymentStatus.BUILDING, DeploymentStatus.FAILED}
        assert await store.get(source.id) == source

    @pytest.mark.parametrize(
        "status",
        [DeploymentStatus.PENDING, DeploymentStatus.BUILDING, DeploymentStatus.FAILED],
    )
    @pytest.mark.asyncio
    async def test_rollback_requires_success(self, orchestrator, store, status):
        source = await seed(store, status)

        with pytest.raises(InvalidStateError):
            await orchestrator.rollback(source.id)

        assert (await store.find())[1] == 1


class TestBuildLogs:
    """Tests for update_build_logs."""

    @pytest.mark.asyncio
    async def test_appends(self, orchestrator, store):
        deployment = await seed(store, DeploymentStatus.BUILDING)

        await orchestrator.update_build_logs(deployment.id, "step 1")
        updated = await orchestrator.update_build_logs(deployment.id, "step 2")

        assert updated.build_logs == "step 1\nstep 2"
        assert updated.status == DeploymentStatus.BUILDING


class TestQueries:
    """Tests for listing, stats and cleanup."""

    @pytest.mark.asyncio
    async def test_latest_successful(self, orchestrator, store):
        base = datetime(2026, 1, 1)
        await seed(store, DeploymentStatus.SUCCESS, created_at=base)
        newer = await seed(store, DeploymentStatus.SUCCESS, created_at=base + timedelta(hours=1))
        await seed(store, DeploymentStatus.FAILED, created_at=base + timedelta(hours=2))

        latest = await orchestrator.get_latest_successful("proj_1")

        assert latest.id == newer.id
        assert await orchestrator.get_latest_successful("proj_other") is None

    @pytest.mark.asyncio
    async def test_latest_successful_is_scoped_to_user(self, orchestrator, store):
        base = datetime(2026, 1, 1)
        own = await seed(store, DeploymentStatus.SUCCESS, created_at=base)
        await seed(
            store, DeploymentStatus.SUCCESS, user_id="user_2", created_at=base + timedelta(hours=1)
        )

        latest = await orchestrator.get_latest_successful("proj_1", user_id="user_1")

        assert latest.id == own.id
        assert await orchestrator.get_latest_successful("proj_1", user_id="user_3") is None

    @pytest.mark.asyncio
    async def test_stats(self, orchestrator, store):
        await seed(store, DeploymentStatus.SUCCESS)
        await seed(store, DeploymentStatus.SUCCESS, provider=Provider.NETLIFY)
        await seed(store, DeploymentStatus.FAILED, environment="preview")
        await seed(store, DeploymentStatus.BUILDING)
        await seed(store, DeploymentStatus.SUCCESS, user_id="user_2")

        stats = await orchestrator.get_stats("user_1")

        assert stats.total_deployments == 4
        assert stats.by_status == {"success": 2, "failed": 1, "building": 1}
        assert stats.by_provider == {"vercel": 3, "netlify": 1}
        assert stats.by_environment == {"production": 3, "preview": 1}
        assert stats.success_rate == 50.0

    @pytest.mark.asyncio
    async def test_stats_without_deployments(self, orchestrator):
        stats = await orchestrator.get_stats("nobody")

        assert stats.total_deployments == 0
        assert stats.success_rate == 0.0

    @pytest.mark.asyncio
    async def test_cleanup_respects_policy(self, orchestrator, store):
        old = datetime(2025, 1, 1)
        failed = await seed(store, DeploymentStatus.FAILED, created_at=old)
        success = await seed(store, DeploymentStatus.SUCCESS, created_at=old)
        building = await seed(store, DeploymentStatus.BUILDING, created_at=old)
        recent = await seed(store, DeploymentStatus.FAILED, created_at=datetime(2026, 6, 1))

        result = await orchestrator.cleanup_deployments("proj_1", before=datetime(2026, 1, 1))

        assert result.deleted_ids == [failed.id]
        assert await store.get(success.id) is not None
        assert await store.get(building.id) is not None
        assert await store.get(recent.id) is not None

    @pytest.mark.asyncio
    async def test_cleanup_can_delete_successful(self, orchestrator, store):
        old = datetime(2025, 1, 1)
        success = await seed(store, DeploymentStatus.SUCCESS, created_at=old)

        result = await orchestrator.cleanup_deployments(
            "proj_1", before=datetime(2026, 1, 1), keep_successful=False
        )

        assert result.deleted_count == 1
        assert await store.get(success.id) is None

    @pytest.mark.asyncio
    async def test_cleanup_is_scoped_to_user(self, orchestrator, store):
        old = datetime(2025, 1, 1)
        own = await seed(store, DeploymentStatus.FAILED, created_at=old)
        other = await seed(store, DeploymentStatus.FAILED, user_id="user_2", created_at=old)

        result = await orchestrator.cleanup_deployments(
            "proj_1", before=datetime(2026, 1, 1), user_id="user_1"
        )

        assert result.deleted_ids == [own.id]
        assert await store.get(other.id) is not None
        assert orchestrator._locks == {}


class TestOrchestratorSettings:
    """Tests for configuration-driven behaviour."""

    @pytest.mark.asyncio
    async def test_single_poll_failure_limit(self, store, registry, vercel_adapter):
        settings = Settings(vercel_token="t", max_poll_failures=1, poll_enabled=False)
        orchestrator = DeploymentOrchestrator(store, registry, settings=settings)
        deployment = await seed(store, DeploymentStatus.BUILDING, external_id="dpl_1")
        vercel_adapter.status_results = [TransportError("vercel", "reset")]

        refreshed = await orchestrator.refresh_status(deployment.id)

        assert refreshed.status == DeploymentStatus.FAILED
        assert refreshed.error_code == "TIMEOUT"
