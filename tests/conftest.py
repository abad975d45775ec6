"""Pytest configuration and fixtures."""

from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from autocrea.config import Settings
from autocrea.core.events import EventBus
from autocrea.core.exceptions import UnsupportedOperationError
from autocrea.core.orchestrator import DeploymentOrchestrator
from autocrea.core.store import InMemoryDeploymentStore
from autocrea.main import create_app
from autocrea.models.deployment import (
    DeploymentRequest,
    Provider,
    ProviderDeployment,
    ProviderStatus,
)
from autocrea.providers.base import BaseProviderAdapter
from autocrea.providers.registry import ProviderRegistry


class FakeAdapter(BaseProviderAdapter):
    """In-process adapter with scripted provider responses."""

    credential_setting = "vercel_token"

    def __init__(
        self,
        provider: Provider = Provider.VERCEL,
        supports_cancel: bool = True,
        settings: Settings | None = None,
    ):
        self.provider = provider
        self.supports_cancel = supports_cancel
        super().__init__(settings=settings)

        self.create_result: ProviderDeployment | Exception = ProviderDeployment(
            external_id="dpl_123", url="https://x.example"
        )
        self.status_results: list[ProviderStatus | Exception] = []
        self.cancel_error: Exception | None = None
        self.calls: list[tuple[str, Any]] = []

    @property
    def base_url(self) -> str:
        return "https://provider.invalid"

    async def create(self, request: DeploymentRequest) -> ProviderDeployment:
        self.calls.append(("create", request))
        if isinstance(self.create_result, Exception):
            raise self.create_result
        return self.create_result

    async def get_status(self, external_id: str) -> ProviderStatus:
        self.calls.append(("get_status", external_id))
        result = (
            self.status_results.pop(0)
            if self.status_results
            else ProviderStatus(raw_status="BUILDING")
        )
        if isinstance(result, Exception):
            raise result
        return result

    async def cancel(self, external_id: str) -> None:
        self.calls.append(("cancel", external_id))
        if not self.supports_cancel:
            raise UnsupportedOperationError(self.provider.value, "cancel")
        if self.cancel_error:
            raise self.cancel_error

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def settings() -> Settings:
    """Settings with credentials for every provider and polling disabled."""
    return Settings(
        vercel_token="vercel-test-token",
        netlify_token="netlify-test-token",
        railway_token="railway-test-token",
        vercel_team_id=None,
        poll_enabled=False,
        max_poll_failures=3,
        store_backend="memory",
        api_tokens={},
        deploy_rate_limit=100,
    )


@pytest.fixture
def vercel_adapter(settings: Settings) -> FakeAdapter:
    return FakeAdapter(Provider.VERCEL, settings=settings)


@pytest.fixture
def netlify_adapter(settings: Settings) -> FakeAdapter:
    adapter = FakeAdapter(Provider.NETLIFY, settings=settings)
    adapter.create_result = ProviderDeployment(external_id="nfy_456", url="https://site.example")
    return adapter


@pytest.fixture
def railway_adapter(settings: Settings) -> FakeAdapter:
    adapter = FakeAdapter(Provider.RAILWAY, supports_cancel=False, settings=settings)
    adapter.create_result = ProviderDeployment(external_id="rw_789", url=None)
    return adapter


@pytest.fixture
def registry(
    vercel_adapter: FakeAdapter,
    netlify_adapter: FakeAdapter,
    railway_adapter: FakeAdapter,
) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register(vercel_adapter)
    registry.register(netlify_adapter)
    registry.register(railway_adapter)
    return registry


@pytest.fixture
def store() -> InMemoryDeploymentStore:
    """Create a fresh deployment store for tests."""
    return InMemoryDeploymentStore()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def orchestrator(
    store: InMemoryDeploymentStore,
    registry: ProviderRegistry,
    events: EventBus,
    settings: Settings,
) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(
        store=store, registry=registry, events=events, settings=settings
    )


@pytest.fixture
def deployment_request() -> DeploymentRequest:
    """A production deployment request for the first provider."""
    return DeploymentRequest(
        provider=Provider.VERCEL,
        project_id="proj_1",
        environment="production",
    )


@pytest.fixture
def app(settings: Settings, registry: ProviderRegistry, store: InMemoryDeploymentStore):
    return create_app(settings=settings, registry=registry, store=store)


@pytest.fixture
async def client(app) -> AsyncClient:
    """Create an async test client bound to a fresh application."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-User-Id": "user_1"},
    ) as ac:
        yield ac
