"""Base provider adapter.

Every hosting provider is driven through the same three operations:
``create``, ``get_status`` and ``cancel``. Concrete adapters translate the
canonical deployment model to their provider's wire format; this class owns
the shared HTTP plumbing, credential lookup and error conversion so that no
raw ``httpx`` exception ever leaves an adapter.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import httpx

from autocrea.config import Settings, get_settings
from autocrea.core.exceptions import (
    AdapterTimeoutError,
    MissingCredentialError,
    ProviderRejectedError,
    TransportError,
    UnsupportedOperationError,
)
from autocrea.models.deployment import (
    DeploymentRequest,
    Provider,
    ProviderDeployment,
    ProviderStatus,
)
from autocrea.utils.logging import get_logger


class BaseProviderAdapter(ABC):
    """Base class for hosting provider adapters.

    Subclasses must define:
    - provider: The provider this adapter speaks to
    - credential_setting: Name of the Settings field holding the bearer token
    - base_url: Root URL of the provider API
    - create(), get_status() and, when supported, cancel()
    """

    provider: Provider
    credential_setting: str
    supports_cancel: bool = True

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.logger = get_logger(f"provider.{self.provider.value}")

    @property
    @abstractmethod
    def base_url(self) -> str:
        """Root URL of the provider API."""

    @abstractmethod
    async def create(self, request: DeploymentRequest) -> ProviderDeployment:
        """Start a deployment on the provider."""

    @abstractmethod
    async def get_status(self, external_id: str) -> ProviderStatus:
        """Fetch the provider's current view of a deployment."""

    async def cancel(self, external_id: str) -> None:
        """Cancel a running deployment on the provider."""
        raise UnsupportedOperationError(self.provider.value, "cancel")

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def credential(self) -> str:
        """Resolve the bearer token, failing before any network call."""
        token = getattr(self.settings, self.credential_setting, "") or ""
        if not token.strip():
            raise MissingCredentialError(self.provider.value, self.credential_setting)
        return token

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                transport=self._transport,
            )
        return self._client

    def _error_message(self, payload: Any) -> str | None:
        """Extract a human-readable message from a provider error payload."""
        if isinstance(payload, dict):
            message = payload.get("message") or payload.get("error")
            if isinstance(message, str):
                return message
        return None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        timeout: float,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send an authenticated JSON request and return the decoded object."""
        token = self.credential()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

        try:
            response = await self._get_client().request(
                method,
                path,
                json=json,
                params=params,
                headers=headers,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            self.logger.warning(
                "provider.request_timeout", method=method, path=path, timeout=timeout
            )
            raise AdapterTimeoutError(
                self.provider.value,
                f"{self.provider.value} did not respond within {timeout:g}s",
                method=method,
                path=path,
            ) from e
        except httpx.HTTPError as e:
            self.logger.warning(
                "provider.request_failed", method=method, path=path, error=str(e)
            )
            raise TransportError(
                self.provider.value, str(e) or type(e).__name__, method=method, path=path
            ) from e

        payload = self._decode(response)

        if response.is_error:
            message = self._error_message(payload)
            self.logger.warning(
                "provider.request_rejected",
                method=method,
                path=path,
                status_code=response.status_code,
                message=message,
            )
            if message:
                raise ProviderRejectedError(
                    self.provider.value, message, status_code=response.status_code
                )
            raise TransportError(
                self.provider.value,
                f"HTTP {response.status_code} {response.reason_phrase}".strip(),
                status_code=response.status_code,
            )

        if payload is None and response.content:
            raise TransportError(
                self.provider.value,
                f"Invalid JSON in response to {method} {path}",
                status_code=response.status_code,
            )

        if not isinstance(payload, dict):
            raise TransportError(
                self.provider.value,
                f"Expected a JSON object in response to {method} {path}, "
                f"got {type(payload).__name__}",
                status_code=response.status_code,
            )

        return payload

    @contextmanager
    def _parsing(self, what: str) -> Iterator[None]:
        """Report a malformed success body as a transport failure."""
        try:
            yield
        except (AttributeError, TypeError, ValueError) as e:
            self.logger.warning("provider.malformed_response", what=what, error=str(e))
            raise TransportError(
                self.provider.value,
                f"Malformed {what} from {self.provider.value}: {e}",
            ) from e

    @staticmethod
    def _string(value: Any) -> str | None:
        """Read an optional string field, rejecting any other JSON type."""
        if value is None or value == "":
            return None
        if not isinstance(value, str):
            raise TypeError(f"expected a string, got {type(value).__name__}")
        return value

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def absolute_url(url: Any) -> str | None:
        """Providers often report bare hostnames; add the https scheme."""
        if not url:
            return None
        url = str(url)
        if url.startswith(("http://", "https://")):
            return url
        return f"https://{url}"
