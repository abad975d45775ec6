"""Railway adapter: deployments driven through the GraphQL API."""

from typing import Any

from autocrea.core.exceptions import ProviderRejectedError, TransportError
from autocrea.models.deployment import (
    DeploymentRequest,
    Provider,
    ProviderDeployment,
    ProviderStatus,
)
from autocrea.providers.base import BaseProviderAdapter

DEPLOY_MUTATION = """
mutation deployProject($input: DeployInput!) {
  deploy(input: $input) {
    id
    url
    status
  }
}
"""

DEPLOYMENT_QUERY = """
query deployment($id: String!) {
  deployment(id: $id) {
    id
    status
    url
  }
}
"""


class RailwayAdapter(BaseProviderAdapter):
    """Railway exposes no cancellation endpoint to this integration."""

    provider = Provider.RAILWAY
    credential_setting = "railway_token"
    supports_cancel = False

    @property
    def base_url(self) -> str:
        return self.settings.railway_api_url

    def _error_message(self, payload: Any) -> str | None:
        if isinstance(payload, dict):
            errors = payload.get("errors")
            if isinstance(errors, list) and errors:
                first = errors[0]
                if isinstance(first, dict) and first.get("message"):
                    return str(first["message"])
        return super()._error_message(payload)

    def build_variables(self, request: DeploymentRequest) -> dict[str, Any]:
        """Translate a deployment request into the ``DeployInput`` variables."""
        deploy_input: dict[str, Any] = {
            "projectName": request.name,
            "environment": request.environment.value,
        }
        if request.source:
            deploy_input["repo"] = request.source.repo_url
            deploy_input["branch"] = request.source.branch
        if request.build_command:
            deploy_input["buildCommand"] = request.build_command
        if request.env_vars:
            deploy_input["envVars"] = request.env_dict()
        if request.domain:
            deploy_input["domain"] = request.domain
        return {"input": deploy_input}

    async def _graphql(
        self, query: str, variables: dict[str, Any], *, timeout: float
    ) -> dict[str, Any]:
        """Run a GraphQL operation; errors in a 200 response are rejections."""
        payload = await self._request(
            "POST",
            self.base_url,
            json={"query": query, "variables": variables},
            timeout=timeout,
        )
        if payload.get("errors"):
            raise ProviderRejectedError(
                self.provider.value,
                self._error_message(payload) or "Railway returned GraphQL errors",
            )

        data = payload.get("data")
        if not isinstance(data, dict):
            raise TransportError(self.provider.value, "Railway response did not include data")
        return data

    async def create(self, request: DeploymentRequest) -> ProviderDeployment:
        data = await self._graphql(
            DEPLOY_MUTATION,
            self.build_variables(request),
            timeout=self.settings.create_timeout_seconds,
        )
        with self._parsing("deployment"):
            deployment = data.get("deploy") or {}
            external_id = deployment.get("id")
            if not external_id:
                raise TransportError(
                    self.provider.value, "Railway response did not include a deployment id"
                )
            result = ProviderDeployment(
                external_id=str(external_id),
                url=self.absolute_url(deployment.get("url")),
            )

        self.logger.info("railway.deployment_created", external_id=result.external_id)
        return result

    async def get_status(self, external_id: str) -> ProviderStatus:
        data = await self._graphql(
            DEPLOYMENT_QUERY,
            {"id": external_id},
            timeout=self.settings.status_timeout_seconds,
        )
        with self._parsing("deployment status"):
            deployment = data.get("deployment") or {}
            return ProviderStatus(
                raw_status=self._string(deployment.get("status")),
                url=self.absolute_url(deployment.get("url")),
            )
