"""Vercel adapter: Git-triggered builds over the REST API."""

from typing import Any

from autocrea.core.exceptions import TransportError
from autocrea.models.deployment import (
    DeploymentRequest,
    Environment,
    Provider,
    ProviderDeployment,
    ProviderStatus,
)
from autocrea.providers.base import BaseProviderAdapter


class VercelAdapter(BaseProviderAdapter):
    """Deploys through ``/v13/deployments``."""

    provider = Provider.VERCEL
    credential_setting = "vercel_token"

    @property
    def base_url(self) -> str:
        return self.settings.vercel_api_url

    def _team_params(self) -> dict[str, Any] | None:
        if self.settings.vercel_team_id:
            return {"teamId": self.settings.vercel_team_id}
        return None

    def _error_message(self, payload: Any) -> str | None:
        # {"error": {"code": "...", "message": "..."}}
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            message = payload["error"].get("message")
            if message:
                return str(message)
        return super()._error_message(payload)

    def build_payload(self, request: DeploymentRequest) -> dict[str, Any]:
        """Translate a deployment request into Vercel's create payload."""
        payload: dict[str, Any] = {"name": request.name}

        if request.environment == Environment.PRODUCTION:
            payload["target"] = "production"

        if request.source:
            payload["gitSource"] = {
                "type": "github",
                "repo": request.source.repo_url,
                "ref": request.source.branch,
            }
        if request.build_command:
            payload["buildCommand"] = request.build_command
        if request.output_directory:
            payload["outputDirectory"] = request.output_directory
        if request.env_vars:
            payload["env"] = request.env_dict()
        if request.domain:
            payload["alias"] = [request.domain]

        return payload

    async def create(self, request: DeploymentRequest) -> ProviderDeployment:
        data = await self._request(
            "POST",
            "/v13/deployments",
            json=self.build_payload(request),
            params=self._team_params(),
            timeout=self.settings.create_timeout_seconds,
        )
        if not data.get("id"):
            raise TransportError(self.provider.value, "Vercel response did not include a deployment id")

        self.logger.info("vercel.deployment_created", external_id=data["id"])
        with self._parsing("deployment"):
            return ProviderDeployment(
                external_id=str(data["id"]),
                url=self.absolute_url(data.get("url")),
            )

    async def get_status(self, external_id: str) -> ProviderStatus:
        data = await self._request(
            "GET",
            f"/v13/deployments/{external_id}",
            params=self._team_params(),
            timeout=self.settings.status_timeout_seconds,
        )
        with self._parsing("deployment status"):
            return ProviderStatus(
                raw_status=self._string(data.get("readyState") or data.get("status")),
                url=self.absolute_url(data.get("url")),
            )

    async def cancel(self, external_id: str) -> None:
        await self._request(
            "PATCH",
            f"/v13/deployments/{external_id}/cancel",
            json={},
            params=self._team_params(),
            timeout=self.settings.cancel_timeout_seconds,
        )
        self.logger.info("vercel.deployment_cancelled", external_id=external_id)
