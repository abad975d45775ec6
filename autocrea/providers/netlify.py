"""Netlify adapter: two-step site creation then deploy trigger."""

from typing import Any

from autocrea.core.exceptions import (
    AdapterError,
    PartialDeploymentError,
    ProviderRejectedError,
    TransportError,
)
from autocrea.models.deployment import (
    DeploymentRequest,
    Provider,
    ProviderDeployment,
    ProviderStatus,
)
from autocrea.providers.base import BaseProviderAdapter


class NetlifyAdapter(BaseProviderAdapter):
    """Creates a site from a Git repository and triggers its first deploy."""

    provider = Provider.NETLIFY
    credential_setting = "netlify_token"

    @property
    def base_url(self) -> str:
        return self.settings.netlify_api_url

    def build_site_payload(self, request: DeploymentRequest) -> dict[str, Any]:
        """Translate a deployment request into Netlify's site payload."""
        if request.source is None:
            raise ProviderRejectedError(
                self.provider.value, "Git URL is required for Netlify deployment"
            )

        build_settings: dict[str, Any] = {}
        if request.build_command:
            build_settings["cmd"] = request.build_command
        if request.output_directory:
            build_settings["dir"] = request.output_directory
        if request.env_vars:
            build_settings["env"] = request.env_dict()

        payload: dict[str, Any] = {
            "name": request.name,
            "repo": {
                "provider": "github",
                "repo": request.source.repo_url,
                "branch": request.source.branch,
            },
        }
        if build_settings:
            payload["build_settings"] = build_settings
        if request.domain:
            payload["custom_domain"] = request.domain
        return payload

    async def create(self, request: DeploymentRequest) -> ProviderDeployment:
        self.credential()
        site_payload = self.build_site_payload(request)

        site = await self._request(
            "POST",
            "/sites",
            json=site_payload,
            timeout=self.settings.create_timeout_seconds,
        )
        site_id = site.get("id")
        if not site_id:
            raise TransportError(self.provider.value, "Netlify response did not include a site id")

        self.logger.info("netlify.site_created", site_id=site_id)

        try:
            deploy = await self._request(
                "POST",
                f"/sites/{site_id}/deploys",
                json={},
                timeout=self.settings.create_timeout_seconds,
            )
            deploy_id = deploy.get("id")
            if not deploy_id:
                raise TransportError(
                    self.provider.value, "Netlify response did not include a deploy id"
                )
        except AdapterError as e:
            self.logger.warning(
                "netlify.deploy_trigger_failed", site_id=site_id, error=e.message
            )
            raise PartialDeploymentError(
                self.provider.value,
                f"Site {site_id} was created but the deploy could not be triggered: {e.message}",
                partial_id=str(site_id),
            ) from e

        self.logger.info("netlify.deploy_triggered", site_id=site_id, deploy_id=deploy_id)
        with self._parsing("site"):
            return ProviderDeployment(
                external_id=str(deploy_id),
                url=self.absolute_url(site.get("ssl_url") or site.get("url")),
            )

    async def get_status(self, external_id: str) -> ProviderStatus:
        data = await self._request(
            "GET",
            f"/deploys/{external_id}",
            timeout=self.settings.status_timeout_seconds,
        )
        with self._parsing("deploy status"):
            return ProviderStatus(
                raw_status=self._string(data.get("state")),
                url=self.absolute_url(data.get("deploy_ssl_url") or data.get("ssl_url")),
                logs=self._summary_logs(data),
            )

    async def cancel(self, external_id: str) -> None:
        await self._request(
            "POST",
            f"/deploys/{external_id}/cancel",
            json={},
            timeout=self.settings.cancel_timeout_seconds,
        )
        self.logger.info("netlify.deploy_cancelled", external_id=external_id)

    @staticmethod
    def _summary_logs(data: dict[str, Any]) -> str | None:
        lines: list[str] = []
        for message in (data.get("summary") or {}).get("messages") or []:
            if isinstance(message, dict):
                text = " ".join(
                    str(part) for part in (message.get("title"), message.get("description")) if part
                )
            else:
                text = str(message)
            if text:
                lines.append(text)

        if data.get("error_message"):
            lines.append(str(data["error_message"]))

        return "\n".join(lines) or None
