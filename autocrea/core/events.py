"""Event system for deployment status streaming (SSE)."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from autocrea.models.deployment import Deployment, DeploymentStatus


@dataclass
class Event:
    """An SSE event."""

    event_type: str
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        """Whether no further events will follow for this deployment."""
        status = self.data.get("status")
        return self.event_type == "status_changed" and status in {
            s.value for s in DeploymentStatus if s.is_terminal
        }


class EventBus:
    """Fan-out of deployment events to any number of subscribers."""

    def __init__(self):
        self._subscribers: dict[str, list[asyncio.Queue[Event]]] = {}

    def subscribe(self, deployment_id: str) -> asyncio.Queue[Event]:
        """Subscribe to events for a deployment."""
        queue: asyncio.Queue[Event] = asyncio.Queue()
        self._subscribers.setdefault(deployment_id, []).append(queue)
        return queue

    def unsubscribe(self, deployment_id: str, queue: asyncio.Queue[Event]) -> None:
        """Remove one subscription."""
        queues = self._subscribers.get(deployment_id)
        if not queues:
            return
        if queue in queues:
            queues.remove(queue)
        if not queues:
            del self._subscribers[deployment_id]

    def subscriber_count(self, deployment_id: str) -> int:
        return len(self._subscribers.get(deployment_id, []))

    async def publish(self, deployment_id: str, event: Event) -> None:
        """Publish an event for a deployment."""
        for queue in list(self._subscribers.get(deployment_id, [])):
            await queue.put(event)

    async def publish_status_changed(
        self, deployment: Deployment, previous: DeploymentStatus | None
    ) -> None:
        """Publish a status transition."""
        await self.publish(
            deployment.id,
            Event(
                event_type="status_changed",
                data={
                    "deployment_id": deployment.id,
                    "status": deployment.status.value,
                    "previous_status": previous.value if previous else None,
                    "url": deployment.url,
                    "error": deployment.error,
                },
            ),
        )

    async def publish_logs_updated(self, deployment: Deployment) -> None:
        """Publish a build log update."""
        await self.publish(
            deployment.id,
            Event(
                event_type="logs_updated",
                data={"deployment_id": deployment.id, "length": len(deployment.build_logs or "")},
            ),
        )
