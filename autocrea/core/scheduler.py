"""Background status polling.

Deployments progress on the provider side whether or not anyone is watching,
so a single process-wide task periodically refreshes every non-terminal
deployment through the orchestrator.
"""

import asyncio
import time

from autocrea.core.exceptions import AutocreaError
from autocrea.core.orchestrator import DeploymentOrchestrator
from autocrea.utils.logging import get_logger


class PollingScheduler:
    """Periodically refreshes in-flight deployments with bounded fan-out."""

    def __init__(
        self,
        orchestrator: DeploymentOrchestrator,
        interval_seconds: float = 15.0,
        max_concurrency: int = 4,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self.max_concurrency = max_concurrency
        self.logger = get_logger("scheduler")

        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._shutdown = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the polling loop on the running event loop."""
        if self.is_running:
            return

        self._shutdown.clear()
        self._task = asyncio.create_task(self._run(), name="deployment-poller")
        self.logger.info(
            "scheduler.started",
            interval_seconds=self.interval_seconds,
            max_concurrency=self.max_concurrency,
        )

    async def stop(self) -> None:
        """Stop scheduling cycles and wait for in-flight refreshes to finish."""
        self._shutdown.set()
        if self._task is not None:
            await self._task
            self._task = None
        self.logger.info("scheduler.stopped")

    async def _run(self) -> None:
        while not self._shutdown.is_set():
            try:
                await self.run_once()
            except Exception:
                self.logger.exception("scheduler.cycle_crashed")

            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> int:
        """Refresh every active deployment once. Returns how many were attempted."""
        start_time = time.perf_counter()
        expired = await self.orchestrator.fail_stale_pending()
        active = await self.orchestrator.store.list_active()
        targets = [d.id for d in active if d.external_id]

        if targets:
            await asyncio.gather(*(self._refresh(deployment_id) for deployment_id in targets))

        self.logger.debug(
            "scheduler.cycle_completed",
            active=len(active),
            expired=len(expired),
            refreshed=len(targets),
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return len(targets)

    async def _refresh(self, deployment_id: str) -> None:
        async with self._semaphore:
            # Refreshes that have not started yet are dropped on shutdown
            if self._shutdown.is_set():
                return
            try:
                await self.orchestrator.refresh_status(deployment_id)
            except AutocreaError as e:
                self.logger.warning(
                    "scheduler.refresh_failed",
                    deployment_id=deployment_id,
                    error=e.message,
                )
            except Exception:
                self.logger.exception("scheduler.refresh_crashed", deployment_id=deployment_id)
