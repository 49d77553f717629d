"""Periodic status reconciliation.

Polls ``GET /automations/status`` and writes the reported durable fields
into the current graph. Transient execution state and positions are never
touched, and codes missing from the graph are ignored.
"""

import asyncio
import logging

from autoflow.client.automations import AutomationsClient
from autoflow.client.errors import AutomationClientError
from autoflow.services.execution import GraphProvider

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 30.0


class StatusReconciler:
    """One polling task per mounted graph."""

    def __init__(
        self,
        client: AutomationsClient,
        graph_provider: GraphProvider,
        interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._client = client
        self._graph_provider = graph_provider
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> int:
        """Run one reconciliation pass; returns the number of nodes updated.

        Failures are logged and reported as zero updates.
        """
        try:
            updates = await self._client.fetch_statuses()
        except AutomationClientError as e:
            logger.warning(f"Status reconciliation skipped: {e.message}")
            return 0

        graph = self._graph_provider()
        if graph is None:
            return 0

        applied = 0
        for update in updates:
            if graph.apply_status_update(update):
                applied += 1
        logger.debug(f"Reconciled {applied} of {len(updates)} reported statuses")
        return applied

    async def _poll_loop(self) -> None:
        """Tick immediately, then once per interval, until cancelled."""
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.exception(f"Error in status reconciliation loop: {e}")
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        """Start polling; a no-op while a task is already active."""
        if self.running:
            return
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"Started status reconciliation every {self.interval:g}s")

    async def stop(self) -> None:
        """Cancel the polling task and wait for it to finish."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Stopped status reconciliation")
