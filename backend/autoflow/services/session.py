"""Graph session lifecycle.

A ``GraphSession`` is everything that lives while a graph is displayed:
the loaded ``GraphState``, manual layout overrides, the execution
coordinator with its revert timers, the status polling task and the
per-node run histories gathered during the session. ``mount`` and
``unmount`` create and tear all of it down together.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from autoflow.client.automations import AutomationsClient
from autoflow.client.errors import AutomationClientError, NotFoundError
from autoflow.config import CoordinatorSettings
from autoflow.config import settings as default_settings
from autoflow.models import (
    AutomationNode,
    AutomationRunResult,
    AutomationScheduleSettings,
    ExecutionOutcome,
    GraphView,
    NodeDetails,
    NodePosition,
    NodeView,
    OverviewItem,
)
from autoflow.services.execution import ExecutionCoordinator, UnknownAutomationError
from autoflow.services.graph_state import GraphState, load_graph
from autoflow.services.history import (
    COMPACT_HISTORY_LIMIT,
    NormalizedRunHistory,
    merge_run,
    merge_runs,
    normalize_run_history,
    sort_runs,
)
from autoflow.services.layout import LayoutState, build_edges
from autoflow.services.reconciler import StatusReconciler
from autoflow.services.schedule import (
    DAY_KEYS,
    ENABLED_KEYS,
    FREQUENCY_KEYS,
    TIME_KEYS,
    default_schedule,
    disable_payload,
    normalize_schedule,
    to_wire_payload,
)

logger = logging.getLogger(__name__)

_SCHEDULE_KEYS = ENABLED_KEYS + FREQUENCY_KEYS + TIME_KEYS + DAY_KEYS


class GraphSession:
    """One mounted automation graph."""

    def __init__(
        self,
        client: AutomationsClient,
        settings: CoordinatorSettings | None = None,
    ) -> None:
        self._client = client
        self.settings = settings or default_settings
        self.graph: GraphState | None = None
        self.layout = LayoutState()
        self.last_error: str | None = None
        self.mounted = False

        self.coordinator = self._new_coordinator()
        self.reconciler = StatusReconciler(
            client, self._current_graph, interval=self.settings.poll_interval
        )
        self._histories: dict[str, list[AutomationRunResult]] = {}
        self._background: set[asyncio.Task] = set()

    def _current_graph(self) -> GraphState | None:
        return self.graph

    def _new_coordinator(self) -> ExecutionCoordinator:
        return ExecutionCoordinator(
            self._current_graph, self._client, revert_delay=self.settings.revert_delay
        )

    # Lifecycle

    async def mount(self) -> None:
        """Load the graph and start polling. Idempotent."""
        if self.mounted:
            return
        self.mounted = True
        await self.reload()
        self.reconciler.start()
        logger.info("Graph session mounted")

    async def unmount(self) -> None:
        """Stop polling, cancel revert timers and finish background writes."""
        if not self.mounted:
            return
        self.mounted = False
        await self.reconciler.stop()
        self.coordinator.shutdown()
        await self.flush()
        self.coordinator = self._new_coordinator()
        logger.info("Graph session unmounted")

    async def reload(self) -> bool:
        """Replace the graph with a fresh backend snapshot.

        On failure the previous graph stays and ``last_error`` is set.
        """
        try:
            nodes = await self._client.list_nodes()
        except AutomationClientError as e:
            self.last_error = f"Unable to load automations: {e.message}"
            logger.warning(self.last_error)
            return False

        self.graph = load_graph(nodes)
        self.layout.sync(nodes)
        self.coordinator.reset_states(self.graph.codes())
        self._histories = {
            code: runs for code, runs in self._histories.items() if code in self.graph
        }
        self.last_error = None
        return True

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def flush(self) -> None:
        """Wait for outstanding fire-and-forget writes."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _require_node(self, code: str) -> AutomationNode:
        node = self.graph.get(code) if self.graph is not None else None
        if node is None:
            raise UnknownAutomationError(code)
        return node

    # Layout

    async def _persist_position(self, code: str, position: NodePosition) -> None:
        try:
            await self._client.save_position(code, position)
        except AutomationClientError as e:
            logger.warning(f"Could not persist position of {code}: {e.message}")

    def move_node(self, code: str, position: NodePosition) -> NodePosition:
        """Record a manual position and persist it in the background."""
        self._require_node(code)
        self.layout.move(code, position)
        self._spawn(self._persist_position(code, position))
        return position

    def reset_layout(self) -> GraphView:
        self.layout.reset()
        return self.view()

    def auto_arrange(self) -> GraphView:
        """Recompute every position, replacing all manual overrides."""
        if self.graph is None:
            return self.view()
        positions = self.layout.auto_arrange(self.graph.ordered())
        for code, position in positions.items():
            self._spawn(self._persist_position(code, position))
        logger.info(f"Auto-arranged {len(positions)} automations")
        return self.view()

    # Execution

    async def execute(self, code: str, payload: Any = None) -> ExecutionOutcome:
        outcome = await self.coordinator.execute(code, payload)
        if not self.mounted:
            return outcome
        if outcome.result is not None and self.graph is not None and code in self.graph:
            self._histories[code] = merge_run(
                self._histories.get(code, []),
                outcome.result,
                limit=self.settings.history_limit,
            )
        return outcome

    def session_history(self, code: str) -> list[AutomationRunResult]:
        return list(self._histories.get(code, []))

    # Details and schedules

    async def _load_history(self, code: str) -> tuple[NormalizedRunHistory, str | None]:
        try:
            payload = await self._client.fetch_run_history(code)
        except NotFoundError:
            return NormalizedRunHistory(), None
        except AutomationClientError as e:
            logger.warning(f"Could not load run history of {code}: {e.message}")
            return NormalizedRunHistory(), e.message
        return normalize_run_history(payload), None

    async def _load_schedule(self, code: str) -> tuple[AutomationScheduleSettings, str | None]:
        try:
            payload = await self._client.get_schedule(code)
        except NotFoundError:
            return default_schedule(self.settings.timezone), None
        except AutomationClientError as e:
            logger.warning(f"Could not load schedule of {code}: {e.message}")
            return default_schedule(self.settings.timezone), e.message
        return normalize_schedule(payload, self.settings.timezone), None

    async def node_details(self, code: str, compact: bool = False) -> NodeDetails:
        """Detail panel: node, execution state, run history and schedule."""
        node = self._require_node(code)
        limit = COMPACT_HISTORY_LIMIT if compact else self.settings.history_limit

        (history, history_error), (schedule, schedule_error) = await asyncio.gather(
            self._load_history(code), self._load_schedule(code)
        )

        runs = merge_runs(history.runs, self._histories.get(code, []), limit=limit)
        candidates = [run for run in (history.last_run, runs[0] if runs else None) if run]
        last_run = sort_runs(candidates)[0] if candidates else None

        return NodeDetails(
            node=node,
            execution=self.coordinator.state(code),
            last_run=last_run,
            runs=runs,
            schedule=schedule,
            history_error=history_error,
            schedule_error=schedule_error,
        )

    async def save_schedule(self, code: str, payload: Any) -> AutomationScheduleSettings:
        """Normalize, send and return the schedule that was saved."""
        self._require_node(code)
        schedule = normalize_schedule(payload, self.settings.timezone)
        await self._client.put_schedule(code, to_wire_payload(schedule))
        logger.info(
            f"Saved schedule of {code}: {schedule.frequency.value} at {schedule.time_of_day}"
        )
        return schedule

    async def disable_schedule(self, code: str) -> AutomationScheduleSettings:
        self._require_node(code)
        echo = await self._client.put_schedule(code, disable_payload())
        if isinstance(echo, dict) and any(key in echo for key in _SCHEDULE_KEYS):
            schedule = normalize_schedule(echo, self.settings.timezone)
        else:
            schedule = default_schedule(self.settings.timezone)
        logger.info(f"Disabled schedule of {code}")
        return schedule.model_copy(update={"enabled": False})

    # Views

    def view(self) -> GraphView:
        """Nodes with resolved positions and states, edges and metrics."""
        if self.graph is None:
            return GraphView(last_error=self.last_error)

        ordered = self.graph.ordered()
        resolved = self.layout.resolve(ordered)
        nodes = [
            NodeView(
                node=node,
                position=resolved[node.code][0],
                manual_position=resolved[node.code][1],
                execution=self.coordinator.state(node.code),
            )
            for node in ordered
        ]
        return GraphView(
            nodes=nodes,
            edges=build_edges(ordered),
            metrics=self.graph.metrics(),
            unknown_dependencies=self.graph.unknown_dependencies,
            last_error=self.last_error,
        )

    def overview(self) -> list[OverviewItem]:
        if self.graph is None:
            return []
        return self.graph.overview(self.settings.hidden_codes)

    async def insights(self, focus: str | None = None) -> str:
        return await self._client.generate_insights(focus)


_session: GraphSession | None = None


def get_graph_session() -> GraphSession | None:
    """The session mounted by the application, if any."""
    return _session


async def init_graph_session(
    client: AutomationsClient, settings: CoordinatorSettings | None = None
) -> GraphSession:
    """Create and mount the application's graph session."""
    global _session
    if _session is None:
        _session = GraphSession(client, settings)
    await _session.mount()
    return _session


async def shutdown_graph_session() -> None:
    """Unmount and forget the application's graph session."""
    global _session
    if _session:
        await _session.unmount()
        _session = None
