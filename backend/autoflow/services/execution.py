"""Execution coordinator.

Triggers one node, applies whatever the backend reports as having cascaded
from it, and owns the transient per-node ``ExecutionState``. Every touched
node reverts to ``idle`` after a quiet period. Each state write bumps a
per-node generation, and a revert only fires if its generation is still
current.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from autoflow.client.automations import AutomationsClient
from autoflow.client.errors import AutomationClientError
from autoflow.models import (
    AutomationNode,
    CascadeEntry,
    ExecutionOutcome,
    ExecutionState,
    ExecutionStatus,
    StatusUpdate,
)
from autoflow.services.graph_state import GraphState
from autoflow.services.run_results import read_trigger_response, utc_now

logger = logging.getLogger(__name__)

DEFAULT_REVERT_DELAY = 6.5

GraphProvider = Callable[[], GraphState | None]


class AutomationBusyError(Exception):
    """The node already has an execution in flight."""

    def __init__(self, code: str):
        super().__init__(f"Automation {code} is already running")
        self.code = code


class UnknownAutomationError(LookupError):
    """The code is not part of the loaded graph."""

    def __init__(self, code: str):
        super().__init__(f"Unknown automation: {code}")
        self.code = code


def _durable_update(node: AutomationNode) -> StatusUpdate:
    """Durable fields the run response actually carried; the rest stay as they are."""
    reported = node.model_fields_set
    return StatusUpdate(
        code=node.code,
        status=node.status if "status" in reported else None,
        status_label=node.status_label if "status_label" in reported else None,
        last_run=node.last_run if "last_run" in reported else None,
    )


def _label(node: AutomationNode) -> str:
    return f"{node.name} ({node.code})" if node.name and node.name != node.code else node.code


class ExecutionCoordinator:
    """Runs nodes and tracks their transient execution state."""

    def __init__(
        self,
        graph_provider: GraphProvider,
        client: AutomationsClient,
        revert_delay: float = DEFAULT_REVERT_DELAY,
    ) -> None:
        self._graph_provider = graph_provider
        self._client = client
        self.revert_delay = revert_delay
        self._states: dict[str, ExecutionState] = {}
        self._generations: dict[str, int] = {}
        self._revert_handles: dict[str, asyncio.TimerHandle] = {}
        self._closed = False

    def state(self, code: str) -> ExecutionState:
        return self._states.get(code, ExecutionState())

    def states(self) -> dict[str, ExecutionState]:
        return dict(self._states)

    def pending_reverts(self) -> int:
        return len(self._revert_handles)

    def reset_states(self, codes: list[str]) -> None:
        """Align states with a reloaded graph, keyed by code.

        Surviving codes keep their state; vanished codes are dropped along
        with their pending reverts; new codes start ``idle``.
        """
        keep = set(codes)
        for code in list(self._states):
            if code not in keep:
                self._cancel_revert(code)
                self._states.pop(code, None)
                self._generations.pop(code, None)
        for code in codes:
            self._states.setdefault(code, ExecutionState())

    def _cancel_revert(self, code: str) -> None:
        handle = self._revert_handles.pop(code, None)
        if handle is not None:
            handle.cancel()

    def _set_state(self, code: str, state: ExecutionState) -> int:
        """Write a state and return its generation token."""
        self._cancel_revert(code)
        generation = self._generations.get(code, 0) + 1
        self._generations[code] = generation
        self._states[code] = state
        return generation

    def _schedule_revert(self, code: str, generation: int) -> None:
        if self._closed:
            return
        loop = asyncio.get_running_loop()
        self._revert_handles[code] = loop.call_later(
            self.revert_delay, self._revert, code, generation
        )

    def _revert(self, code: str, generation: int) -> None:
        if self._generations.get(code) != generation:
            return
        self._revert_handles.pop(code, None)
        if code in self._states:
            self._states[code] = ExecutionState()

    def _settle(self, code: str, state: ExecutionState) -> ExecutionState:
        generation = self._set_state(code, state)
        self._schedule_revert(code, generation)
        return state

    async def execute(self, code: str, payload: Any = None) -> ExecutionOutcome:
        """Trigger ``code`` and apply the reported cascade.

        Raises ``UnknownAutomationError`` or ``AutomationBusyError`` for
        precondition failures. Every other failure ends in an ``error``
        state on the node.
        """
        if self._closed:
            raise RuntimeError("Execution coordinator is closed")

        graph = self._graph_provider()
        node = graph.get(code) if graph is not None else None
        if node is None:
            raise UnknownAutomationError(code)
        if self.state(code).status == ExecutionStatus.RUNNING:
            raise AutomationBusyError(code)

        if not node.is_triggerable:
            message = f"{_label(node)} has no webhook target; nothing was sent"
            logger.warning(f"Refusing to trigger {code}: no webhook target")
            state = self._settle(
                code, ExecutionState(status=ExecutionStatus.ERROR, message=message)
            )
            return ExecutionOutcome(code=code, state=state)

        generation = self._set_state(code, ExecutionState(status=ExecutionStatus.RUNNING))
        started_at = utc_now()

        try:
            response = await self._client.trigger(code, payload)
        except AutomationClientError as e:
            if not self._still_current(code, generation):
                return ExecutionOutcome(code=code, state=self.state(code))
            logger.warning(f"Trigger of {code} failed: {e.message}")
            state = self._settle(
                code, ExecutionState(status=ExecutionStatus.ERROR, message=e.message)
            )
            return ExecutionOutcome(code=code, state=state)

        reading = read_trigger_response(
            code,
            response,
            started_at,
            request_payload=payload,
            webhook_url=node.webhook_url,
        )

        if not self._still_current(code, generation):
            logger.debug(f"Discarding late trigger response for {code}")
            return ExecutionOutcome(code=code, state=self.state(code), result=reading.result)

        graph = self._graph_provider()
        if not reading.ok:
            logger.warning(f"Automation {code} failed: {reading.message}")
            state = self._settle(
                code,
                ExecutionState(
                    status=ExecutionStatus.ERROR,
                    message=reading.message,
                    result=reading.result,
                ),
            )
            return ExecutionOutcome(code=code, state=state, result=reading.result)

        update = StatusUpdate(code=code)
        if reading.automation is not None:
            update = _durable_update(reading.automation)
        if update.last_run is None:
            update.last_run = reading.result.finished_at
        graph.apply_status_update(update)

        cascaded = self._apply_cascade(graph, node, reading.cascade)

        message = f"{_label(node)} ran successfully"
        if cascaded:
            message += f"; triggered {len(cascaded)} downstream automation(s)"
        logger.info(f"Automation {code} succeeded, cascade: {cascaded or 'none'}")
        state = self._settle(
            code,
            ExecutionState(
                status=ExecutionStatus.SUCCESS, message=message, result=reading.result
            ),
        )
        return ExecutionOutcome(code=code, state=state, result=reading.result, cascade=cascaded)

    def _still_current(self, code: str, generation: int) -> bool:
        if self._closed:
            return False
        graph = self._graph_provider()
        if graph is None or code not in graph:
            return False
        return self._generations.get(code) == generation

    def _apply_cascade(
        self, graph: GraphState, upstream: AutomationNode, cascade: list[CascadeEntry]
    ) -> list[str]:
        """Mark every reported cascade entry, each node at most once."""
        visited = {upstream.code}
        applied: list[str] = []
        for entry in cascade:
            target = entry.automation
            if target.code in visited:
                continue
            visited.add(target.code)
            if target.code not in graph:
                logger.warning(
                    f"Cascade from {upstream.code} names unknown automation {target.code}"
                )
                continue

            graph.apply_status_update(_durable_update(target))
            failed = entry.execution.status.lower() == "error"
            name = _label(graph.get(target.code))
            if failed:
                message = (
                    f"{name} was triggered automatically after {_label(upstream)} "
                    "completed, but failed"
                )
            else:
                message = f"{name} triggered automatically after {_label(upstream)} completed"
            status = ExecutionStatus.ERROR if failed else ExecutionStatus.SUCCESS
            self._settle(target.code, ExecutionState(status=status, message=message))
            applied.append(target.code)
            logger.info(f"Cascade {upstream.code} -> {target.code}: {status.value}")
        return applied

    def shutdown(self) -> None:
        """Cancel every pending revert; later responses are discarded."""
        self._closed = True
        for code in list(self._revert_handles):
            self._cancel_revert(code)
