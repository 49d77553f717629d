"""In-memory graph of automation nodes.

``GraphState`` owns the durable node fields for one session. It is rebuilt
from scratch on every snapshot load; the reconciler and the execution
coordinator patch durable fields in place between loads.
"""

import logging
from collections import deque
from collections.abc import Iterable, Iterator

import networkx as nx

from autoflow.models import (
    AutomationNode,
    AutomationStatus,
    GraphEdge,
    GraphMetrics,
    OverviewItem,
    StatusUpdate,
)

logger = logging.getLogger(__name__)

SHORT_DESCRIPTION_LIMIT = 160


def shorten_description(description: str) -> str:
    if len(description) <= SHORT_DESCRIPTION_LIMIT:
        return description
    return f"{description[:SHORT_DESCRIPTION_LIMIT - 3]}…"


class GraphState:
    """Code-keyed node mapping plus the derived dependency graph.

    Edges point from a dependency to its dependent. Dependencies that name
    a code outside the node set are dropped from the edge set and kept in
    ``unknown_dependencies`` for reporting.
    """

    def __init__(self, nodes: Iterable[AutomationNode]) -> None:
        self._nodes: dict[str, AutomationNode] = {}
        for node in nodes:
            if node.code in self._nodes:
                logger.warning(f"Duplicate automation code {node.code!r}; keeping the first")
                continue
            self._nodes[node.code] = node

        self.unknown_dependencies: dict[str, list[str]] = {}
        self._graph = nx.DiGraph()
        self._graph.add_nodes_from(self._nodes)

        for node in self._nodes.values():
            for dependency in node.dependencies:
                if dependency in self._nodes:
                    self._graph.add_edge(dependency, node.code)
                else:
                    self.unknown_dependencies.setdefault(node.code, []).append(dependency)
                    logger.warning(
                        f"Automation {node.code} depends on unknown automation "
                        f"{dependency}; ignoring"
                    )

    def __contains__(self, code: object) -> bool:
        return code in self._nodes

    def __iter__(self) -> Iterator[AutomationNode]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, code: str) -> AutomationNode | None:
        return self._nodes.get(code)

    def codes(self) -> list[str]:
        return list(self._nodes)

    def dependencies(self, code: str) -> list[str]:
        """Known dependencies of ``code``, in declaration order."""
        node = self._nodes.get(code)
        if node is None:
            return []
        return [dep for dep in node.dependencies if dep in self._nodes]

    def neighbors(self, code: str) -> list[str]:
        """Dependents of ``code`` (inverse of ``dependencies``)."""
        if code not in self._graph:
            return []
        return list(self._graph.successors(code))

    def downstream(self, code: str) -> list[str]:
        """Every node transitively reachable from ``code``, breadth-first.

        A visited set bounds the walk, so cyclic data still terminates.
        """
        if code not in self._nodes:
            return []

        visited = {code}
        order: list[str] = []
        queue = deque([code])
        while queue:
            current = queue.popleft()
            for dependent in self.neighbors(current):
                if dependent in visited:
                    continue
                visited.add(dependent)
                order.append(dependent)
                queue.append(dependent)
        return order

    def edges(self) -> list[GraphEdge]:
        return [GraphEdge(source=source, target=target) for source, target in self._graph.edges]

    def ordered(self) -> list[AutomationNode]:
        """Nodes by sequence, then code."""
        return sorted(self._nodes.values(), key=lambda node: (node.sequence, node.code))

    def apply_status_update(self, update: StatusUpdate) -> bool:
        """Overwrite reported durable fields of an existing node.

        Returns False when the node is not in the graph; nothing is added.
        """
        node = self._nodes.get(update.code)
        if node is None:
            return False

        changes: dict[str, object] = {}
        if update.status is not None:
            changes["status"] = update.status
        if update.status_label is not None:
            changes["status_label"] = update.status_label
        if update.connected is not None:
            changes["connected"] = update.connected
        if update.last_run is not None:
            changes["last_run"] = update.last_run

        if changes:
            self._nodes[update.code] = node.model_copy(update=changes)
        return True

    def metrics(self) -> GraphMetrics:
        counts = {status: 0 for status in AutomationStatus}
        for node in self._nodes.values():
            counts[node.status] += 1
        return GraphMetrics(
            active=counts[AutomationStatus.OPERATIONAL],
            monitoring=counts[AutomationStatus.MONITORING],
            warning=counts[AutomationStatus.WARNING],
            error=counts[AutomationStatus.ERROR],
            total=len(self._nodes),
        )

    def overview(self, hidden_codes: Iterable[str] = ()) -> list[OverviewItem]:
        """Overview cards, hidden codes filtered out, by sequence."""
        hidden = {code.upper() for code in hidden_codes}
        return [
            OverviewItem(
                code=node.code,
                name=node.name,
                short_description=shorten_description(node.description),
                connected=node.connected,
                sequence=node.sequence,
            )
            for node in self.ordered()
            if node.code.upper() not in hidden
        ]


def load_graph(nodes: Iterable[AutomationNode]) -> GraphState:
    """Build a ``GraphState`` from a snapshot's nodes."""
    state = GraphState(nodes)
    logger.info(
        f"Loaded automation graph: {len(state)} nodes, {len(state.edges())} edges"
    )
    return state
