"""Layered left-to-right layout of the automation graph.

Ranks come from a longest-path layering over the dependency DAG, so every
dependency sits strictly left of its dependents. Order within a rank is
refined with barycenter sweeps to reduce edge crossings. Manual positions
always win over computed ones; ``LayoutState`` tracks those overrides for
one session.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence

import networkx as nx

from autoflow.models import AutomationNode, GraphEdge, NodePosition

logger = logging.getLogger(__name__)

# Box and spacing constants shared with the dashboard renderer
NODE_WIDTH = 280
NODE_HEIGHT = 180
RANK_SEPARATION = 120
NODE_SEPARATION = 60
ORDERING_PASSES = 4


def _tie_key(node: AutomationNode) -> tuple[int, str]:
    return (node.sequence, node.code)


def build_edges(nodes: Sequence[AutomationNode]) -> list[GraphEdge]:
    """Derive edges for layout.

    Uses declared dependencies whenever any node carries them. Otherwise
    chains nodes left to right by their stored x position, falling back to
    sequence order for nodes without one.
    """
    codes = {node.code for node in nodes}

    if any(node.dependencies for node in nodes):
        edges = []
        for node in nodes:
            for dependency in node.dependencies:
                if dependency in codes and dependency != node.code:
                    edges.append(GraphEdge(source=dependency, target=node.code))
        return edges

    chain = sorted(
        nodes,
        key=lambda node: (
            node.position is None,
            node.position.x if node.position is not None else 0.0,
            node.sequence,
            node.code,
        ),
    )
    return [
        GraphEdge(source=left.code, target=right.code)
        for left, right in zip(chain, chain[1:])
    ]


def _back_edges(graph: nx.DiGraph, order: list[str]) -> set[tuple[str, str]]:
    """Edges closing a cycle, found by an iterative depth-first search."""
    on_stack: set[str] = set()
    done: set[str] = set()
    back: set[tuple[str, str]] = set()
    rank_of = {code: index for index, code in enumerate(order)}

    for root in order:
        if root in done:
            continue
        stack = [(root, iter(sorted(graph.successors(root), key=rank_of.__getitem__)))]
        on_stack.add(root)
        while stack:
            current, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                on_stack.discard(current)
                done.add(current)
                continue
            if child in on_stack:
                back.add((current, child))
            elif child not in done:
                on_stack.add(child)
                stack.append(
                    (child, iter(sorted(graph.successors(child), key=rank_of.__getitem__)))
                )
    return back


def _layering_graph(
    nodes: Sequence[AutomationNode], edges: Iterable[GraphEdge]
) -> tuple[nx.DiGraph, list[str]]:
    order = [node.code for node in sorted(nodes, key=_tie_key)]
    graph = nx.DiGraph()
    graph.add_nodes_from(order)
    for edge in edges:
        if edge.source in graph and edge.target in graph:
            graph.add_edge(edge.source, edge.target)

    back = _back_edges(graph, order)
    if back:
        logger.warning(f"Dependency cycle detected; ignoring {sorted(back)} for layout")
        graph.remove_edges_from(back)
    return graph, order


def _longest_path_ranks(graph: nx.DiGraph, order: list[str]) -> dict[str, int]:
    position = {code: index for index, code in enumerate(order)}
    ranks: dict[str, int] = {}
    for code in nx.lexicographical_topological_sort(graph, key=position.__getitem__):
        ranks[code] = max((ranks[pred] + 1 for pred in graph.predecessors(code)), default=0)
    return ranks


def compute_ranks(
    nodes: Sequence[AutomationNode], edges: Iterable[GraphEdge]
) -> dict[str, int]:
    """Longest-path rank per code; sources get rank 0."""
    graph, order = _layering_graph(nodes, edges)
    return _longest_path_ranks(graph, order)


def _barycenter(
    code: str, neighbors: Iterable[str], index: dict[str, int]
) -> float:
    values = [index[neighbor] for neighbor in neighbors]
    if not values:
        return float(index[code])
    return sum(values) / len(values)


def order_layers(
    graph: nx.DiGraph, ranks: dict[str, int], order: list[str]
) -> list[list[str]]:
    """Order nodes within each rank to reduce crossings.

    Runs a fixed number of down/up barycenter sweeps. Ties keep the
    sequence-then-code order, so the result is deterministic.
    """
    tie = {code: position for position, code in enumerate(order)}
    layers: dict[int, list[str]] = defaultdict(list)
    for code in order:
        layers[ranks[code]].append(code)
    if not layers:
        return []
    depth = max(layers) + 1
    rows = [layers[rank] for rank in range(depth)]

    def index_of() -> dict[str, int]:
        return {code: i for row in rows for i, code in enumerate(row)}

    for _ in range(ORDERING_PASSES):
        for rank in range(1, depth):
            index = index_of()
            rows[rank].sort(
                key=lambda code: (_barycenter(code, graph.predecessors(code), index), tie[code])
            )
        for rank in range(depth - 2, -1, -1):
            index = index_of()
            rows[rank].sort(
                key=lambda code: (_barycenter(code, graph.successors(code), index), tie[code])
            )
    return rows


def compute_layout(
    nodes: Sequence[AutomationNode], edges: Iterable[GraphEdge]
) -> dict[str, NodePosition]:
    """Compute a position for every node, ignoring manual overrides."""
    if not nodes:
        return {}

    graph, order = _layering_graph(nodes, edges)
    ranks = _longest_path_ranks(graph, order)

    rows = order_layers(graph, ranks, order)
    tallest = max(len(row) for row in rows)
    step_x = NODE_WIDTH + RANK_SEPARATION
    step_y = NODE_HEIGHT + NODE_SEPARATION

    layout: dict[str, NodePosition] = {}
    for rank, row in enumerate(rows):
        offset = (tallest - len(row)) * step_y / 2
        for index, code in enumerate(row):
            layout[code] = NodePosition(x=rank * step_x, y=offset + index * step_y)
    return layout


class LayoutState:
    """Manual position overrides of one session.

    Positions set during the session win over positions stored by the
    backend, even across reloads, until ``reset`` or ``auto_arrange``.
    Persisting them is best effort, so the backend copy may be stale.
    Stored positions come from the latest snapshot. Resetting clears both,
    and a later reload brings stored positions back.
    """

    def __init__(self) -> None:
        self.local: dict[str, NodePosition] = {}
        self.stored: dict[str, NodePosition] = {}

    @property
    def overrides(self) -> dict[str, NodePosition]:
        """Effective manual positions by code."""
        return {**self.stored, **self.local}

    def sync(self, nodes: Iterable[AutomationNode]) -> None:
        """Take stored positions from a freshly loaded snapshot."""
        nodes = list(nodes)
        codes = {node.code for node in nodes}
        self.stored = {node.code: node.position for node in nodes if node.position is not None}
        self.local = {code: pos for code, pos in self.local.items() if code in codes}

    def move(self, code: str, position: NodePosition) -> None:
        self.local[code] = position

    def reset(self) -> None:
        self.local.clear()
        self.stored.clear()

    def auto_arrange(self, nodes: Sequence[AutomationNode]) -> dict[str, NodePosition]:
        """Recompute every position and make it the new override set."""
        computed = compute_layout(nodes, build_edges(nodes))
        self.stored.clear()
        self.local = dict(computed)
        return computed

    def resolve(
        self, nodes: Sequence[AutomationNode]
    ) -> dict[str, tuple[NodePosition, bool]]:
        """Position per code plus whether it is a manual override."""
        computed = compute_layout(nodes, build_edges(nodes))
        overrides = self.overrides
        resolved: dict[str, tuple[NodePosition, bool]] = {}
        for node in nodes:
            manual = overrides.get(node.code)
            if manual is not None:
                resolved[node.code] = (manual, True)
            else:
                resolved[node.code] = (computed[node.code], False)
        return resolved
