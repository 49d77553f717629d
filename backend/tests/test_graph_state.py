"""Tests for the in-memory graph model."""

from autoflow.models import AutomationStatus, NodePosition, StatusUpdate
from autoflow.services.adapters import adapt_nodes_payload
from autoflow.services.graph_state import load_graph
from conftest import node_payload, sample_nodes


def graph_from(payloads):
    return load_graph(adapt_nodes_payload(payloads))


class TestLoadGraph:
    """Tests for building a GraphState."""

    def test_unknown_dependencies_are_dropped_and_reported(self, caplog):
        """A dependency on a missing code is ignored but recorded and logged."""
        graph = graph_from([node_payload("A"), node_payload("B", dependencies=["A", "GHOST"])])

        assert graph.dependencies("B") == ["A"]
        assert graph.unknown_dependencies == {"B": ["GHOST"]}
        assert "GHOST" in caplog.text

    def test_neighbors_are_dependents(self):
        graph = graph_from(sample_nodes())

        assert sorted(graph.neighbors("A")) == ["B", "C"]
        assert graph.neighbors("D") == []
        assert graph.neighbors("missing") == []

    def test_edges_point_from_dependency_to_dependent(self):
        graph = graph_from(sample_nodes())
        edges = {(e.source, e.target) for e in graph.edges()}

        assert edges == {("A", "B"), ("A", "C"), ("B", "D"), ("C", "D")}

    def test_downstream_is_breadth_first(self):
        graph = graph_from(sample_nodes())
        assert graph.downstream("A") == ["B", "C", "D"]

    def test_downstream_terminates_on_cycles(self):
        """A visited set stops traversal of cyclic data."""
        graph = graph_from(
            [
                node_payload("A", dependencies=["C"]),
                node_payload("B", dependencies=["A"]),
                node_payload("C", dependencies=["B"]),
            ]
        )
        assert sorted(graph.downstream("A")) == ["B", "C"]

    def test_ordered_by_sequence_then_code(self):
        graph = graph_from(
            [
                node_payload("Z", sequence=1),
                node_payload("B", sequence=2),
                node_payload("A", sequence=1),
            ]
        )
        assert [n.code for n in graph.ordered()] == ["A", "Z", "B"]


class TestStatusUpdates:
    """Tests for durable field updates."""

    def test_only_reported_durable_fields_change(self):
        graph = graph_from(
            [node_payload("X", position={"x": 10, "y": 20}, lastRun="2024-01-01T00:00:00Z")]
        )

        applied = graph.apply_status_update(
            StatusUpdate(code="X", status=AutomationStatus.WARNING)
        )
        node = graph.get("X")

        assert applied
        assert node.status == AutomationStatus.WARNING
        assert node.status_label == "Operational"
        assert node.connected is True
        assert node.last_run == "2024-01-01T00:00:00Z"
        assert node.position == NodePosition(x=10, y=20)

    def test_unknown_code_is_not_added(self):
        graph = graph_from([node_payload("X")])

        update = StatusUpdate(code="NEW", status=AutomationStatus.ERROR)
        assert not graph.apply_status_update(update)
        assert "NEW" not in graph
        assert len(graph) == 1


class TestSummaries:
    """Tests for metrics and overview listings."""

    def test_metrics(self):
        graph = graph_from(
            [
                node_payload("A", status="operational"),
                node_payload("B", status="monitoring"),
                node_payload("C", status="warning"),
                node_payload("D", status="offline"),
                node_payload("E", status="error"),
            ]
        )
        metrics = graph.metrics()

        assert (metrics.active, metrics.monitoring, metrics.warning, metrics.error) == (1, 1, 1, 2)
        assert metrics.total == 5

    def test_overview_hides_codes_and_shortens_descriptions(self):
        graph = graph_from(
            [
                node_payload("B", sequence=2, description="d" * 200),
                node_payload("VPE", sequence=0),
                node_payload("A", sequence=1),
            ]
        )
        overview = graph.overview(["vpe"])

        assert [item.code for item in overview] == ["A", "B"]
        assert len(overview[1].short_description) == 158
        assert overview[1].short_description.endswith("…")
        assert overview[0].short_description == "Does the A work"
