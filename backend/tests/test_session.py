"""Tests for the graph session lifecycle and its operations."""

import asyncio
import json

import httpx
import pytest

from autoflow.client.automations import AutomationsClient
from autoflow.models import AutomationStatus, ExecutionStatus, NodePosition, ScheduleFrequency
from autoflow.services import session as session_module
from autoflow.services.execution import UnknownAutomationError
from autoflow.services.session import (
    GraphSession,
    get_graph_session,
    init_graph_session,
    shutdown_graph_session,
)
from conftest import BASE_URL, TOKEN, node_payload, sample_nodes


def run_record(code: str, finished_at: str, **overrides) -> dict:
    record = {"code": code, "ok": True, "httpStatus": 200, "finishedAt": finished_at}
    record.update(overrides)
    return record


def node_view(view, code):
    return next(item for item in view.nodes if item.node.code == code)


class TestLifecycle:
    """Tests for mount, unmount and reload."""

    @pytest.mark.asyncio
    async def test_mount_loads_graph_and_starts_polling(self, graph_session):
        assert graph_session.mounted
        assert len(graph_session.graph) == 4
        assert graph_session.reconciler.running
        assert graph_session.last_error is None

    @pytest.mark.asyncio
    async def test_unmount_tears_everything_down(self, backend, automations_client, settings):
        backend.get("/automations").mock(
            return_value=httpx.Response(200, json={"nodes": sample_nodes()})
        )
        backend.get("/automations/status").mock(return_value=httpx.Response(200, json=[]))
        backend.post("/automations/run/A").mock(return_value=httpx.Response(200, text="ok"))

        session = GraphSession(automations_client, settings)
        await session.mount()
        await session.mount()
        await session.execute("A")
        old_coordinator = session.coordinator

        await session.unmount()

        assert not session.mounted
        assert not session.reconciler.running
        assert old_coordinator.pending_reverts() == 0
        assert session.coordinator is not old_coordinator

    @pytest.mark.asyncio
    async def test_run_finishing_after_unmount_is_not_recorded(self, settings):
        """A trigger still in flight at unmount leaves the session history empty."""
        release = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/automations"):
                return httpx.Response(200, json=sample_nodes())
            if request.url.path.endswith("/automations/status"):
                return httpx.Response(200, json=[])
            await release.wait()
            return httpx.Response(200, text="ok")

        transport = httpx.MockTransport(handler)
        async with AutomationsClient(BASE_URL, token=TOKEN, transport=transport) as client:
            session = GraphSession(client, settings)
            await session.mount()
            running = asyncio.create_task(session.execute("A"))
            await asyncio.sleep(0.01)

            await session.unmount()
            release.set()
            outcome = await running

        assert outcome.result is not None
        assert session.session_history("A") == []

    @pytest.mark.asyncio
    async def test_reload_failure_keeps_previous_graph(self, backend, graph_session):
        backend.get("/automations").mock(
            return_value=httpx.Response(500, json={"message": "database unavailable"})
        )

        assert not await graph_session.reload()

        assert graph_session.last_error == "Unable to load automations: database unavailable"
        assert len(graph_session.graph) == 4
        assert graph_session.view().last_error == graph_session.last_error

    @pytest.mark.asyncio
    async def test_reload_preserves_manual_positions(self, backend, graph_session):
        """A reload without reset keeps a manual position the snapshot lacks."""
        backend.post("/automations/B/position").mock(return_value=httpx.Response(204))
        graph_session.move_node("B", NodePosition(x=900, y=15))
        await graph_session.flush()

        assert await graph_session.reload()

        view = node_view(graph_session.view(), "B")
        assert view.position == NodePosition(x=900, y=15)
        assert view.manual_position

    @pytest.mark.asyncio
    async def test_reconciled_warning_keeps_idle_indicator(self, backend, graph_session):
        """A reported warning changes the status shown, not the execution state."""
        backend.get("/automations/status").mock(
            return_value=httpx.Response(200, json=[{"code": "C", "status": "warning"}])
        )

        await graph_session.reconciler.tick()

        view = node_view(graph_session.view(), "C")
        assert view.node.status == AutomationStatus.WARNING
        assert view.execution.status == ExecutionStatus.IDLE

    @pytest.mark.asyncio
    async def test_reload_drops_vanished_nodes(self, backend, graph_session):
        backend.get("/automations").mock(
            return_value=httpx.Response(200, json=[node_payload("A"), node_payload("E")])
        )

        await graph_session.reload()

        assert graph_session.graph.codes() == ["A", "E"]
        assert "B" not in graph_session.coordinator.states()
        assert graph_session.coordinator.state("E").status == ExecutionStatus.IDLE


class TestLayout:
    """Tests for manual positions and layout resets."""

    @pytest.mark.asyncio
    async def test_move_persists_position(self, backend, graph_session):
        route = backend.post("/automations/A/position").mock(return_value=httpx.Response(204))

        graph_session.move_node("A", NodePosition(x=12.5, y=-4))
        await graph_session.flush()

        assert route.called
        assert json.loads(route.calls.last.request.content) == {"x": 12.5, "y": -4}

    @pytest.mark.asyncio
    async def test_persist_failure_is_only_logged(self, backend, graph_session, caplog):
        backend.post("/automations/A/position").mock(
            return_value=httpx.Response(500, json={"message": "read-only"})
        )

        graph_session.move_node("A", NodePosition(x=1, y=2))
        await graph_session.flush()

        assert "Could not persist position of A" in caplog.text
        assert node_view(graph_session.view(), "A").position == NodePosition(x=1, y=2)

    @pytest.mark.asyncio
    async def test_unsaved_move_survives_reload(self, backend, graph_session):
        """A move whose save failed still wins over the stale stored position."""
        stale = sample_nodes()
        stale[1]["position"] = {"x": 10, "y": 10}
        backend.get("/automations").mock(return_value=httpx.Response(200, json=stale))
        backend.post("/automations/B/position").mock(
            return_value=httpx.Response(500, json={"message": "db down"})
        )

        graph_session.move_node("B", NodePosition(x=900, y=15))
        await graph_session.flush()
        assert await graph_session.reload()

        view = node_view(graph_session.view(), "B")
        assert view.position == NodePosition(x=900, y=15)
        assert view.manual_position

    @pytest.mark.asyncio
    async def test_move_unknown_node(self, graph_session):
        with pytest.raises(UnknownAutomationError):
            graph_session.move_node("NOPE", NodePosition(x=1, y=2))

    @pytest.mark.asyncio
    async def test_reset_returns_to_computed_layout(self, backend, graph_session):
        backend.post("/automations/A/position").mock(return_value=httpx.Response(204))
        graph_session.move_node("A", NodePosition(x=1, y=2))
        await graph_session.flush()

        view = graph_session.reset_layout()

        assert not any(item.manual_position for item in view.nodes)
        assert node_view(view, "A").position != NodePosition(x=1, y=2)

    @pytest.mark.asyncio
    async def test_auto_arrange_persists_every_position(self, backend, graph_session):
        routes = {
            code: backend.post(f"/automations/{code}/position").mock(
                return_value=httpx.Response(204)
            )
            for code in "ABCD"
        }

        view = graph_session.auto_arrange()
        await graph_session.flush()

        assert all(route.called for route in routes.values())
        assert all(item.manual_position for item in view.nodes)
        assert node_view(view, "A").position.x < node_view(view, "D").position.x

    @pytest.mark.asyncio
    async def test_view_reports_edges_and_metrics(self, graph_session):
        view = graph_session.view()

        assert {(e.source, e.target) for e in view.edges} == {
            ("A", "B"),
            ("A", "C"),
            ("B", "D"),
            ("C", "D"),
        }
        assert view.metrics.total == 4
        assert [item.node.code for item in view.nodes] == ["A", "B", "C", "D"]


class TestDetails:
    """Tests for the detail panel, run history and schedules."""

    @pytest.mark.asyncio
    async def test_execute_result_merges_into_history(self, backend, graph_session):
        backend.post("/automations/run/A").mock(return_value=httpx.Response(200, text="ok"))
        backend.get("/automations/runs/A").mock(
            return_value=httpx.Response(
                200, json={"runs": [run_record("A", "2024-01-01T00:00:00Z")]}
            )
        )
        backend.get("/automations/A/schedule").mock(
            return_value=httpx.Response(
                200,
                json={"enabled": True, "frequency": "weekly", "time": "7:05", "day": "Friday"},
            )
        )

        outcome = await graph_session.execute("A")
        details = await graph_session.node_details("A")

        assert len(graph_session.session_history("A")) == 1
        assert len(details.runs) == 2
        assert details.last_run.finished_at == outcome.result.finished_at
        assert details.runs[1].finished_at == "2024-01-01T00:00:00Z"
        assert details.execution.status == ExecutionStatus.SUCCESS
        assert details.schedule.enabled
        assert details.schedule.frequency == ScheduleFrequency.WEEKLY
        assert details.schedule.time_of_day == "07:05"
        assert details.schedule.day_of_week == "friday"
        assert details.schedule.timezone == "Europe/Berlin"

    @pytest.mark.asyncio
    async def test_compact_details_cap_runs(self, backend, graph_session):
        runs = [run_record("B", f"2024-03-{day:02d}T08:00:00Z") for day in range(1, 9)]
        backend.get("/automations/runs/B").mock(return_value=httpx.Response(200, json=runs))
        backend.get("/automations/B/schedule").mock(return_value=httpx.Response(200, json={}))

        details = await graph_session.node_details("B", compact=True)

        assert len(details.runs) == 5
        assert details.runs[0].finished_at == "2024-03-08T08:00:00Z"
        assert details.last_run.finished_at == "2024-03-08T08:00:00Z"

    @pytest.mark.asyncio
    async def test_missing_schedule_and_failed_history(self, backend, graph_session):
        """A 404 schedule means defaults; a failed history is reported."""
        backend.get("/automations/runs/C").mock(
            return_value=httpx.Response(502, json={"error": "runner offline"})
        )
        backend.get("/automations/C/schedule").mock(return_value=httpx.Response(404))

        details = await graph_session.node_details("C")

        assert details.runs == []
        assert details.last_run is None
        assert details.history_error == "runner offline"
        assert details.schedule_error is None
        assert not details.schedule.enabled
        assert details.schedule.time_of_day == "09:00"
        assert details.schedule.timezone == "Europe/Berlin"

    @pytest.mark.asyncio
    async def test_details_of_unknown_node(self, graph_session):
        with pytest.raises(UnknownAutomationError):
            await graph_session.node_details("NOPE")

    @pytest.mark.asyncio
    async def test_save_schedule_sends_normalized_settings(self, backend, graph_session):
        route = backend.put("/automations/A/schedule").mock(
            return_value=httpx.Response(200, json={"ok": True})
        )

        saved = await graph_session.save_schedule(
            "A", {"active": True, "cadence": "HOURLY", "at": "25:99"}
        )

        assert saved.enabled
        assert saved.frequency == ScheduleFrequency.HOURLY
        assert saved.time_of_day == "23:59"
        assert json.loads(route.calls.last.request.content) == {
            "enabled": True,
            "frequency": "hourly",
            "timeOfDay": "23:59",
            "dayOfWeek": "monday",
            "timezone": "Europe/Berlin",
        }

    @pytest.mark.asyncio
    async def test_disable_schedule(self, backend, graph_session):
        route = backend.put("/automations/A/schedule").mock(
            return_value=httpx.Response(200, json={"enabled": True, "frequency": "hourly"})
        )

        disabled = await graph_session.disable_schedule("A")

        assert json.loads(route.calls.last.request.content) == {"enabled": False}
        assert not disabled.enabled
        assert disabled.frequency == ScheduleFrequency.HOURLY

    @pytest.mark.asyncio
    async def test_disable_schedule_without_echo(self, backend, graph_session):
        backend.put("/automations/A/schedule").mock(return_value=httpx.Response(204))

        disabled = await graph_session.disable_schedule("A")

        assert not disabled.enabled
        assert disabled.frequency == ScheduleFrequency.DAILY


class TestOverview:
    """Tests for the overview listing and insights."""

    @pytest.mark.asyncio
    async def test_overview_hides_configured_codes(self, backend, automations_client, settings):
        backend.get("/automations").mock(
            return_value=httpx.Response(
                200,
                json=[node_payload("VPE", sequence=0), node_payload("A"), node_payload("B")],
            )
        )
        session = GraphSession(automations_client, settings)
        await session.reload()

        assert [item.code for item in session.overview()] == ["A", "B"]
        assert len(session.view().nodes) == 3

    @pytest.mark.asyncio
    async def test_insights(self, backend, graph_session):
        route = backend.post("/automations/insights").mock(
            return_value=httpx.Response(200, json={"insights": "All steps are healthy."})
        )

        assert await graph_session.insights("bottlenecks") == "All steps are healthy."
        assert json.loads(route.calls.last.request.content) == {"focus": "bottlenecks"}


class TestSingleton:
    """Tests for the application-wide session."""

    @pytest.mark.asyncio
    async def test_init_and_shutdown(self, backend, automations_client, settings):
        backend.get("/automations").mock(
            return_value=httpx.Response(200, json={"nodes": sample_nodes()})
        )
        backend.get("/automations/status").mock(return_value=httpx.Response(200, json=[]))

        session = await init_graph_session(automations_client, settings)
        try:
            assert get_graph_session() is session
            assert session.mounted
        finally:
            await shutdown_graph_session()

        assert get_graph_session() is None
        assert session_module._session is None
