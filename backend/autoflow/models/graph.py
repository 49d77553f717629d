"""Pydantic models for graph edges and the dashboard's graph views."""

from typing import Any

from pydantic import BaseModel
from pydantic import Field as PydanticField

from autoflow.models.automation import (
    AutomationNode,
    AutomationRunResult,
    ExecutionState,
    NodePosition,
)
from autoflow.models.schedule import AutomationScheduleSettings


class GraphEdge(BaseModel):
    """A derived dependency edge; direction is dependency -> dependent."""

    source: str
    target: str


class GraphMetrics(BaseModel):
    """Status counts shown in the control-room header."""

    active: int = 0
    monitoring: int = 0
    warning: int = 0
    error: int = 0
    total: int = 0


class NodeView(BaseModel):
    """A node as the graph view displays it."""

    node: AutomationNode
    position: NodePosition
    manual_position: bool = PydanticField(default=False, alias="manualPosition")
    execution: ExecutionState

    model_config = {"populate_by_name": True}


class GraphView(BaseModel):
    """Everything needed to draw the graph once."""

    nodes: list[NodeView] = PydanticField(default_factory=list)
    edges: list[GraphEdge] = PydanticField(default_factory=list)
    metrics: GraphMetrics = PydanticField(default_factory=GraphMetrics)
    unknown_dependencies: dict[str, list[str]] = PydanticField(
        default_factory=dict, alias="unknownDependencies"
    )
    last_error: str | None = PydanticField(default=None, alias="lastError")

    model_config = {"populate_by_name": True}


class OverviewItem(BaseModel):
    """One card of the automations overview listing."""

    code: str
    name: str
    short_description: str = PydanticField(alias="shortDescription")
    connected: bool
    sequence: int

    model_config = {"populate_by_name": True}


class NodeDetails(BaseModel):
    """Detail panel of a single node."""

    node: AutomationNode
    execution: ExecutionState
    last_run: AutomationRunResult | None = PydanticField(default=None, alias="lastRun")
    runs: list[AutomationRunResult] = PydanticField(default_factory=list)
    schedule: AutomationScheduleSettings
    history_error: str | None = PydanticField(default=None, alias="historyError")
    schedule_error: str | None = PydanticField(default=None, alias="scheduleError")

    model_config = {"populate_by_name": True}


class ExecuteRequest(BaseModel):
    """Optional payload forwarded to the automation runner."""

    payload: Any = None


class InsightsRequest(BaseModel):
    """Focus lens for AI-generated pipeline insights."""

    focus: str | None = PydanticField(default=None, min_length=1, max_length=280)
