"""Pydantic models for the automation graph coordinator."""

from autoflow.models.automation import (
    AutomationExecution,
    AutomationKind,
    AutomationNode,
    AutomationRunResponse,
    AutomationRunResult,
    AutomationStatus,
    CascadeEntry,
    ExecutionOutcome,
    ExecutionState,
    ExecutionStatus,
    NodePosition,
    StatusUpdate,
)
from autoflow.models.graph import (
    ExecuteRequest,
    GraphEdge,
    GraphMetrics,
    GraphView,
    InsightsRequest,
    NodeDetails,
    NodeView,
    OverviewItem,
)
from autoflow.models.schedule import AutomationScheduleSettings, ScheduleFrequency

__all__ = [
    # Nodes
    "AutomationNode",
    "AutomationKind",
    "AutomationStatus",
    "NodePosition",
    "StatusUpdate",
    # Execution
    "AutomationExecution",
    "AutomationRunResponse",
    "AutomationRunResult",
    "CascadeEntry",
    "ExecutionOutcome",
    "ExecutionState",
    "ExecutionStatus",
    # Schedule
    "AutomationScheduleSettings",
    "ScheduleFrequency",
    # Graph views
    "GraphEdge",
    "GraphMetrics",
    "GraphView",
    "NodeView",
    "NodeDetails",
    "OverviewItem",
    # Requests
    "ExecuteRequest",
    "InsightsRequest",
]
