"""Pydantic models for automation nodes, executions and run results."""

from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field as PydanticField


class AutomationStatus(str, Enum):
    """Durable, backend-authoritative health of an automation node."""

    OPERATIONAL = "operational"
    MONITORING = "monitoring"
    WARNING = "warning"
    ERROR = "error"


class AutomationKind(str, Enum):
    """How the backend runs a node."""

    WEBHOOK = "webhook"
    MEDIA_FETCHER = "media-fetcher"


class ExecutionStatus(str, Enum):
    """Transient, session-only execution indicator."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class NodePosition(BaseModel):
    """Canonical ``{x, y}`` coordinate of a node box."""

    x: float
    y: float


class AutomationNode(BaseModel):
    """A named unit of work in the automation graph."""

    code: str
    name: str = ""
    headline: str = ""
    description: str = ""
    function: str = ""
    ai_assist: str = PydanticField(default="", alias="aiAssist")
    deliverables: list[str] = PydanticField(default_factory=list)
    dependencies: list[str] = PydanticField(default_factory=list)
    status: AutomationStatus = AutomationStatus.OPERATIONAL
    status_label: str = PydanticField(default="", alias="statusLabel")
    sequence: int = 0
    kind: AutomationKind = AutomationKind.WEBHOOK
    webhook_path: str | None = PydanticField(default=None, alias="webhookPath")
    webhook_url: str | None = PydanticField(default=None, alias="webhookUrl")
    connected: bool = False
    last_run: str | None = PydanticField(default=None, alias="lastRun")
    position: NodePosition | None = None

    model_config = {"populate_by_name": True}

    @property
    def is_triggerable(self) -> bool:
        """True when the node has somewhere to send a trigger."""
        if self.kind == AutomationKind.MEDIA_FETCHER:
            return True
        return bool(self.webhook_url or self.webhook_path)


class AutomationExecution(BaseModel):
    """One execution record as reported by the backend."""

    id: int | str | None = None
    status: str = "success"
    started_at: str | None = PydanticField(default=None, alias="startedAt")
    finished_at: str | None = PydanticField(default=None, alias="finishedAt")
    logs: str | None = None
    result: Any = None

    model_config = {"populate_by_name": True}


class CascadeEntry(BaseModel):
    """A dependent node the backend ran as a consequence of a trigger."""

    automation: AutomationNode
    execution: AutomationExecution


class AutomationRunResponse(BaseModel):
    """Structured response of ``POST /automations/run/{code}``."""

    automation: AutomationNode
    execution: AutomationExecution
    cascade: list[CascadeEntry] = PydanticField(default_factory=list)


class AutomationRunResult(BaseModel):
    """Uniform record of one completed execution.

    Identity for deduplication is ``(code, finished_at)``.
    """

    code: str = ""
    ok: bool = False
    http_status: int | None = PydanticField(default=None, alias="httpStatus")
    status_text: str | None = PydanticField(default=None, alias="statusText")
    webhook_url: str | None = PydanticField(default=None, alias="webhookUrl")
    started_at: str | None = PydanticField(default=None, alias="startedAt")
    finished_at: str = PydanticField(alias="finishedAt")
    duration_ms: float | None = PydanticField(default=None, alias="durationMs")
    request_payload: Any = PydanticField(default=None, alias="requestPayload")
    response_body: Any = PydanticField(default=None, alias="responseBody")
    response_headers: dict[str, str] = PydanticField(
        default_factory=dict, alias="responseHeaders"
    )
    error: str | None = None

    model_config = {"populate_by_name": True}

    @property
    def identity(self) -> tuple[str, str]:
        return (self.code, self.finished_at)


class ExecutionState(BaseModel):
    """Transient per-node execution indicator."""

    status: ExecutionStatus = ExecutionStatus.IDLE
    message: str | None = None
    result: AutomationRunResult | None = None


class ExecutionOutcome(BaseModel):
    """What ``execute()`` resolves to."""

    code: str
    state: ExecutionState
    result: AutomationRunResult | None = None
    cascade: list[str] = PydanticField(default_factory=list)


class StatusUpdate(BaseModel):
    """Durable fields of one node from the status snapshot.

    ``None`` means "not reported"; the reconciler leaves that field alone.
    """

    code: str
    status: AutomationStatus | None = None
    status_label: str | None = PydanticField(default=None, alias="statusLabel")
    connected: bool | None = None
    last_run: str | None = PydanticField(default=None, alias="lastRun")

    model_config = {"populate_by_name": True}
