"""Dashboard API routes for the automation graph."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel

from autoflow.client.errors import AutomationClientError
from autoflow.models import (
    AutomationScheduleSettings,
    ExecuteRequest,
    ExecutionOutcome,
    GraphView,
    InsightsRequest,
    NodeDetails,
    NodePosition,
    OverviewItem,
)
from autoflow.services.execution import AutomationBusyError, UnknownAutomationError
from autoflow.services.session import GraphSession, get_graph_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/graph", tags=["graph"])


class InsightsResponse(BaseModel):
    """Narrative summary generated by the backend."""

    insights: str


def get_session() -> GraphSession:
    session = get_graph_session()
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Automation graph is not mounted",
        )
    return session


Session = Annotated[GraphSession, Depends(get_session)]


def _not_found(e: UnknownAutomationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def _bad_gateway(e: AutomationClientError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)


@router.get("", response_model=GraphView)
async def get_graph(session: Session) -> GraphView:
    """Nodes with resolved positions and execution states, edges and metrics."""
    return session.view()


@router.get("/overview", response_model=list[OverviewItem])
async def get_overview(session: Session) -> list[OverviewItem]:
    return session.overview()


@router.post("/reload", response_model=GraphView)
async def reload_graph(session: Session) -> GraphView:
    """Replace the graph with a fresh snapshot.

    A failed reload keeps the previous graph and reports ``lastError``.
    """
    await session.reload()
    return session.view()


@router.post("/nodes/{code}/execute", response_model=ExecutionOutcome)
async def execute_node(
    code: str,
    session: Session,
    request: ExecuteRequest | None = None,
) -> ExecutionOutcome:
    """Run one automation and apply its reported cascade."""
    payload = request.payload if request is not None else None
    try:
        return await session.execute(code, payload)
    except UnknownAutomationError as e:
        raise _not_found(e)
    except AutomationBusyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.put("/nodes/{code}/position", response_model=NodePosition)
async def move_node(code: str, position: NodePosition, session: Session) -> NodePosition:
    """Set a manual position; it is persisted in the background."""
    try:
        return session.move_node(code, position)
    except UnknownAutomationError as e:
        raise _not_found(e)


@router.post("/layout/reset", response_model=GraphView)
async def reset_layout(session: Session) -> GraphView:
    return session.reset_layout()


@router.post("/layout/auto-arrange", response_model=GraphView)
async def auto_arrange(session: Session) -> GraphView:
    """Recompute the layout and replace every manual position."""
    return session.auto_arrange()


@router.get("/nodes/{code}", response_model=NodeDetails)
async def get_node_details(
    code: str,
    session: Session,
    compact: Annotated[bool, Query()] = False,
) -> NodeDetails:
    try:
        return await session.node_details(code, compact=compact)
    except UnknownAutomationError as e:
        raise _not_found(e)


@router.put("/nodes/{code}/schedule", response_model=AutomationScheduleSettings)
async def save_schedule(
    code: str,
    session: Session,
    payload: Annotated[dict[str, Any], Body()],
) -> AutomationScheduleSettings:
    """Save a schedule; the body may use any accepted key spelling."""
    try:
        return await session.save_schedule(code, payload)
    except UnknownAutomationError as e:
        raise _not_found(e)
    except AutomationClientError as e:
        raise _bad_gateway(e)


@router.delete("/nodes/{code}/schedule", response_model=AutomationScheduleSettings)
async def disable_schedule(code: str, session: Session) -> AutomationScheduleSettings:
    try:
        return await session.disable_schedule(code)
    except UnknownAutomationError as e:
        raise _not_found(e)
    except AutomationClientError as e:
        raise _bad_gateway(e)


@router.post("/insights", response_model=InsightsResponse)
async def generate_insights(
    session: Session,
    request: InsightsRequest | None = None,
) -> InsightsResponse:
    focus = request.focus if request is not None else None
    try:
        return InsightsResponse(insights=await session.insights(focus))
    except AutomationClientError as e:
        logger.warning(f"Insights generation failed: {e.message}")
        raise _bad_gateway(e)
