"""
Agents API

Agent roster and lifecycle:
- GET    /api/v1/agents              roster with stats and sparkline
- PATCH  /api/v1/agents/{name}       rename (409 if the name is taken)
- DELETE /api/v1/agents/{name}
- GET    /api/v1/agent/usage|costs   analytics for the calling agent
"""

from __future__ import annotations
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from agentpulse.api.deps import (
    get_agent_analytics_service,
    get_agent_scope,
    get_aggregation_service,
    get_current_user_id,
    get_timeseries_service,
)
from agentpulse.core.agent_analytics import AgentAnalyticsService, AgentScope
from agentpulse.core.aggregation import AggregationService
from agentpulse.core.models import AgentPulseError
from agentpulse.core.timeseries import TimeseriesQueryService

logger = logging.getLogger("agentpulse.api.agents")
router = APIRouter(prefix="/api/v1", tags=["Agents"])


class RenameAgentRequest(BaseModel):
    """Request to rename an agent."""
    name: str = Field(..., min_length=1, max_length=255, description="New agent name")


class AgentSummary(BaseModel):
    agent_name: str
    display_name: str
    message_count: int
    last_active: str
    total_cost: float
    total_tokens: int
    sparkline: List[float]


def _raise_http(error: AgentPulseError) -> None:
    raise HTTPException(error.status_code, str(error)) from error


@router.get("/agents", response_model=List[AgentSummary])
def list_agents(
    user_id: str = Depends(get_current_user_id),
    timeseries: TimeseriesQueryService = Depends(get_timeseries_service),
):
    return timeseries.get_agent_list(user_id)


@router.patch("/agents/{agent_name}")
def rename_agent(
    agent_name: str,
    body: RenameAgentRequest,
    user_id: str = Depends(get_current_user_id),
    service: AggregationService = Depends(get_aggregation_service),
):
    new_name = body.name.strip()
    if not new_name:
        raise HTTPException(400, "Agent name cannot be empty")
    try:
        service.rename_agent(user_id, agent_name, new_name)
    except AgentPulseError as e:
        _raise_http(e)
    return {"renamed": True, "name": new_name}


@router.delete("/agents/{agent_name}")
def delete_agent(
    agent_name: str,
    user_id: str = Depends(get_current_user_id),
    service: AggregationService = Depends(get_aggregation_service),
):
    try:
        service.delete_agent(user_id, agent_name)
    except AgentPulseError as e:
        _raise_http(e)
    return {"deleted": True}


# =============================================================================
# AGENT-SCOPED ANALYTICS
# =============================================================================

@router.get("/agent/usage")
def get_agent_usage(
    range: Optional[str] = Query("24h"),
    scope: AgentScope = Depends(get_agent_scope),
    service: AgentAnalyticsService = Depends(get_agent_analytics_service),
):
    return service.get_usage(range, scope)


@router.get("/agent/costs")
def get_agent_costs(
    range: Optional[str] = Query("24h"),
    scope: AgentScope = Depends(get_agent_scope),
    service: AgentAnalyticsService = Depends(get_agent_analytics_service),
):
    return service.get_costs(range, scope)
