"""
Analytics API

Dashboard queries over ingested telemetry:
- Overview (tokens, cost, messages, error risk with trends)
- Message search with keyset pagination
- Hourly/daily time series
- Cost by model, active skills, recent activity

Standard Query Params:
- range: 1h, 6h, 24h, 7d, 30d (anything else behaves like 24h)
- agent_name: restrict to one agent
"""

from __future__ import annotations
import logging
from typing import Optional, List, Dict

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from agentpulse.api.deps import get_aggregation_service, get_current_user_id, get_timeseries_service
from agentpulse.core.aggregation import AggregationService
from agentpulse.core.config import config
from agentpulse.core.query_helpers import MessageFilter, normalize_range
from agentpulse.core.timeseries import TimeseriesQueryService

logger = logging.getLogger("agentpulse.api.analytics")
router = APIRouter(prefix="/api/v1", tags=["Analytics"])


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class MetricWithTrend(BaseModel):
    value: float
    trend_pct: int
    sub_values: Optional[Dict[str, float]] = None


class RiskMetric(MetricWithTrend):
    score: int
    rating: str


class OverviewResponse(BaseModel):
    range: str
    has_data: bool
    tokens: MetricWithTrend
    cost: MetricWithTrend
    messages: MetricWithTrend
    error_risk: RiskMetric


class MessageItem(BaseModel):
    id: str
    timestamp: str
    agent_name: Optional[str] = None
    model: Optional[str] = None
    description: Optional[str] = None
    service_type: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    status: str
    total_tokens: int = 0
    cost: Optional[float] = None
    routing_tier: Optional[str] = None


class MessagesResponse(BaseModel):
    items: List[MessageItem]
    next_cursor: Optional[str] = None
    total_count: int
    models: List[str]


# =============================================================================
# SUMMARIES
# =============================================================================

@router.get("/overview", response_model=OverviewResponse)
def get_overview(
    range: str = Query("24h"),
    agent_name: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    service: AggregationService = Depends(get_aggregation_service),
):
    """Headline numbers for the dashboard."""
    tokens = service.get_token_summary(range, user_id, agent_name)
    return {
        "range": normalize_range(range),
        "has_data": service.has_any_data(user_id, agent_name),
        "tokens": tokens["tokens_today"],
        "cost": service.get_cost_summary(range, user_id, agent_name),
        "messages": service.get_message_count(range, user_id, agent_name),
        "error_risk": service.get_error_risk(range, user_id, agent_name),
    }


@router.get("/tokens")
def get_tokens(
    range: str = Query("24h"),
    agent_name: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    aggregation: AggregationService = Depends(get_aggregation_service),
    timeseries: TimeseriesQueryService = Depends(get_timeseries_service),
):
    """Token summary plus hourly (1h-24h) or daily (7d, 30d) series."""
    range = normalize_range(range)
    hourly = range in ("1h", "6h", "24h")
    series = (
        timeseries.get_hourly_tokens(range, user_id, agent_name)
        if hourly
        else timeseries.get_daily_tokens(range, user_id, agent_name)
    )
    return {**aggregation.get_token_summary(range, user_id, agent_name), "series": series}


@router.get("/costs")
def get_costs(
    range: str = Query("24h"),
    agent_name: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    aggregation: AggregationService = Depends(get_aggregation_service),
    timeseries: TimeseriesQueryService = Depends(get_timeseries_service),
):
    range = normalize_range(range)
    hourly = range in ("1h", "6h", "24h")
    series = (
        timeseries.get_hourly_costs(range, user_id, agent_name)
        if hourly
        else timeseries.get_daily_costs(range, user_id, agent_name)
    )
    return {
        "summary": aggregation.get_cost_summary(range, user_id, agent_name),
        "series": series,
        "by_model": timeseries.get_cost_by_model(range, user_id, agent_name),
    }


@router.get("/costs/by-model")
def get_cost_by_model(
    range: str = Query("24h"),
    agent_name: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    timeseries: TimeseriesQueryService = Depends(get_timeseries_service),
):
    return timeseries.get_cost_by_model(range, user_id, agent_name)


# =============================================================================
# MESSAGES
# =============================================================================

@router.get("/messages", response_model=MessagesResponse)
def search_messages(
    range: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    service_type: Optional[str] = Query(None),
    model: Optional[str] = Query(None),
    cost_min: Optional[float] = Query(None),
    cost_max: Optional[float] = Query(None),
    limit: int = Query(config.messages_default_limit, ge=1, le=config.messages_max_limit),
    cursor: Optional[str] = Query(None),
    agent_name: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    service: AggregationService = Depends(get_aggregation_service),
):
    """Agent turns newest first; pass next_cursor back as cursor for the next page."""
    filters = MessageFilter(
        status=status,
        service_type=service_type,
        model=model,
        cost_min=cost_min,
        cost_max=cost_max,
        agent_name=agent_name,
    )
    return service.get_messages(
        user_id,
        range_=range,
        filters=filters,
        limit=limit,
        cursor=cursor,
    )


# =============================================================================
# TIME SERIES
# =============================================================================

@router.get("/timeseries/{metric}/{granularity}")
def get_timeseries(
    metric: str,
    granularity: str,
    range: str = Query("24h"),
    agent_name: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    timeseries: TimeseriesQueryService = Depends(get_timeseries_service),
):
    """metric: tokens | costs | messages; granularity: hourly | daily."""
    handlers = {
        ("tokens", "hourly"): timeseries.get_hourly_tokens,
        ("tokens", "daily"): timeseries.get_daily_tokens,
        ("costs", "hourly"): timeseries.get_hourly_costs,
        ("costs", "daily"): timeseries.get_daily_costs,
        ("messages", "hourly"): timeseries.get_hourly_messages,
        ("messages", "daily"): timeseries.get_daily_messages,
    }
    handler = handlers.get((metric, granularity))
    if handler is None:
        raise HTTPException(404, f"Unknown series {metric}/{granularity}")
    return handler(range, user_id, agent_name)


@router.get("/skills")
def get_active_skills(
    range: str = Query("24h"),
    agent_name: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    timeseries: TimeseriesQueryService = Depends(get_timeseries_service),
):
    return timeseries.get_active_skills(range, user_id, agent_name)


@router.get("/activity")
def get_recent_activity(
    range: str = Query("24h"),
    limit: int = Query(5, ge=1, le=50),
    agent_name: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    timeseries: TimeseriesQueryService = Depends(get_timeseries_service),
):
    return timeseries.get_recent_activity(range, user_id, limit=limit, agent_name=agent_name)
