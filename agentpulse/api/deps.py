"""
Shared API Dependencies

Caller identity and service wiring for the routers. Authentication itself
is done upstream: an auth middleware or gateway stores the caller on
request.state (ingestion_context for OTLP routes, user_id for queries).
"""

import logging
from typing import Optional

from fastapi import Depends, Request

from agentpulse.core.agent_analytics import AgentAnalyticsService, AgentScope
from agentpulse.core.aggregation import AggregationService
from agentpulse.core.config import config
from agentpulse.core.first_seen import FirstSeenStore, create_first_seen_store
from agentpulse.core.log_ingest import LogIngestService
from agentpulse.core.metric_ingest import MetricIngestService
from agentpulse.core.models import AuthenticationError, IngestionContext
from agentpulse.core.pricing import ModelPricingCache, get_pricing_cache
from agentpulse.core.timeseries import TimeseriesQueryService
from agentpulse.core.trace_ingest import TraceIngestService
from agentpulse.database import Database, get_database

logger = logging.getLogger("agentpulse.api")

_first_seen_store: Optional[FirstSeenStore] = None


# =============================================================================
# IDENTITY
# =============================================================================

def get_ingestion_context(request: Request) -> IngestionContext:
    ctx = getattr(request.state, "ingestion_context", None)
    if not isinstance(ctx, IngestionContext):
        raise AuthenticationError("Missing or invalid ingestion credentials")
    return ctx


def get_current_user_id(request: Request) -> str:
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise AuthenticationError("Not authenticated")
    return user_id


def get_agent_scope(ctx: IngestionContext = Depends(get_ingestion_context)) -> AgentScope:
    return AgentScope(tenant_id=ctx.tenant_id, agent_id=ctx.agent_id)


# =============================================================================
# SERVICES
# =============================================================================

def get_first_seen_store() -> FirstSeenStore:
    global _first_seen_store
    if _first_seen_store is None:
        _first_seen_store = create_first_seen_store(config.first_seen_dir)
    return _first_seen_store


def get_trace_ingest_service(
    db: Database = Depends(get_database),
    pricing: ModelPricingCache = Depends(get_pricing_cache),
    first_seen: FirstSeenStore = Depends(get_first_seen_store),
) -> TraceIngestService:
    return TraceIngestService(db.engine, pricing, first_seen)


def get_metric_ingest_service(
    db: Database = Depends(get_database),
    first_seen: FirstSeenStore = Depends(get_first_seen_store),
) -> MetricIngestService:
    return MetricIngestService(db.engine, first_seen)


def get_log_ingest_service(
    db: Database = Depends(get_database),
    first_seen: FirstSeenStore = Depends(get_first_seen_store),
) -> LogIngestService:
    return LogIngestService(db.engine, first_seen)


def get_aggregation_service(db: Database = Depends(get_database)) -> AggregationService:
    return AggregationService(db.engine)


def get_timeseries_service(db: Database = Depends(get_database)) -> TimeseriesQueryService:
    return TimeseriesQueryService(db.engine)


def get_agent_analytics_service(db: Database = Depends(get_database)) -> AgentAnalyticsService:
    return AgentAnalyticsService(db.engine)
