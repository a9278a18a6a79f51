"""
Metric Ingest Pipeline

Maps named OTLP gauge/sum data points onto snapshot rows:
- gen_ai.usage.*_tokens -> token_usage_snapshots (one field set, others 0)
- gen_ai.usage.cost / gen_ai.cost.usd -> cost_snapshots

Any other metric name is ignored and does not count as accepted.
"""

from __future__ import annotations
import logging
import uuid
from typing import Optional, Dict, Any, List

from sqlalchemy import insert
from sqlalchemy.engine import Engine

from agentpulse.core.first_seen import FirstSeenStore, notify_first_telemetry
from agentpulse.core.models import IngestionContext, IngestResult
from agentpulse.core.otlp import attr_string, extract_attributes, get_numeric_value, nano_to_datetime
from agentpulse.database import cost_snapshots, token_usage_snapshots

logger = logging.getLogger("agentpulse.metrics")

# Metric name -> token_usage_snapshots column
TOKEN_METRICS: Dict[str, str] = {
    "gen_ai.usage.input_tokens": "input_tokens",
    "gen_ai.usage.output_tokens": "output_tokens",
    "gen_ai.usage.total_tokens": "total_tokens",
    "gen_ai.usage.cache_read_tokens": "cache_read_tokens",
    "gen_ai.usage.cache_creation_tokens": "cache_creation_tokens",
}

COST_METRICS = frozenset({"gen_ai.usage.cost", "gen_ai.cost.usd"})

TOKEN_FIELDS = ("input_tokens", "output_tokens", "cache_read_tokens", "cache_creation_tokens", "total_tokens")


def data_points(metric: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Data points of a gauge or sum metric; empty for other kinds."""
    for kind in ("gauge", "sum"):
        payload = metric.get(kind)
        if isinstance(payload, dict):
            return [p for p in payload.get("dataPoints") or [] if isinstance(p, dict)]
    return []


class MetricIngestService:
    """Ingests OTLP metric exports."""

    def __init__(self, engine: Engine, first_seen: Optional[FirstSeenStore] = None):
        self.engine = engine
        self.first_seen = first_seen

    def ingest(self, request: Dict[str, Any], ctx: IngestionContext) -> IngestResult:
        result = IngestResult()

        for resource_metrics in request.get("resourceMetrics") or []:
            resource_attrs = extract_attributes((resource_metrics.get("resource") or {}).get("attributes"))
            agent_name = attr_string(resource_attrs, "agent.name") or ctx.agent_name

            for scope_metrics in resource_metrics.get("scopeMetrics") or []:
                for metric in scope_metrics.get("metrics") or []:
                    name = metric.get("name")
                    if name in TOKEN_METRICS:
                        self._ingest_points(metric, ctx, agent_name, result, token_field=TOKEN_METRICS[name])
                    elif name in COST_METRICS:
                        self._ingest_points(metric, ctx, agent_name, result)

        if result.accepted and self.first_seen is not None:
            notify_first_telemetry(self.first_seen, ctx, "metrics")

        return result

    def _ingest_points(
        self,
        metric: Dict[str, Any],
        ctx: IngestionContext,
        agent_name: str,
        result: IngestResult,
        token_field: Optional[str] = None,
    ) -> None:
        for point in data_points(metric):
            try:
                snapshot_time = nano_to_datetime(point.get("timeUnixNano"))
                value = get_numeric_value(point)
            except (TypeError, ValueError, OverflowError) as e:
                result.skipped += 1
                logger.warning(f"Skipping data point of {metric.get('name')}: {e}")
                continue

            if token_field is not None:
                table = token_usage_snapshots
                row = self._token_row(ctx, agent_name, snapshot_time, token_field, value)
            else:
                table = cost_snapshots
                row = self._cost_row(ctx, agent_name, snapshot_time, point, value)

            with self.engine.begin() as conn:
                conn.execute(insert(table).values(**row))
            result.accepted += 1

    def _token_row(
        self,
        ctx: IngestionContext,
        agent_name: str,
        snapshot_time: str,
        token_field: str,
        value: float,
    ) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "tenant_id": ctx.tenant_id,
            "agent_id": ctx.agent_id,
            "agent_name": agent_name,
            "snapshot_time": snapshot_time,
        }
        for field_name in TOKEN_FIELDS:
            row[field_name] = int(value) if field_name == token_field else 0
        return row

    def _cost_row(
        self,
        ctx: IngestionContext,
        agent_name: str,
        snapshot_time: str,
        point: Dict[str, Any],
        value: float,
    ) -> Dict[str, Any]:
        point_attrs = extract_attributes(point.get("attributes"))
        model = (
            attr_string(point_attrs, "gen_ai.request.model")
            or attr_string(point_attrs, "gen_ai.response.model")
            or agent_name
        )
        return {
            "id": str(uuid.uuid4()),
            "tenant_id": ctx.tenant_id,
            "agent_id": ctx.agent_id,
            "agent_name": agent_name,
            "snapshot_time": snapshot_time,
            "cost_usd": float(value),
            "model": model,
        }
