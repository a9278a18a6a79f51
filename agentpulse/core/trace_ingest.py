"""
Trace Ingest Pipeline

Persists an OTLP/JSON trace export:
- One row per span in agent_messages, llm_calls or tool_executions
- LLM call parents resolved through the per-batch identity map
- Token/model/tier totals of LLM calls rolled up into their agent turn

Rows are written one at a time. A malformed span is logged and skipped;
storage errors propagate. The rollup runs after all inserts of a resource
batch and does not undo them if it fails.

Every span that classifies as an agent turn is inserted, whatever its name.
"""

from __future__ import annotations
import logging
from typing import Optional, Dict, Any, List

from sqlalchemy import func, insert, update
from sqlalchemy.engine import Connection, Engine

from agentpulse.core.first_seen import FirstSeenStore, notify_first_telemetry
from agentpulse.core.models import IngestionContext, IngestResult, MessageAggregate, SpanKind
from agentpulse.core.otlp import (
    AttributeMap,
    STATUS_CODE_ERROR,
    attr_int,
    attr_number,
    attr_string,
    extract_attributes,
    nano_to_datetime,
    span_duration_ms,
    span_status_to_string,
    to_hex_string,
)
from agentpulse.core.pricing import ModelPricingCache
from agentpulse.core.spans import ClassifiedSpan, SpanMap, build_span_map, flatten_spans, resolve_parent
from agentpulse.database import agent_messages, llm_calls, tool_executions

logger = logging.getLogger("agentpulse.traces")


# =============================================================================
# ATTRIBUTE HELPERS
# =============================================================================

def _token_counts(attrs: AttributeMap) -> Dict[str, int]:
    return {
        "input_tokens": attr_int(attrs, "gen_ai.usage.input_tokens"),
        "output_tokens": attr_int(attrs, "gen_ai.usage.output_tokens"),
        "cache_read_tokens": attr_int(attrs, "gen_ai.usage.cache_read_input_tokens"),
        "cache_creation_tokens": attr_int(attrs, "gen_ai.usage.cache_creation_input_tokens"),
    }


def _model_name(attrs: AttributeMap) -> Optional[str]:
    return attr_string(attrs, "gen_ai.request.model") or attr_string(attrs, "gen_ai.response.model")


def _optional_int(attrs: AttributeMap, key: str) -> Optional[int]:
    value = attr_number(attrs, key)
    return int(value) if value is not None else None


def _error_message(span: Dict[str, Any]) -> Optional[str]:
    status = span.get("status") or {}
    if status.get("code") == STATUS_CODE_ERROR:
        return status.get("message")
    return None


def _status(span: Dict[str, Any]) -> str:
    return span_status_to_string((span.get("status") or {}).get("code"))


# =============================================================================
# SERVICE
# =============================================================================

class TraceIngestService:
    """Ingests OTLP trace exports for one storage backend."""

    def __init__(
        self,
        engine: Engine,
        pricing: ModelPricingCache,
        first_seen: Optional[FirstSeenStore] = None,
    ):
        self.engine = engine
        self.pricing = pricing
        self.first_seen = first_seen

    def ingest(self, request: Dict[str, Any], ctx: IngestionContext) -> IngestResult:
        result = IngestResult()

        for resource_spans in request.get("resourceSpans") or []:
            resource_attrs = extract_attributes((resource_spans.get("resource") or {}).get("attributes"))
            spans = flatten_spans(resource_spans)
            classified, span_map = build_span_map(spans, resource_attrs)

            aggregates = self._insert_all(classified, span_map, ctx, result)
            self._roll_up(aggregates)
            result.accepted += len(spans)

        if result.accepted and self.first_seen is not None:
            notify_first_telemetry(self.first_seen, ctx, "traces")

        logger.debug(f"Trace ingest for agent {ctx.agent_name}: accepted={result.accepted} skipped={result.skipped}")
        return result

    # -------------------------------------------------------------------------
    # Inserts
    # -------------------------------------------------------------------------

    def _insert_all(
        self,
        classified: List[ClassifiedSpan],
        span_map: SpanMap,
        ctx: IngestionContext,
        result: IngestResult,
    ) -> Dict[str, MessageAggregate]:
        aggregates: Dict[str, MessageAggregate] = {}

        for span in classified:
            try:
                if span.kind == SpanKind.AGENT_MESSAGE:
                    row = self._agent_message_row(span, ctx)
                    table = agent_messages
                elif span.kind == SpanKind.LLM_CALL:
                    row = self._llm_call_row(span, span_map, ctx)
                    table = llm_calls
                else:
                    row = self._tool_execution_row(span, span_map, ctx)
                    table = tool_executions
            except (TypeError, ValueError, OverflowError) as e:
                result.skipped += 1
                logger.warning(f"Skipping malformed span {span.identity.span_id or '?'}: {e}")
                continue

            with self.engine.begin() as conn:
                conn.execute(insert(table).values(**row))

            if span.kind == SpanKind.LLM_CALL:
                self._accumulate(span, span_map, aggregates)

        return aggregates

    def _agent_message_row(self, span: ClassifiedSpan, ctx: IngestionContext) -> Dict[str, Any]:
        raw, attrs = span.raw, span.attrs
        start, end = raw.get("startTimeUnixNano"), raw.get("endTimeUnixNano")
        return {
            "id": span.identity.generated_id,
            "tenant_id": ctx.tenant_id,
            "agent_id": ctx.agent_id,
            "user_id": ctx.user_id,
            "trace_id": to_hex_string(raw.get("traceId")),
            "session_key": attr_string(attrs, "session.key"),
            "session_id": attr_string(attrs, "session.id"),
            "timestamp": nano_to_datetime(start),
            "duration_ms": span_duration_ms(start, end),
            **_token_counts(attrs),
            "cost_usd": self.compute_cost(attrs),
            "status": _status(raw),
            "error_message": _error_message(raw),
            "description": raw.get("name"),
            "service_type": attr_string(attrs, "service.name") or "agent",
            "agent_name": attr_string(attrs, "agent.name") or ctx.agent_name,
            "model": _model_name(attrs),
            "routing_tier": attr_string(attrs, "manifest.routing.tier"),
            "routing_reason": attr_string(attrs, "manifest.routing.reason"),
            "skill_name": attr_string(attrs, "skill.name"),
        }

    def _llm_call_row(self, span: ClassifiedSpan, span_map: SpanMap, ctx: IngestionContext) -> Dict[str, Any]:
        raw, attrs = span.raw, span.attrs
        start, end = raw.get("startTimeUnixNano"), raw.get("endTimeUnixNano")
        return {
            "id": span.identity.generated_id,
            "tenant_id": ctx.tenant_id,
            "agent_id": ctx.agent_id,
            "turn_id": resolve_parent(span, span_map, SpanKind.AGENT_MESSAGE),
            "call_index": _optional_int(attrs, "gen_ai.call_index"),
            "gen_ai_system": attr_string(attrs, "gen_ai.system"),
            "request_model": attr_string(attrs, "gen_ai.request.model"),
            "response_model": attr_string(attrs, "gen_ai.response.model"),
            **_token_counts(attrs),
            "duration_ms": span_duration_ms(start, end),
            "ttft_ms": _optional_int(attrs, "gen_ai.server.ttft_ms"),
            "temperature": attr_number(attrs, "llm.request.temperature"),
            "max_output_tokens": _optional_int(attrs, "llm.request.max_tokens"),
            "timestamp": nano_to_datetime(start),
        }

    def _tool_execution_row(self, span: ClassifiedSpan, span_map: SpanMap, ctx: IngestionContext) -> Dict[str, Any]:
        raw, attrs = span.raw, span.attrs
        return {
            "id": span.identity.generated_id,
            "tenant_id": ctx.tenant_id,
            "agent_id": ctx.agent_id,
            "llm_call_id": resolve_parent(span, span_map, SpanKind.LLM_CALL),
            "tool_name": attr_string(attrs, "tool.name") or raw.get("name") or "unknown",
            "duration_ms": span_duration_ms(raw.get("startTimeUnixNano"), raw.get("endTimeUnixNano")),
            "status": _status(raw),
            "error_message": _error_message(raw),
        }

    # -------------------------------------------------------------------------
    # Cost & rollup
    # -------------------------------------------------------------------------

    def compute_cost(self, attrs: AttributeMap) -> Optional[float]:
        """Cost of one span, or None when model, tokens or pricing are missing."""
        model = _model_name(attrs)
        if not model:
            return None
        tokens = _token_counts(attrs)
        if tokens["input_tokens"] == 0 and tokens["output_tokens"] == 0:
            return None
        pricing = self.pricing.get_by_model(model)
        if pricing is None:
            return None
        return pricing.cost(tokens["input_tokens"], tokens["output_tokens"])

    def _accumulate(self, span: ClassifiedSpan, span_map: SpanMap, aggregates: Dict[str, MessageAggregate]) -> None:
        message_id = resolve_parent(span, span_map, SpanKind.AGENT_MESSAGE)
        if message_id is None:
            return
        tokens = _token_counts(span.attrs)
        aggregates.setdefault(message_id, MessageAggregate()).add(
            tokens["input_tokens"],
            tokens["output_tokens"],
            tokens["cache_read_tokens"],
            tokens["cache_creation_tokens"],
            _model_name(span.attrs),
            attr_string(span.attrs, "manifest.routing.tier"),
        )

    def _roll_up(self, aggregates: Dict[str, MessageAggregate]) -> None:
        if not aggregates:
            return

        with self.engine.begin() as conn:
            for message_id, agg in aggregates.items():
                if agg.is_empty:
                    continue
                self._apply_aggregate(conn, message_id, agg)

    def _apply_aggregate(self, conn: Connection, message_id: str, agg: MessageAggregate) -> None:
        cost = None
        if agg.model:
            pricing = self.pricing.get_by_model(agg.model)
            if pricing is not None:
                cost = pricing.cost(agg.input_tokens, agg.output_tokens)

        conn.execute(
            update(agent_messages)
            .where(agent_messages.c.id == message_id)
            .values(
                input_tokens=agg.input_tokens,
                output_tokens=agg.output_tokens,
                cache_read_tokens=agg.cache_read_tokens,
                cache_creation_tokens=agg.cache_creation_tokens,
                model=func.coalesce(agent_messages.c.model, agg.model),
                routing_tier=func.coalesce(agent_messages.c.routing_tier, agg.routing_tier),
                cost_usd=cost,
            )
        )
