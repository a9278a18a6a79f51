"""
OTLP/HTTP Ingest API

JSON-encoded OTLP export endpoints:
- POST /otlp/v1/traces
- POST /otlp/v1/metrics
- POST /otlp/v1/logs

A batch with nothing accepted is answered with a partialSuccess
placeholder, never with an error.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from agentpulse.api.deps import (
    get_ingestion_context,
    get_log_ingest_service,
    get_metric_ingest_service,
    get_trace_ingest_service,
)
from agentpulse.core.log_ingest import LogIngestService
from agentpulse.core.metric_ingest import MetricIngestService
from agentpulse.core.models import IngestionContext, IngestResult
from agentpulse.core.trace_ingest import TraceIngestService

logger = logging.getLogger("agentpulse.otlp")
router = APIRouter(prefix="/otlp/v1", tags=["OTLP"])


def export_response(result: IngestResult, rejected_field: str) -> Dict[str, Any]:
    if result.accepted > 0:
        return {}
    return {"partialSuccess": {rejected_field: 0}}


@router.post("/traces")
def export_traces(
    payload: Dict[str, Any] = Body(...),
    ctx: IngestionContext = Depends(get_ingestion_context),
    service: TraceIngestService = Depends(get_trace_ingest_service),
):
    """Ingest an ExportTraceServiceRequest."""
    result = service.ingest(payload, ctx)
    logger.info(f"Traces from {ctx.agent_name}: {result.accepted} span(s) accepted")
    return export_response(result, "rejectedSpans")


@router.post("/metrics")
def export_metrics(
    payload: Dict[str, Any] = Body(...),
    ctx: IngestionContext = Depends(get_ingestion_context),
    service: MetricIngestService = Depends(get_metric_ingest_service),
):
    """Ingest an ExportMetricsServiceRequest."""
    result = service.ingest(payload, ctx)
    logger.info(f"Metrics from {ctx.agent_name}: {result.accepted} data point(s) accepted")
    return export_response(result, "rejectedDataPoints")


@router.post("/logs")
def export_logs(
    payload: Dict[str, Any] = Body(...),
    ctx: IngestionContext = Depends(get_ingestion_context),
    service: LogIngestService = Depends(get_log_ingest_service),
):
    """Ingest an ExportLogsServiceRequest."""
    result = service.ingest(payload, ctx)
    logger.info(f"Logs from {ctx.agent_name}: {result.accepted} record(s) accepted")
    return export_response(result, "rejectedLogRecords")
