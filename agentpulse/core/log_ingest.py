"""
Log Ingest Pipeline

One agent_logs row per OTLP log record. Severity comes from severityText
when set, otherwise from the severityNumber band. String bodies are stored
as-is; any other body is stored as compact JSON.
"""

from __future__ import annotations
import json
import logging
import uuid
from typing import Optional, Dict, Any

from sqlalchemy import insert
from sqlalchemy.engine import Engine

from agentpulse.core.first_seen import FirstSeenStore, notify_first_telemetry
from agentpulse.core.models import IngestionContext, IngestResult
from agentpulse.core.otlp import (
    attr_string,
    extract_attributes,
    nano_to_datetime,
    severity_number_to_string,
    to_hex_string,
)
from agentpulse.database import agent_logs

logger = logging.getLogger("agentpulse.logs")


def log_severity(record: Dict[str, Any]) -> str:
    text = record.get("severityText")
    if isinstance(text, str) and text:
        return text.lower()
    return severity_number_to_string(record.get("severityNumber"))


def log_body(record: Dict[str, Any]) -> Optional[str]:
    body = record.get("body")
    if body is None:
        return None
    if isinstance(body, dict) and isinstance(body.get("stringValue"), str):
        return body["stringValue"]
    return json.dumps(body, separators=(",", ":"))


def _record_time(record: Dict[str, Any]) -> str:
    # observedTimeUnixNano is set by collectors when the source omits timeUnixNano
    nano = record.get("timeUnixNano")
    if nano in (None, "", "0", 0):
        nano = record.get("observedTimeUnixNano")
    return nano_to_datetime(nano)


class LogIngestService:
    """Ingests OTLP log exports."""

    def __init__(self, engine: Engine, first_seen: Optional[FirstSeenStore] = None):
        self.engine = engine
        self.first_seen = first_seen

    def ingest(self, request: Dict[str, Any], ctx: IngestionContext) -> IngestResult:
        result = IngestResult()

        for resource_logs in request.get("resourceLogs") or []:
            resource_attrs = extract_attributes((resource_logs.get("resource") or {}).get("attributes"))
            agent_name = attr_string(resource_attrs, "agent.name") or ctx.agent_name

            for scope_logs in resource_logs.get("scopeLogs") or []:
                for record in scope_logs.get("logRecords") or []:
                    if not isinstance(record, dict):
                        continue
                    try:
                        row = self._log_row(record, ctx, agent_name)
                    except (TypeError, ValueError, OverflowError) as e:
                        result.skipped += 1
                        logger.warning(f"Skipping malformed log record: {e}")
                        continue

                    with self.engine.begin() as conn:
                        conn.execute(insert(agent_logs).values(**row))
                    result.accepted += 1

        if result.accepted and self.first_seen is not None:
            notify_first_telemetry(self.first_seen, ctx, "logs")

        return result

    def _log_row(self, record: Dict[str, Any], ctx: IngestionContext, agent_name: str) -> Dict[str, Any]:
        attrs = extract_attributes(record.get("attributes"))
        return {
            "id": str(uuid.uuid4()),
            "tenant_id": ctx.tenant_id,
            "agent_id": ctx.agent_id,
            "agent_name": agent_name,
            "timestamp": _record_time(record),
            "severity": log_severity(record),
            "body": log_body(record),
            "trace_id": to_hex_string(record.get("traceId")) or None,
            "span_id": to_hex_string(record.get("spanId")) or None,
            "attributes": json.dumps(attrs) if attrs else None,
        }
