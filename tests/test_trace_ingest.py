import pytest
from sqlalchemy import select

from agentpulse.core.first_seen import agent_key
from agentpulse.core.trace_ingest import TraceIngestService
from agentpulse.database import agent_messages, llm_calls, tool_executions

START = 1700000000000000000


def attr(key, value):
    if isinstance(value, bool):
        return {"key": key, "value": {"boolValue": value}}
    if isinstance(value, int):
        return {"key": key, "value": {"intValue": str(value)}}
    if isinstance(value, float):
        return {"key": key, "value": {"doubleValue": value}}
    return {"key": key, "value": {"stringValue": value}}


def span(span_id, name, parent=None, duration_ms=100, status=None, **attributes):
    result = {
        "traceId": "trace-1",
        "spanId": span_id,
        "name": name,
        "startTimeUnixNano": str(START),
        "endTimeUnixNano": str(START + duration_ms * 1_000_000),
        "attributes": [attr(k, v) for k, v in attributes.items()],
    }
    if parent:
        result["parentSpanId"] = parent
    if status:
        result["status"] = status
    return result


def export(*spans, resource=None):
    return {
        "resourceSpans": [
            {
                "resource": {"attributes": [attr(k, v) for k, v in (resource or {}).items()]},
                "scopeSpans": [{"spans": list(spans)}],
            }
        ]
    }


def llm_span(span_id, parent, model="gpt-4o", input_tokens=0, output_tokens=0, **extra):
    attributes = {
        "gen_ai.system": "openai",
        "gen_ai.request.model": model,
        "gen_ai.usage.input_tokens": input_tokens,
        "gen_ai.usage.output_tokens": output_tokens,
        **extra,
    }
    return span(span_id, "chat", parent=parent, **attributes)


@pytest.fixture
def service(engine, pricing, first_seen):
    return TraceIngestService(engine, pricing, first_seen)


def fetch(engine, table):
    with engine.connect() as conn:
        return [dict(r) for r in conn.execute(select(table)).mappings().all()]


def test_empty_export_accepts_nothing(service, ctx, engine):
    assert service.ingest({}, ctx).accepted == 0
    assert service.ingest({"resourceSpans": []}, ctx).accepted == 0
    assert fetch(engine, agent_messages) == []


def test_agent_message_row(service, ctx, engine):
    payload = export(
        span(
            "m1",
            "handle ticket",
            duration_ms=250,
            **{"session.key": "sk-1", "skill.name": "triage", "manifest.routing.reason": "short prompt"},
        ),
        resource={"service.name": "helpdesk"},
    )

    result = service.ingest(payload, ctx)

    assert result.accepted == 1
    [row] = fetch(engine, agent_messages)
    assert row["tenant_id"] == ctx.tenant_id
    assert row["agent_id"] == ctx.agent_id
    assert row["user_id"] == ctx.user_id
    assert row["timestamp"] == "2023-11-14T22:13:20.000"
    assert row["duration_ms"] == 250
    assert row["status"] == "ok"
    assert row["description"] == "handle ticket"
    assert row["service_type"] == "helpdesk"
    assert row["agent_name"] == "support-bot"
    assert row["session_key"] == "sk-1"
    assert row["skill_name"] == "triage"
    assert row["routing_reason"] == "short prompt"
    assert row["cost_usd"] is None


def test_span_cost_from_pricing(service, ctx, engine):
    payload = export(
        span(
            "m1",
            "turn",
            **{
                "gen_ai.request.model": "gpt-4o",
                "gen_ai.usage.input_tokens": 100,
                "gen_ai.usage.output_tokens": 50,
            },
        )
    )

    service.ingest(payload, ctx)

    [row] = fetch(engine, agent_messages)
    assert row["cost_usd"] == pytest.approx(0.2)
    assert row["model"] == "gpt-4o"


def test_llm_calls_roll_up_into_their_turn(service, ctx, engine):
    payload = export(
        span("m1", "turn"),
        llm_span("c1", "m1", input_tokens=100, output_tokens=20, **{"manifest.routing.tier": "standard"}),
        llm_span("c2", "m1", model="claude-opus-4-6", input_tokens=50, output_tokens=30,
                 **{"manifest.routing.tier": "premium"}),
    )

    result = service.ingest(payload, ctx)

    assert result.accepted == 3
    [message] = fetch(engine, agent_messages)
    assert message["input_tokens"] == 150
    assert message["output_tokens"] == 50
    # first model and tier seen win
    assert message["model"] == "gpt-4o"
    assert message["routing_tier"] == "standard"
    assert message["cost_usd"] == pytest.approx(150 * 0.001 + 50 * 0.002)

    calls = fetch(engine, llm_calls)
    assert len(calls) == 2
    assert {c["turn_id"] for c in calls} == {message["id"]}


def test_rollup_keeps_model_already_on_the_turn(service, ctx, engine):
    payload = export(
        span("m1", "turn", **{"gen_ai.request.model": "claude-opus-4-6"}),
        llm_span("c1", "m1", input_tokens=10, output_tokens=10),
    )

    service.ingest(payload, ctx)

    [message] = fetch(engine, agent_messages)
    assert message["model"] == "claude-opus-4-6"
    assert message["input_tokens"] == 10


def test_rollup_skips_turns_without_tokens(service, ctx, engine):
    payload = export(span("m1", "turn"), llm_span("c1", "m1"))

    service.ingest(payload, ctx)

    [message] = fetch(engine, agent_messages)
    assert message["model"] is None
    assert message["input_tokens"] == 0


def test_error_status(service, ctx, engine):
    payload = export(span("m1", "turn", status={"code": 2, "message": "rate limited"}))

    service.ingest(payload, ctx)

    [row] = fetch(engine, agent_messages)
    assert row["status"] == "error"
    assert row["error_message"] == "rate limited"


def test_tool_execution_links_to_llm_call(service, ctx, engine):
    payload = export(
        span("t1", "tool", parent="c1", **{"tool.name": "web_search"}),
        llm_span("c1", "m1", input_tokens=5, output_tokens=5),
        span("m1", "turn"),
        span("t2", "orphan", parent="m1", **{"tool.name": "calculator"}),
    )

    service.ingest(payload, ctx)

    [call] = fetch(engine, llm_calls)
    tools = {t["tool_name"]: t for t in fetch(engine, tool_executions)}
    assert tools["web_search"]["llm_call_id"] == call["id"]
    # parent is an agent turn, not an LLM call
    assert tools["calculator"]["llm_call_id"] is None


def test_malformed_span_is_skipped(service, ctx, engine):
    bad = span("m2", "broken")
    bad["startTimeUnixNano"] = "yesterday"

    result = service.ingest(export(span("m1", "turn"), bad), ctx)

    assert result.skipped == 1
    assert len(fetch(engine, agent_messages)) == 1


def test_first_telemetry_is_marked_once(service, ctx, first_seen):
    service.ingest(export(span("m1", "turn")), ctx)

    assert first_seen.seen(agent_key(ctx))
    assert first_seen.mark(agent_key(ctx)) is False


def test_unknown_model_is_tracked(service, ctx, tracker):
    service.ingest(
        export(span("m1", "turn", **{
            "gen_ai.request.model": "mystery-model",
            "gen_ai.usage.input_tokens": 10,
        })),
        ctx,
    )

    assert tracker.pending() == {"mystery-model": 1}


def test_infinite_token_count_does_not_abort_batch(service, ctx, engine):
    bad = span("m2", "overflow")
    bad["attributes"].append({"key": "gen_ai.usage.input_tokens", "value": {"doubleValue": "Infinity"}})

    result = service.ingest(export(span("m1", "turn"), bad), ctx)

    assert result.accepted == 2
    assert result.skipped == 0
    rows = {r["description"]: r for r in fetch(engine, agent_messages)}
    assert set(rows) == {"turn", "overflow"}
    assert rows["overflow"]["input_tokens"] == 0
