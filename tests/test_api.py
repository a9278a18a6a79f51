import pytest
from fastapi.testclient import TestClient

from agentpulse.api.deps import get_current_user_id, get_first_seen_store, get_ingestion_context
from agentpulse.core.pricing import get_pricing_cache
from agentpulse.database import get_database
from main import app

from conftest import USER_ID, ago

TRACE_EXPORT = {
    "resourceSpans": [
        {
            "resource": {"attributes": [{"key": "service.name", "value": {"stringValue": "helpdesk"}}]},
            "scopeSpans": [
                {
                    "spans": [
                        {
                            "traceId": "t1",
                            "spanId": "m1",
                            "name": "answer question",
                            "startTimeUnixNano": "1700000000000000000",
                            "endTimeUnixNano": "1700000000500000000",
                        }
                    ]
                }
            ],
        }
    ]
}


@pytest.fixture
def anonymous_client(db, pricing, first_seen):
    app.dependency_overrides[get_database] = lambda: db
    app.dependency_overrides[get_pricing_cache] = lambda: pricing
    app.dependency_overrides[get_first_seen_store] = lambda: first_seen
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def client(anonymous_client, ctx):
    app.dependency_overrides[get_ingestion_context] = lambda: ctx
    app.dependency_overrides[get_current_user_id] = lambda: USER_ID
    return anonymous_client


def test_health(anonymous_client):
    response = anonymous_client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_requests_without_identity_are_rejected(anonymous_client):
    ingest = anonymous_client.post("/otlp/v1/traces", json=TRACE_EXPORT)
    query = anonymous_client.get("/api/v1/overview")

    assert ingest.status_code == 401
    assert ingest.json()["error"] == {
        "message": "Missing or invalid ingestion credentials",
        "type": "AuthenticationError",
    }
    assert query.status_code == 401
    assert query.json()["error"]["type"] == "AuthenticationError"


def test_export_traces(client):
    response = client.post("/otlp/v1/traces", json=TRACE_EXPORT)

    assert response.status_code == 200
    assert response.json() == {}

    messages = client.get("/api/v1/messages").json()
    assert messages["total_count"] == 1
    assert messages["items"][0]["description"] == "answer question"
    assert messages["items"][0]["service_type"] == "helpdesk"


def test_empty_exports_report_partial_success(client):
    assert client.post("/otlp/v1/traces", json={}).json() == {"partialSuccess": {"rejectedSpans": 0}}
    assert client.post("/otlp/v1/metrics", json={}).json() == {"partialSuccess": {"rejectedDataPoints": 0}}
    assert client.post("/otlp/v1/logs", json={}).json() == {"partialSuccess": {"rejectedLogRecords": 0}}


def test_overview(client, add_message):
    add_message(input_tokens=100, output_tokens=50, cost_usd=0.2)
    add_message(status="error")

    response = client.get("/api/v1/overview", params={"range": "bogus"})

    assert response.status_code == 200
    body = response.json()
    assert body["range"] == "24h"
    assert body["has_data"] is True
    assert body["tokens"]["value"] == 150
    assert body["messages"]["value"] == 2
    assert body["error_risk"]["rating"] == "high"


def test_messages_limit_validation(client):
    assert client.get("/api/v1/messages", params={"limit": 500}).status_code == 422


def test_messages_default_page_size(client, add_message):
    for i in range(55):
        add_message(timestamp=ago(minutes=i + 1))

    page = client.get("/api/v1/messages").json()

    assert len(page["items"]) == 50
    assert page["total_count"] == 55
    assert page["next_cursor"]


def test_timeseries_routes(client, add_message):
    add_message(input_tokens=4, output_tokens=4)

    tokens = client.get("/api/v1/timeseries/tokens/hourly")
    unknown = client.get("/api/v1/timeseries/latency/hourly")

    assert tokens.status_code == 200
    assert tokens.json()[0]["input_tokens"] == 4
    assert unknown.status_code == 404


def test_rename_and_delete_agent(client, add_agent):
    add_agent("support-bot")
    add_agent("sales-bot")

    conflict = client.patch("/api/v1/agents/support-bot", json={"name": "sales-bot"})
    renamed = client.patch("/api/v1/agents/support-bot", json={"name": "  helpdesk-bot "})
    missing = client.delete("/api/v1/agents/support-bot")
    deleted = client.delete("/api/v1/agents/helpdesk-bot")

    assert conflict.status_code == 409
    assert renamed.json() == {"renamed": True, "name": "helpdesk-bot"}
    assert missing.status_code == 404
    assert deleted.json() == {"deleted": True}
    assert [a["agent_name"] for a in client.get("/api/v1/agents").json()] == ["sales-bot"]


def test_agent_scoped_usage(client, add_message):
    add_message(input_tokens=30, output_tokens=10)
    add_message(agent_id="someone-else", input_tokens=500)
    add_message(input_tokens=10, output_tokens=10, timestamp=ago(hours=30))

    usage = client.get("/api/v1/agent/usage").json()

    assert usage["total_tokens"] == 40
    assert usage["message_count"] == 1
    assert usage["trend_pct"] == 100


def test_agent_scoped_costs(client, add_message):
    add_message(model="gpt-4o", cost_usd=0.3, input_tokens=300)
    add_message(model="claude-opus-4-6", cost_usd=0.1, input_tokens=10)
    add_message(agent_id="someone-else", model="gpt-4o", cost_usd=9.0)

    costs = client.get("/api/v1/agent/costs", params={"range": "7d"}).json()

    assert costs["range"] == "7d"
    assert costs["total_cost_usd"] == pytest.approx(0.4)
    assert [row["model"] for row in costs["by_model"]] == ["gpt-4o", "claude-opus-4-6"]
