import pytest

from agentpulse.core.timeseries import TimeseriesQueryService

from conftest import USER_ID, ago


@pytest.fixture
def service(engine):
    return TimeseriesQueryService(engine)


def test_hourly_tokens_bucketed_by_hour(service, add_message):
    stamp = ago(hours=2)
    add_message(timestamp=stamp, input_tokens=10, output_tokens=1)
    add_message(timestamp=stamp, input_tokens=20, output_tokens=2)
    add_message(timestamp=ago(minutes=1), input_tokens=5, output_tokens=5)
    add_message(timestamp=ago(days=2), input_tokens=999, output_tokens=999)

    series = service.get_hourly_tokens("24h", USER_ID)

    assert series[0] == {"hour": stamp[:13] + ":00:00", "input_tokens": 30, "output_tokens": 3}
    assert sum(point["input_tokens"] for point in series) == 35
    assert [p["hour"] for p in series] == sorted(p["hour"] for p in series)


def test_daily_costs_and_messages(service, add_message):
    stamp = ago(days=3)
    add_message(timestamp=stamp, cost_usd=0.5)
    add_message(timestamp=stamp, cost_usd=0.25)

    costs = service.get_daily_costs("7d", USER_ID)
    counts = service.get_daily_messages("7d", USER_ID)

    assert costs == [{"date": stamp[:10], "cost": 0.75}]
    assert counts == [{"date": stamp[:10], "count": 2}]


def test_series_respect_agent_filter(service, add_message):
    add_message(agent_name="support-bot", input_tokens=1)
    add_message(agent_name="sales-bot", input_tokens=2)

    series = service.get_hourly_messages("1h", USER_ID, agent_name="sales-bot")

    assert sum(point["count"] for point in series) == 1


def test_cost_by_model_share(service, add_message):
    add_message(model="gpt-4o", input_tokens=300, output_tokens=0, cost_usd=0.3)
    add_message(model="claude-opus-4-6", input_tokens=100, output_tokens=0, cost_usd=0.1)
    add_message(model=None, input_tokens=1000)

    breakdown = service.get_cost_by_model("24h", USER_ID)

    assert [row["model"] for row in breakdown] == ["gpt-4o", "claude-opus-4-6"]
    assert [row["share_pct"] for row in breakdown] == [75.0, 25.0]
    assert breakdown[0]["estimated_cost"] == pytest.approx(0.3)


def test_active_skills(service, add_message):
    add_message(skill_name="triage", timestamp=ago(minutes=10))
    add_message(skill_name="triage", timestamp=ago(minutes=2))
    add_message(skill_name="refund")
    add_message()

    skills = service.get_active_skills("24h", USER_ID)

    assert [(s["name"], s["run_count"]) for s in skills] == [("triage", 2), ("refund", 1)]
    assert skills[0]["status"] == "active"


def test_recent_activity_newest_first(service, add_message):
    ids = [add_message(timestamp=ago(minutes=i + 1)) for i in range(7)]

    activity = service.get_recent_activity("24h", USER_ID)

    assert [row["id"] for row in activity] == ids[:5]


def test_agent_list(service, add_agent, add_message):
    add_agent("support-bot", display_name="Support")
    add_agent("idle-bot")
    add_agent("foreign-bot", tenant_id="tenant-2")
    add_message(input_tokens=10, output_tokens=5, cost_usd=0.01)
    add_message(input_tokens=1, output_tokens=1, timestamp=ago(hours=5))

    roster = {agent["agent_name"]: agent for agent in service.get_agent_list(USER_ID)}

    assert set(roster) == {"support-bot", "idle-bot"}
    support = roster["support-bot"]
    assert support["display_name"] == "Support"
    assert support["message_count"] == 2
    assert support["total_tokens"] == 17
    assert sum(support["sparkline"]) == 17
    assert roster["idle-bot"]["message_count"] == 0
    assert roster["idle-bot"]["sparkline"] == []
    assert roster["idle-bot"]["display_name"] == "idle-bot"


def test_cost_by_model_share_rounds_halves_up(service, add_message):
    add_message(model="gpt-4o", input_tokens=15, output_tokens=0)
    add_message(model="claude-opus-4-6", input_tokens=1, output_tokens=0)

    breakdown = service.get_cost_by_model("24h", USER_ID)

    # 93.75% and 6.25%
    assert [row["share_pct"] for row in breakdown] == [93.8, 6.3]
