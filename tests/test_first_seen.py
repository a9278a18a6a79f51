from agentpulse.core.first_seen import (
    InMemoryFirstSeenStore,
    MarkerFileFirstSeenStore,
    agent_key,
    create_first_seen_store,
    notify_first_telemetry,
)


def test_in_memory_store_marks_once():
    store = InMemoryFirstSeenStore()

    assert store.mark("t:a") is True
    assert store.mark("t:a") is False
    assert store.seen("t:a")
    assert not store.seen("t:b")


def test_marker_files_survive_a_new_store(tmp_path):
    first = MarkerFileFirstSeenStore(str(tmp_path / "markers"))
    assert first.mark("tenant-1:agent-1") is True

    second = MarkerFileFirstSeenStore(str(tmp_path / "markers"))
    assert second.seen("tenant-1:agent-1")
    assert second.mark("tenant-1:agent-1") is False


def test_notify_first_telemetry(ctx, caplog):
    store = InMemoryFirstSeenStore()

    with caplog.at_level("INFO", logger="agentpulse.first_seen"):
        assert notify_first_telemetry(store, ctx, "logs") is True
        assert notify_first_telemetry(store, ctx, "traces") is False

    assert store.seen(agent_key(ctx))
    assert sum("First telemetry" in r.message for r in caplog.records) == 1


def test_factory(tmp_path):
    assert isinstance(create_first_seen_store(""), InMemoryFirstSeenStore)
    assert isinstance(create_first_seen_store(str(tmp_path)), MarkerFileFirstSeenStore)
