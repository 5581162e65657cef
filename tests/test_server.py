"""Tests for configuration loading and the HTTP surface."""

import asyncio
import json
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import prometheus_client.core
import pydantic
import pytest
from starlette.testclient import TestClient

from slurm_inspector import collector, server, store
from slurm_inspector.types import (
    JobRecord,
    JobState,
    NodeRecord,
    NodeState,
    PartitionRecord,
    PartitionState,
    RunMode,
    Snapshot,
    SourceKind,
)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_config_defaults():
    """Defaults describe a live deployment polling every minute."""
    config = server.InspectorConfig()

    assert config.interval == 60.0
    assert config.run_mode is RunMode.LIVE
    assert config.node_command[0] == "sinfo"
    assert config.job_command[0] == "squeue"


@pytest.mark.parametrize("field", ["interval", "fetch_timeout"])
@pytest.mark.parametrize("value", [0, -10])
def test_config_rejects_non_positive_durations(field, value):
    """Non-positive interval or timeout fails validation at load time."""
    with pytest.raises(pydantic.ValidationError):
        server.InspectorConfig(**{field: value})


def test_config_rejects_unknown_run_mode():
    with pytest.raises(pydantic.ValidationError):
        server.InspectorConfig(run_mode="simulated")


def test_config_rejects_bad_column_layout():
    """Column overrides are checked when the config is loaded."""
    with pytest.raises(pydantic.ValidationError, match="unknown columns"):
        server.InspectorConfig(node_columns=["name", "colour"])


def test_config_layout_overrides():
    """Configured columns and delimiter reach the parser layouts."""
    config = server.InspectorConfig(job_columns=["job_id", "state"], delimiter="|")
    layouts = config.layouts()

    assert layouts[SourceKind.JOBS].columns == ("job_id", "state")
    assert layouts[SourceKind.JOBS].delimiter == "|"
    assert layouts[SourceKind.NODES].delimiter == "|"


def test_config_is_immutable():
    config = server.InspectorConfig()

    with pytest.raises(pydantic.ValidationError):
        config.interval = 5.0


def test_load_config_from_file(tmp_path):
    """JSON config files are validated into InspectorConfig."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"interval": 15, "run_mode": "synthetic"}))

    config = server.load_config(str(path))

    assert config.interval == 15.0
    assert config.run_mode is RunMode.SYNTHETIC


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        server.load_config(str(tmp_path / "absent.json"))


def test_create_app_fails_fast_on_invalid_config(tmp_path, monkeypatch):
    """An invalid interval stops startup before any poller exists."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"interval": 0}))
    monkeypatch.setenv(server.CONFIG_ENV_VAR, str(path))

    with pytest.raises(pydantic.ValidationError):
        server.create_app()


# ---------------------------------------------------------------------------
# HTTP endpoints
# ---------------------------------------------------------------------------


@pytest.fixture
def snapshot_store() -> store.SnapshotStore:
    return store.SnapshotStore()


@pytest.fixture
def client(snapshot_store: store.SnapshotStore) -> TestClient:
    """App without a poller so the test controls what is published."""
    registry = prometheus_client.core.CollectorRegistry()
    registry.register(collector.SnapshotCollector(snapshot_store))
    app = server.create_starlette_app(snapshot_store=snapshot_store, registry=registry)
    return TestClient(app)


def test_snapshot_endpoint_loading(client: TestClient):
    """Before the first refresh the endpoint reports loading."""
    response = client.get("/api/snapshot")

    assert response.status_code == 503
    assert response.json()["status"] == "loading"


def test_snapshot_endpoint_serves_current(client, snapshot_store):
    """The current snapshot is served as JSON with derived partition fields."""
    snapshot_store.publish(
        Snapshot(
            captured_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            nodes=(NodeRecord(name="n1", state=NodeState.IDLE, cpus=4, partition="batch"),),
            partitions=(
                PartitionRecord(
                    name="batch",
                    state=PartitionState.UP,
                    nodes=("n1",),
                    reported_node_count=2,
                ),
            ),
            jobs=(
                JobRecord(
                    job_id="7",
                    user="alice",
                    state=JobState.RUNNING,
                    elapsed=timedelta(minutes=5),
                    nodes=("n1",),
                ),
            ),
            parse_warnings=1,
        ),
    )

    response = client.get("/api/snapshot")
    body = response.json()

    assert response.status_code == 200
    assert body["status"] == "fresh"
    assert body["stale"] is False
    assert body["nodes"][0]["name"] == "n1"
    assert body["nodes"][0]["state"] == "idle"
    assert body["partitions"][0]["node_count"] == 1
    assert body["partitions"][0]["node_count_mismatch"] is True
    assert body["jobs"][0]["state"] == "running"
    assert body["jobs"][0]["nodes"] == ["n1"]
    assert body["parse_warnings"] == 1


def test_snapshot_endpoint_marks_stale(client, snapshot_store):
    snapshot_store.publish(
        Snapshot(captured_at=datetime(2026, 1, 1, tzinfo=timezone.utc), stale=True),
    )

    body = client.get("/api/snapshot").json()

    assert body["status"] == "stale"
    assert body["stale"] is True


def test_metrics_endpoint(client, snapshot_store):
    """The metrics endpoint serves Prometheus text for the current snapshot."""
    snapshot_store.publish(
        Snapshot(
            captured_at=datetime.now(timezone.utc),
            nodes=(NodeRecord(name="n1", state=NodeState.DOWN),),
        ),
    )

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert 'slurm_inspector_nodes_per_state{state="down"} 1.0' in response.text


# ---------------------------------------------------------------------------
# Full application
# ---------------------------------------------------------------------------


def test_synthetic_app_lifespan_publishes():
    """In synthetic mode the lifespan-started poller publishes data."""
    config = server.InspectorConfig(run_mode="synthetic", interval=3600)
    app = server.create_inspector(config)

    with TestClient(app) as client:
        response = client.get("/api/snapshot")
        for _ in range(200):
            if response.status_code == 200:
                break
            time.sleep(0.05)
            response = client.get("/api/snapshot")

    assert response.status_code == 200
    body = response.json()
    assert body["nodes"]
    assert body["jobs"]
    assert body["parse_warnings"] == 0


def test_lifespan_stops_poller_off_the_event_loop(snapshot_store):
    """Shutdown joins the poller from a worker thread, not the event loop."""
    refresh_poller = MagicMock()
    seen = {}

    def stop(timeout=None):
        seen["timeout"] = timeout
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            seen["in_loop"] = False
        else:
            seen["in_loop"] = True

    refresh_poller.stop.side_effect = stop
    app = server.create_starlette_app(
        snapshot_store=snapshot_store,
        registry=prometheus_client.core.CollectorRegistry(),
        refresh_poller=refresh_poller,
        shutdown_timeout=7.0,
    )

    with TestClient(app):
        refresh_poller.start.assert_called_once()

    assert seen == {"timeout": 7.0, "in_loop": False}
