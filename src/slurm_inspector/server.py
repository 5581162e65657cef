"""HTTP surface and wiring for Slurm Inspector.

Loads configuration, builds the source/store/poller pipeline and serves
the current snapshot as JSON alongside Prometheus metrics. Turning a
snapshot into an HTML page is left to the consumer of ``/api/snapshot``.
"""

import asyncio
import contextlib
import json
import logging
import os
import pathlib
from typing import Any

import prometheus_client
import prometheus_client.core
import pydantic
import starlette.applications
import starlette.requests
import starlette.responses
import starlette.routing
import structlog

from . import collector, parsers, poller, sources, store
from .types import RunMode, Snapshot, SourceKind

CONFIG_ENV_VAR = "SLURM_INSPECTOR_CONFIG_PATH"
logger = structlog.get_logger(__name__)


class InspectorConfig(pydantic.BaseModel):
    """Configuration for Slurm Inspector."""

    model_config = pydantic.ConfigDict(frozen=True)

    interval: float = pydantic.Field(
        60.0,
        description="Seconds between refresh cycles",
        gt=0,
    )
    fetch_timeout: float = pydantic.Field(
        sources.DEFAULT_TIMEOUT,
        description="Seconds each status command may run",
        gt=0,
    )
    run_mode: RunMode = pydantic.Field(
        RunMode.LIVE,
        description="'live' runs the status commands, 'synthetic' generates data",
    )
    node_command: tuple[str, ...] = pydantic.Field(
        sources.DEFAULT_COMMANDS[SourceKind.NODES],
        description="argv of the node/partition listing command",
        min_length=1,
    )
    job_command: tuple[str, ...] = pydantic.Field(
        sources.DEFAULT_COMMANDS[SourceKind.JOBS],
        description="argv of the job listing command",
        min_length=1,
    )
    node_columns: tuple[str, ...] | None = pydantic.Field(
        None,
        description="Positional columns of headerless node listing output",
    )
    job_columns: tuple[str, ...] | None = pydantic.Field(
        None,
        description="Positional columns of headerless job listing output",
    )
    delimiter: str | None = pydantic.Field(
        None,
        description="Column separator; runs of whitespace when unset",
        min_length=1,
    )
    port: int = pydantic.Field(4545, description="HTTP server port", gt=0, lt=65536)
    log_level: str = pydantic.Field("INFO", description="Logging level")

    @pydantic.model_validator(mode="after")
    def _check_layouts(self) -> "InspectorConfig":
        self.layouts()
        return self

    def layouts(self) -> dict[SourceKind, parsers.ColumnLayout]:
        """Column layouts with any deployment overrides applied."""
        return {
            SourceKind.NODES: parsers.default_layout(SourceKind.NODES).with_overrides(
                columns=self.node_columns,
                delimiter=self.delimiter,
            ),
            SourceKind.JOBS: parsers.default_layout(SourceKind.JOBS).with_overrides(
                columns=self.job_columns,
                delimiter=self.delimiter,
            ),
        }

    def commands(self) -> dict[SourceKind, tuple[str, ...]]:
        return {SourceKind.NODES: self.node_command, SourceKind.JOBS: self.job_command}


def configure_logging(log_level_name: str) -> None:
    """Configure structlog for logfmt output."""
    log_level = getattr(logging, log_level_name.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.EventRenamer("msg"),
            structlog.processors.format_exc_info,
            structlog.processors.LogfmtRenderer(
                key_order=("timestamp", "level", "msg"),
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def load_config(config_path: str) -> InspectorConfig:
    """Load configuration from JSON file."""
    path = pathlib.Path(config_path)
    if not path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with path.open("r") as f:
        data = json.load(f)

    return InspectorConfig(**data)


_SNAPSHOT_ADAPTER = pydantic.TypeAdapter(Snapshot)


def snapshot_to_dict(snapshot: Snapshot) -> dict[str, Any]:
    """Convert a snapshot into JSON-ready data, including derived fields."""
    data = _SNAPSHOT_ADAPTER.dump_python(snapshot, mode="json")
    data["status"] = "stale" if snapshot.stale else "fresh"
    for payload, partition in zip(data["partitions"], snapshot.partitions, strict=True):
        payload["node_count"] = partition.node_count
        payload["node_count_mismatch"] = partition.node_count_mismatch
    return data


def create_starlette_app(
    snapshot_store: store.SnapshotStore,
    registry: prometheus_client.core.CollectorRegistry,
    refresh_poller: poller.Poller | None = None,
    metrics_path: str = "/metrics",
    shutdown_timeout: float | None = None,
) -> starlette.applications.Starlette:
    """Create a Starlette application serving the current snapshot.

    Args:
        snapshot_store: Store to read snapshots from.
        registry: Prometheus collector registry.
        refresh_poller: Poller started and stopped with the app lifespan;
            ``None`` leaves refreshing to the caller.
        metrics_path: URL path for metrics endpoint.
        shutdown_timeout: Seconds to wait for an in-flight cycle on shutdown.

    Returns:
        Configured Starlette application.
    """

    def snapshot_endpoint(
        request: starlette.requests.Request,
    ) -> starlette.responses.Response:
        snapshot = snapshot_store.current()
        logger.info(
            "HTTP request",
            client_ip=request.client.host if request.client else "unknown",
            method=request.method,
            path=request.url.path,
        )
        if not snapshot.is_available:
            return starlette.responses.JSONResponse(
                {"status": "loading", "message": "Waiting for the first refresh"},
                status_code=503,
            )
        return starlette.responses.JSONResponse(snapshot_to_dict(snapshot))

    def metrics_endpoint(
        request: starlette.requests.Request,
    ) -> starlette.responses.Response:
        metrics_output = prometheus_client.generate_latest(registry)
        logger.info(
            "HTTP request",
            client_ip=request.client.host if request.client else "unknown",
            method=request.method,
            path=request.url.path,
        )
        return starlette.responses.PlainTextResponse(
            content=metrics_output,
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    @contextlib.asynccontextmanager
    async def lifespan(app: starlette.applications.Starlette):
        if refresh_poller is not None:
            refresh_poller.start()
        try:
            yield
        finally:
            if refresh_poller is not None:
                # Joining the thread blocks; keep it off the event loop.
                await asyncio.to_thread(refresh_poller.stop, shutdown_timeout)

    routes = [
        starlette.routing.Route("/api/snapshot", snapshot_endpoint, methods=["GET"]),
        starlette.routing.Route(metrics_path, metrics_endpoint, methods=["GET"]),
    ]

    return starlette.applications.Starlette(routes=routes, lifespan=lifespan)


def create_inspector(config: InspectorConfig) -> starlette.applications.Starlette:
    """Construct the inspector ASGI app from validated config."""
    source = sources.build_source(
        config.run_mode,
        commands=config.commands(),
        timeout=config.fetch_timeout,
    )
    snapshot_store = store.SnapshotStore()
    refresh_poller = poller.Poller(
        source=source,
        store=snapshot_store,
        interval=config.interval,
        layouts=config.layouts(),
    )
    logger.info(
        "Created refresh pipeline",
        run_mode=config.run_mode.value,
        interval_seconds=config.interval,
        fetch_timeout_seconds=config.fetch_timeout,
    )

    # Custom registry so process-wide default collectors stay out of it
    registry = prometheus_client.core.CollectorRegistry()
    registry.register(collector.SnapshotCollector(snapshot_store, refresh_poller))

    return create_starlette_app(
        snapshot_store=snapshot_store,
        registry=registry,
        refresh_poller=refresh_poller,
        # Both fetches of an in-flight cycle may run to their timeout.
        shutdown_timeout=2 * config.fetch_timeout + 1.0,
    )


def create_app(config_path: str | None = None) -> starlette.applications.Starlette:
    """Create the inspector ASGI app using a config path or environment default."""
    resolved_path = config_path or os.environ.get(CONFIG_ENV_VAR, "/config.json")
    config = load_config(resolved_path)
    configure_logging(config.log_level)
    return create_inspector(config)
