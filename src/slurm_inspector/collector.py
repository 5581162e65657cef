"""Prometheus collector exposing the health of the refresh pipeline.

Reads whatever snapshot is current at scrape time; scrapes never trigger
a fetch.
"""

from collections import Counter
from collections.abc import Callable, Iterator
from datetime import datetime, timezone

import structlog
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily
from prometheus_client.metrics_core import Metric
from prometheus_client.registry import Collector

from .poller import Poller
from .store import SnapshotStore
from .types import JobState, NodeState, Snapshot

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _snapshot_metrics(snapshot: Snapshot, now: datetime) -> Iterator[Metric]:
    nodes_per_state = GaugeMetricFamily(
        "slurm_inspector_nodes_per_state",
        "nodes per state in the current snapshot",
        labels=["state"],
    )
    node_counts = Counter(node.state for node in snapshot.nodes)
    for state in NodeState:
        nodes_per_state.add_metric([state.value], node_counts[state])
    yield nodes_per_state

    jobs_per_state = GaugeMetricFamily(
        "slurm_inspector_jobs_per_state",
        "jobs per state in the current snapshot",
        labels=["state"],
    )
    job_counts = Counter(job.state for job in snapshot.jobs)
    for state in JobState:
        jobs_per_state.add_metric([state.value], job_counts[state])
    yield jobs_per_state

    partitions = GaugeMetricFamily(
        "slurm_inspector_partitions",
        "partitions in the current snapshot",
    )
    partitions.add_metric([], len(snapshot.partitions))
    yield partitions

    warnings = GaugeMetricFamily(
        "slurm_inspector_parse_warnings",
        "listing lines that needed correcting in the current snapshot",
    )
    warnings.add_metric([], snapshot.parse_warnings)
    yield warnings

    stale = GaugeMetricFamily(
        "slurm_inspector_snapshot_stale",
        "1 if the last refresh could not fetch fresh data",
    )
    stale.add_metric([], 1.0 if snapshot.stale else 0.0)
    yield stale

    # -1 means nothing has been published yet
    age = GaugeMetricFamily(
        "slurm_inspector_snapshot_age_seconds",
        "seconds since the current snapshot was captured, -1 if none yet",
    )
    if snapshot.captured_at is None:
        age.add_metric([], -1.0)
    else:
        age.add_metric([], max((now - snapshot.captured_at).total_seconds(), 0.0))
    yield age


class SnapshotCollector(Collector):
    """Prometheus collector over a snapshot store and its poller."""

    def __init__(
        self,
        store: SnapshotStore,
        poller: Poller | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the collector.

        Args:
            store: Store to read the current snapshot from.
            poller: Poller whose fetch failure counters are exported; when
                omitted the failure counter family is left out.
            clock: Current time, for the snapshot age gauge.
        """
        self._store = store
        self._poller = poller
        self._clock = clock

    def collect(self) -> Iterator[Metric]:
        snapshot = self._store.current()
        logger.debug(
            "Collecting snapshot metrics",
            captured_at=snapshot.captured_at.isoformat() if snapshot.captured_at else None,
            stale=snapshot.stale,
        )
        yield from _snapshot_metrics(snapshot, self._clock())

        if self._poller is not None:
            failures = CounterMetricFamily(
                "slurm_inspector_fetch_failures",
                "failed listing fetches per source",
                labels=["source"],
            )
            for kind, count in self._poller.fetch_failures.items():
                failures.add_metric([kind.value], count)
            yield failures
