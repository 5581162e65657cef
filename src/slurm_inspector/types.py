"""Shared record types for the cluster snapshot.

Records are frozen dataclasses holding tuples rather than lists, so a
published ``Snapshot`` can be handed to any number of readers without
copying and without any of them being able to alter it.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta


class SourceKind(enum.Enum):
    """The two status listings polled from the resource manager."""

    NODES = "nodes"
    JOBS = "jobs"


class RunMode(enum.Enum):
    """Where raw listing text comes from."""

    LIVE = "live"
    SYNTHETIC = "synthetic"


class NodeState(enum.Enum):
    IDLE = "idle"
    ALLOCATED = "allocated"
    DOWN = "down"
    DRAINING = "draining"
    UNKNOWN = "unknown"


class PartitionState(enum.Enum):
    UP = "up"
    DOWN = "down"
    UNKNOWN = "unknown"


class JobState(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETING = "completing"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NodeRecord:
    """A single compute node as reported by the node listing.

    Memory is in megabytes. ``hostname`` is the network name when it differs
    from the Slurm node name. The optional fields are only filled in when
    the listing carries those columns; ``None`` means not reported.
    """

    name: str
    state: NodeState = NodeState.UNKNOWN
    cpus: int = 0
    memory_mb: int = 0
    partition: str = ""
    cpu_load: float | None = None
    reason: str = ""
    hostname: str = ""
    sockets: int | None = None
    cores: int | None = None
    threads: int | None = None


@dataclass(frozen=True)
class PartitionRecord:
    """A scheduling pool, derived from the node listing.

    ``reported_node_count`` is what the listing itself claimed for the
    partition size (``None`` when the column is absent). When it disagrees
    with the number of member nodes both values are kept.
    """

    name: str
    state: PartitionState = PartitionState.UNKNOWN
    nodes: tuple[str, ...] = ()
    reported_node_count: int | None = None
    is_default: bool = False

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def node_count_mismatch(self) -> bool:
        return (
            self.reported_node_count is not None
            and self.reported_node_count != self.node_count
        )


@dataclass(frozen=True)
class JobRecord:
    """A job from the job listing.

    ``elapsed`` and ``time_left`` are ``None`` when the listing reports no
    value (pending jobs, unlimited walltime). ``reason`` holds the
    parenthesised pending reason that squeue prints in place of a node list.
    ``start_time`` is the actual or expected start as squeue prints it, in
    the controller's local time.
    """

    job_id: str
    user: str = ""
    state: JobState = JobState.UNKNOWN
    partition: str = ""
    elapsed: timedelta | None = None
    time_left: timedelta | None = None
    nodes: tuple[str, ...] = ()
    name: str = ""
    reason: str = ""
    user_id: int | None = None
    cpus: int | None = None
    node_count: int | None = None
    priority: float | None = None
    start_time: datetime | None = None


@dataclass(frozen=True)
class Snapshot:
    """Immutable point-in-time view of the cluster.

    ``captured_at`` is ``None`` only for the placeholder returned before the
    first refresh cycle has published anything; see ``Snapshot.pending``.
    """

    captured_at: datetime | None
    nodes: tuple[NodeRecord, ...] = ()
    partitions: tuple[PartitionRecord, ...] = ()
    jobs: tuple[JobRecord, ...] = ()
    parse_warnings: int = 0
    stale: bool = False
    failed_sources: tuple[SourceKind, ...] = field(default=())

    @classmethod
    def pending(cls) -> "Snapshot":
        """Placeholder for "no data yet": empty, stale and without a timestamp."""
        return cls(captured_at=None, stale=True)

    @property
    def is_available(self) -> bool:
        return self.captured_at is not None
