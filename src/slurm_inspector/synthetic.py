"""Synthetic cluster data for running without a resource manager.

``generate`` builds a random but schema-valid cluster. The ``render_*``
functions print it in the same header layout the listing parsers read,
so synthetic runs exercise the full fetch/parse/publish path.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta

from .types import (
    JobRecord,
    JobState,
    NodeRecord,
    NodeState,
    PartitionRecord,
    PartitionState,
)

_PARTITION_NAMES = ("batch", "gpu", "highmem", "debug", "long", "interactive")
_USERS = ("alice", "bob", "carol", "dave", "erin", "frank", "grace")
_JOB_NAMES = ("train", "assemble", "md_run", "postproc", "sweep", "render", "align")
_CPU_CHOICES = (8, 16, 32, 64, 128)
_MEMORY_CHOICES_MB = (32768, 65536, 131072, 262144, 524288)
_DOWN_REASONS = ("Not_responding", "maintenance", "bad_dimm", "kernel_panic")
_PENDING_REASONS = ("Resources", "Priority", "Dependency", "QOSMaxJobsPerUserLimit")

NODE_HEADER = (
    "NODELIST PARTITION STATE CPUS MEMORY AVAIL CPU_LOAD HOSTNAMES "
    "SOCKETS CORES THREADS REASON"
)
JOB_HEADER = (
    "JOBID USER UID STATE PARTITION TIME TIME_LEFT CPUS NODES PRIORITY "
    "START_TIME NAME NODELIST(REASON)"
)


@dataclass(frozen=True)
class SyntheticCluster:
    nodes: tuple[NodeRecord, ...]
    partitions: tuple[PartitionRecord, ...]
    jobs: tuple[JobRecord, ...]


def _generate_nodes(
    rng: random.Random,
) -> tuple[tuple[NodeRecord, ...], tuple[PartitionRecord, ...]]:
    partition_names = rng.sample(_PARTITION_NAMES, rng.randint(1, 3))
    node_states = (
        [NodeState.IDLE] * 4
        + [NodeState.ALLOCATED] * 5
        + [NodeState.DOWN, NodeState.DRAINING, NodeState.UNKNOWN]
    )

    nodes: list[NodeRecord] = []
    partitions: list[PartitionRecord] = []
    for index, partition in enumerate(partition_names):
        members: list[str] = []
        cpus = rng.choice(_CPU_CHOICES)
        memory_mb = rng.choice(_MEMORY_CHOICES_MB)
        sockets = rng.choice((1, 2))
        threads = rng.choice((1, 2))
        for _ in range(rng.randint(2, 8)):
            name = f"node{len(nodes) + 1:03d}"
            state = rng.choice(node_states)
            busy = state is NodeState.ALLOCATED
            nodes.append(
                NodeRecord(
                    name=name,
                    state=state,
                    cpus=cpus,
                    memory_mb=memory_mb,
                    partition=partition,
                    cpu_load=round(rng.uniform(0.5, cpus) if busy else rng.uniform(0, 0.5), 2),
                    reason=(
                        rng.choice(_DOWN_REASONS)
                        if state in (NodeState.DOWN, NodeState.DRAINING)
                        else ""
                    ),
                    hostname=f"{name}.cluster",
                    sockets=sockets,
                    cores=cpus // (sockets * threads),
                    threads=threads,
                ),
            )
            members.append(name)
        partitions.append(
            PartitionRecord(
                name=partition,
                state=PartitionState.UP if rng.random() < 0.9 else PartitionState.DOWN,
                nodes=tuple(members),
                is_default=index == 0,
            ),
        )
    return tuple(nodes), tuple(partitions)


def _generate_jobs(
    rng: random.Random,
    nodes: tuple[NodeRecord, ...],
    now: datetime,
) -> tuple[JobRecord, ...]:
    busy = [node for node in nodes if node.state is NodeState.ALLOCATED] or list(nodes)
    first_id = rng.randint(100000, 900000)
    job_states = (
        [JobState.RUNNING] * 5
        + [JobState.PENDING] * 3
        + [JobState.COMPLETING, JobState.FAILED, JobState.UNKNOWN]
    )

    jobs: list[JobRecord] = []
    for offset in range(rng.randint(1, 12)):
        state = rng.choice(job_states)
        host = rng.choice(busy)
        user = rng.randrange(len(_USERS))
        cpus = rng.randint(1, host.cpus)
        priority = float(rng.randint(1000, 100000))
        limit = timedelta(hours=rng.choice((1, 4, 12, 24, 48)))
        if state is JobState.PENDING:
            jobs.append(
                JobRecord(
                    job_id=str(first_id + offset),
                    user=_USERS[user],
                    state=state,
                    partition=host.partition,
                    elapsed=timedelta(0),
                    time_left=limit,
                    name=rng.choice(_JOB_NAMES),
                    reason=rng.choice(_PENDING_REASONS),
                    user_id=1000 + user,
                    cpus=cpus,
                    node_count=1,
                    priority=priority,
                ),
            )
            continue
        elapsed = timedelta(seconds=rng.randint(0, int(limit.total_seconds())))
        jobs.append(
            JobRecord(
                job_id=str(first_id + offset),
                user=_USERS[user],
                state=state,
                partition=host.partition,
                elapsed=elapsed,
                time_left=limit - elapsed,
                nodes=(host.name,),
                name=rng.choice(_JOB_NAMES),
                user_id=1000 + user,
                cpus=cpus,
                node_count=1,
                priority=priority,
                start_time=now - elapsed,
            ),
        )
    return tuple(jobs)


def generate(
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> SyntheticCluster:
    """Generate a cluster with at least one node, partition and job.

    Node names and job ids are unique, every enumeration holds a valid
    member, and all counts are non-negative.

    Args:
        rng: Random source; pass a seeded ``random.Random`` for repeatable
            output.
        now: Reference time for job start times; defaults to the current
            local time.
    """
    rng = rng or random.Random()
    now = (now or datetime.now()).replace(microsecond=0)
    nodes, partitions = _generate_nodes(rng)
    return SyntheticCluster(
        nodes=nodes,
        partitions=partitions,
        jobs=_generate_jobs(rng, nodes, now),
    )


def format_duration(value: timedelta | None) -> str:
    """Format a duration the way squeue does (``D-HH:MM:SS`` or ``H:MM:SS``)."""
    if value is None:
        return "N/A"
    total = int(value.total_seconds())
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    if days:
        return f"{days}-{hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{hours}:{minutes:02d}:{seconds:02d}"


def _optional(value: object) -> str:
    return "N/A" if value is None else str(value)


def render_node_listing(cluster: SyntheticCluster) -> str:
    defaults = {p.name for p in cluster.partitions if p.is_default}
    availability = {p.name: p.state.value for p in cluster.partitions}
    lines = [NODE_HEADER]
    for node in cluster.nodes:
        partition = f"{node.partition}*" if node.partition in defaults else node.partition
        load = "N/A" if node.cpu_load is None else f"{node.cpu_load:.2f}"
        lines.append(
            f"{node.name} {partition} {node.state.value} {node.cpus} "
            f"{node.memory_mb} {availability[node.partition]} {load} "
            f"{node.hostname or node.name} {_optional(node.sockets)} "
            f"{_optional(node.cores)} {_optional(node.threads)} "
            f"{node.reason or 'none'}",
        )
    return "\n".join(lines) + "\n"


def render_job_listing(cluster: SyntheticCluster) -> str:
    lines = [JOB_HEADER]
    for job in cluster.jobs:
        where = ",".join(job.nodes) if job.nodes else f"({job.reason or 'None'})"
        priority = None if job.priority is None else int(job.priority)
        start = None if job.start_time is None else job.start_time.isoformat()
        lines.append(
            f"{job.job_id} {job.user} {_optional(job.user_id)} "
            f"{job.state.value.upper()} {job.partition} "
            f"{format_duration(job.elapsed)} {format_duration(job.time_left)} "
            f"{_optional(job.cpus)} {_optional(job.node_count)} "
            f"{_optional(priority)} {_optional(start)} {job.name} {where}",
        )
    return "\n".join(lines) + "\n"
