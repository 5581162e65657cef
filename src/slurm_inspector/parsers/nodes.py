"""Parser for the node/partition listing (``sinfo -N``).

Each line describes one node's membership in one partition. Node records
are built from the first line naming a node; partition records are
assembled from every line naming the partition, in order of first
appearance. A node listed again under another partition is an extra
membership, not a duplicate.
"""

import structlog

from ..types import NodeRecord, NodeState, PartitionRecord, PartitionState
from . import fields
from .table import ColumnLayout, ParseResult, Row, read_rows

logger = structlog.get_logger(__name__)

# sinfo -N -h -o "%N %P %T %c %m %a %O %n %X %Y %Z %E"
DEFAULT_LAYOUT = ColumnLayout(
    columns=(
        "name",
        "partition",
        "state",
        "cpus",
        "memory",
        "availability",
        "cpu_load",
        "hostname",
        "sockets",
        "cores",
        "threads",
        "reason",
    ),
    aliases={
        "NODE": "name",
        "NODELIST": "name",
        "NODENAME": "name",
        "HOSTNAME": "hostname",
        "HOSTNAMES": "hostname",
        "PARTITION": "partition",
        "STATE": "state",
        "CPUS": "cpus",
        "MEMORY": "memory",
        "AVAIL": "availability",
        "NODES": "partition_nodes",
        "CPU_LOAD": "cpu_load",
        "SOCKETS": "sockets",
        "CORES": "cores",
        "THREADS": "threads",
        "REASON": "reason",
    },
    key="name",
)


class _PartitionBuilder:
    """Accumulates one partition's members while lines are read."""

    def __init__(
        self,
        name: str,
        state: PartitionState,
        reported: int | None,
        is_default: bool,
    ):
        self.name = name
        self.state = state
        self.reported = reported
        self.is_default = is_default
        self.nodes: list[str] = []

    def build(self) -> PartitionRecord:
        return PartitionRecord(
            name=self.name,
            state=self.state,
            nodes=tuple(self.nodes),
            reported_node_count=self.reported,
            is_default=self.is_default,
        )


def _split_partition(token: str) -> tuple[str, bool]:
    """Strip sinfo's default-partition marker: ``batch*`` -> ``("batch", True)``."""
    name = token.strip()
    if name.endswith("*"):
        return name.rstrip("*"), True
    return name, False


def _node_from_row(row: Row, partition: str, problems: list[str]) -> NodeRecord:
    values = row.values

    state = NodeState.UNKNOWN
    if "state" in values:
        try:
            state = fields.parse_node_state(values["state"])
        except ValueError as exc:
            problems.append(str(exc))

    cpus = 0
    if "cpus" in values:
        try:
            cpus = fields.parse_count(values["cpus"])
        except ValueError:
            problems.append(f"non-numeric cpus: {values['cpus']!r}")

    memory_mb = 0
    if "memory" in values:
        try:
            memory_mb = fields.parse_memory_mb(values["memory"])
        except ValueError as exc:
            problems.append(str(exc))

    cpu_load = None
    if "cpu_load" in values:
        try:
            cpu_load = fields.parse_load(values["cpu_load"])
        except ValueError:
            problems.append(f"non-numeric cpu load: {values['cpu_load']!r}")

    topology: dict[str, int | None] = {}
    for column in ("sockets", "cores", "threads"):
        topology[column] = None
        if column in values:
            try:
                topology[column] = fields.parse_optional_count(values[column])
            except ValueError:
                problems.append(f"non-numeric {column}: {values[column]!r}")

    reason = values.get("reason", "")
    if fields.is_unset(reason):
        reason = ""

    hostname = values.get("hostname", "").strip()
    if fields.is_unset(hostname) or hostname == values["name"]:
        hostname = ""

    return NodeRecord(
        name=values["name"],
        state=state,
        cpus=cpus,
        memory_mb=memory_mb,
        partition=partition,
        cpu_load=cpu_load,
        reason=reason,
        hostname=hostname,
        sockets=topology["sockets"],
        cores=topology["cores"],
        threads=topology["threads"],
    )


def _partition_fields(row: Row, problems: list[str]) -> tuple[PartitionState, int | None]:
    state = PartitionState.UNKNOWN
    if "availability" in row.values:
        try:
            state = fields.parse_partition_state(row.values["availability"])
        except ValueError as exc:
            problems.append(str(exc))

    reported = None
    if "partition_nodes" in row.values:
        try:
            reported = fields.parse_count(row.values["partition_nodes"])
        except ValueError:
            problems.append(
                f"non-numeric partition size: {row.values['partition_nodes']!r}",
            )
    return state, reported


def parse(text: str, layout: ColumnLayout = DEFAULT_LAYOUT) -> ParseResult:
    """Parse node listing text into node and partition records.

    Never raises on malformed content: each line that needs correcting adds
    one warning, and lines that cannot yield a record (no node name, or a
    node/partition pair already seen) are dropped and also add one.

    Args:
        text: Raw listing output, with or without a header line.
        layout: Column layout to apply when no header is present.

    Returns:
        ParseResult with ``nodes`` and ``partitions`` filled in.
    """
    nodes: dict[str, NodeRecord] = {}
    partitions: dict[str, _PartitionBuilder] = {}
    seen_pairs: set[tuple[str, str]] = set()
    warnings = 0
    dropped = 0
    lines = 0
    problem_log: list[str] = []

    for row in read_rows(text, layout):
        lines += 1
        problems: list[str] = []
        name = row.values.get("name", "").strip()
        partition, is_default = _split_partition(row.values.get("partition", ""))

        if not name or (name, partition) in seen_pairs:
            reason = "missing node name" if not name else f"duplicate node {name!r}"
            logger.debug("Dropping node line", line=row.line_number, reason=reason)
            problem_log.append(f"line {row.line_number}: {reason}")
            warnings += 1
            dropped += 1
            continue
        seen_pairs.add((name, partition))

        if row.missing:
            problems.append(f"missing columns: {', '.join(row.missing)}")

        if name not in nodes:
            nodes[name] = _node_from_row(row, partition, problems)

        if partition:
            state, reported = _partition_fields(row, problems)
            builder = partitions.get(partition)
            if builder is None:
                builder = _PartitionBuilder(partition, state, reported, is_default)
                partitions[partition] = builder
            builder.nodes.append(name)

        if problems:
            logger.debug(
                "Corrected node line",
                line=row.line_number,
                problems=problems,
            )
            problem_log.extend(f"line {row.line_number}: {p}" for p in problems)
            warnings += 1

    partition_records = tuple(builder.build() for builder in partitions.values())
    for record in partition_records:
        if record.node_count_mismatch:
            logger.warning(
                "Partition size disagrees with member count",
                partition=record.name,
                reported=record.reported_node_count,
                derived=record.node_count,
            )

    return ParseResult(
        nodes=tuple(nodes.values()),
        partitions=partition_records,
        warnings=warnings,
        dropped=dropped,
        lines=lines,
        problems=tuple(problem_log),
    )
