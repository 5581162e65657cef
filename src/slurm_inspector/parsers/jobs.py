"""Parser for the job listing (``squeue``)."""

from collections.abc import Callable
from typing import TypeVar

import structlog

from ..types import JobRecord, JobState
from . import fields
from .table import ColumnLayout, ParseResult, Row, read_rows

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# squeue -h -o "%i %u %U %T %P %M %L %C %D %Q %S %j %R"
DEFAULT_LAYOUT = ColumnLayout(
    columns=(
        "job_id",
        "user",
        "user_id",
        "state",
        "partition",
        "elapsed",
        "time_left",
        "cpus",
        "node_count",
        "priority",
        "start_time",
        "name",
        "nodes",
    ),
    aliases={
        "JOBID": "job_id",
        "JOB_ID": "job_id",
        "USER": "user",
        "UID": "user_id",
        "STATE": "state",
        "ST": "state",
        "PARTITION": "partition",
        "TIME": "elapsed",
        "TIME_LEFT": "time_left",
        "CPUS": "cpus",
        "NODES": "node_count",
        "PRIORITY": "priority",
        "START_TIME": "start_time",
        "NAME": "name",
        "NODELIST": "nodes",
        "NODELIST(REASON)": "nodes",
        "REASON": "reason",
    },
    key="job_id",
)


def _optional_field(
    values: dict[str, str],
    column: str,
    convert: Callable[[str], T | None],
    problems: list[str],
) -> T | None:
    if column not in values:
        return None
    try:
        return convert(values[column])
    except ValueError as exc:
        problems.append(f"{column}: {exc}")
        return None


def _job_from_row(row: Row, problems: list[str]) -> JobRecord:
    values = row.values

    state = JobState.UNKNOWN
    if "state" in values:
        try:
            state = fields.parse_job_state(values["state"])
        except ValueError as exc:
            problems.append(str(exc))

    # squeue's %R prints "(Reason)" instead of a node list for pending jobs.
    reason = values.get("reason", "").strip()
    nodes: tuple[str, ...] = ()
    node_field = values.get("nodes", "").strip()
    if node_field.startswith("(") and node_field.endswith(")"):
        reason = node_field[1:-1]
    elif node_field:
        try:
            nodes = fields.expand_hostlist(node_field)
        except ValueError as exc:
            problems.append(str(exc))
            nodes = (node_field,)
    if fields.is_unset(reason):
        reason = ""

    return JobRecord(
        job_id=values["job_id"].strip(),
        user=values.get("user", "").strip(),
        state=state,
        partition=values.get("partition", "").strip(),
        elapsed=_optional_field(values, "elapsed", fields.parse_duration, problems),
        time_left=_optional_field(values, "time_left", fields.parse_duration, problems),
        nodes=nodes,
        name=values.get("name", "").strip(),
        reason=reason,
        user_id=_optional_field(values, "user_id", fields.parse_optional_count, problems),
        cpus=_optional_field(values, "cpus", fields.parse_optional_count, problems),
        node_count=_optional_field(
            values,
            "node_count",
            fields.parse_optional_count,
            problems,
        ),
        priority=_optional_field(values, "priority", fields.parse_priority, problems),
        start_time=_optional_field(values, "start_time", fields.parse_timestamp, problems),
    )


def parse(text: str, layout: ColumnLayout = DEFAULT_LAYOUT) -> ParseResult:
    """Parse job listing text into job records.

    The first line carrying a job id wins; later lines with the same id are
    dropped. Malformed fields are replaced by their unknown/unset value and
    count one warning per line.

    Args:
        text: Raw listing output, with or without a header line.
        layout: Column layout to apply when no header is present.

    Returns:
        ParseResult with ``jobs`` filled in.
    """
    jobs: dict[str, JobRecord] = {}
    warnings = 0
    dropped = 0
    lines = 0
    problem_log: list[str] = []

    for row in read_rows(text, layout):
        lines += 1
        job_id = row.values.get("job_id", "").strip()

        if not job_id or job_id in jobs:
            reason = "missing job id" if not job_id else f"duplicate job {job_id!r}"
            logger.debug("Dropping job line", line=row.line_number, reason=reason)
            problem_log.append(f"line {row.line_number}: {reason}")
            warnings += 1
            dropped += 1
            continue

        problems: list[str] = []
        if row.missing:
            problems.append(f"missing columns: {', '.join(row.missing)}")
        jobs[job_id] = _job_from_row(row, problems)

        if problems:
            logger.debug("Corrected job line", line=row.line_number, problems=problems)
            problem_log.extend(f"line {row.line_number}: {p}" for p in problems)
            warnings += 1

    return ParseResult(
        jobs=tuple(jobs.values()),
        warnings=warnings,
        dropped=dropped,
        lines=lines,
        problems=tuple(problem_log),
    )
