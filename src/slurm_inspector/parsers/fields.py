"""Normalizers for individual listing tokens.

Each function either returns the normalized value or raises ``ValueError``;
deciding whether a bad token is worth a warning is left to the line parsers.
"""

import re
from datetime import datetime, timedelta

from ..types import JobState, NodeState, PartitionState

# Tokens that mean "no value" in sinfo/squeue output.
UNSET_TOKENS = frozenset(
    {"", "-", "n/a", "none", "(null)", "unlimited", "infinite", "not_set", "invalid"},
)

# Trailing flag characters sinfo appends to node states (e.g. "idle*", "mix~").
_NODE_STATE_FLAGS = "*~#!%$@^-"

_NODE_STATES: dict[str, NodeState] = {
    "idle": NodeState.IDLE,
    "alloc": NodeState.ALLOCATED,
    "allocated": NodeState.ALLOCATED,
    "mix": NodeState.ALLOCATED,
    "mixed": NodeState.ALLOCATED,
    "comp": NodeState.ALLOCATED,
    "completing": NodeState.ALLOCATED,
    "down": NodeState.DOWN,
    "fail": NodeState.DOWN,
    "failing": NodeState.DOWN,
    "no_respond": NodeState.DOWN,
    "drain": NodeState.DRAINING,
    "drained": NodeState.DRAINING,
    "draining": NodeState.DRAINING,
    "drng": NodeState.DRAINING,
    # Known Slurm states without a counterpart in NodeState.
    "unk": NodeState.UNKNOWN,
    "unknown": NodeState.UNKNOWN,
    "maint": NodeState.UNKNOWN,
    "resv": NodeState.UNKNOWN,
    "reserved": NodeState.UNKNOWN,
    "future": NodeState.UNKNOWN,
    "futr": NodeState.UNKNOWN,
    "planned": NodeState.UNKNOWN,
    "plnd": NodeState.UNKNOWN,
    "inval": NodeState.UNKNOWN,
    "boot": NodeState.UNKNOWN,
    "power_down": NodeState.UNKNOWN,
    "powered_down": NodeState.UNKNOWN,
    "powering_down": NodeState.UNKNOWN,
    "powering_up": NodeState.UNKNOWN,
    "reboot_issued": NodeState.UNKNOWN,
    "reboot_requested": NodeState.UNKNOWN,
    "perfctrs": NodeState.UNKNOWN,
}

_PARTITION_STATES: dict[str, PartitionState] = {
    "up": PartitionState.UP,
    "down": PartitionState.DOWN,
    "drain": PartitionState.DOWN,
    "inact": PartitionState.DOWN,
    "inactive": PartitionState.DOWN,
    "unknown": PartitionState.UNKNOWN,
}

_JOB_STATES: dict[str, JobState] = {
    "pd": JobState.PENDING,
    "pending": JobState.PENDING,
    "cf": JobState.PENDING,
    "configuring": JobState.PENDING,
    "r": JobState.RUNNING,
    "running": JobState.RUNNING,
    "cg": JobState.COMPLETING,
    "completing": JobState.COMPLETING,
    "f": JobState.FAILED,
    "failed": JobState.FAILED,
    "nf": JobState.FAILED,
    "node_fail": JobState.FAILED,
    "to": JobState.FAILED,
    "timeout": JobState.FAILED,
    "oom": JobState.FAILED,
    "out_of_memory": JobState.FAILED,
    "bf": JobState.FAILED,
    "boot_fail": JobState.FAILED,
    "dl": JobState.FAILED,
    "deadline": JobState.FAILED,
    # Known Slurm states without a counterpart in JobState.
    "cd": JobState.UNKNOWN,
    "completed": JobState.UNKNOWN,
    "ca": JobState.UNKNOWN,
    "cancelled": JobState.UNKNOWN,
    "s": JobState.UNKNOWN,
    "suspended": JobState.UNKNOWN,
    "st": JobState.UNKNOWN,
    "stopped": JobState.UNKNOWN,
    "pr": JobState.UNKNOWN,
    "preempted": JobState.UNKNOWN,
    "rq": JobState.UNKNOWN,
    "requeued": JobState.UNKNOWN,
    "rh": JobState.UNKNOWN,
    "requeue_hold": JobState.UNKNOWN,
    "rf": JobState.UNKNOWN,
    "requeue_fed": JobState.UNKNOWN,
    "rd": JobState.UNKNOWN,
    "resv_del_hold": JobState.UNKNOWN,
    "rs": JobState.UNKNOWN,
    "resizing": JobState.UNKNOWN,
    "rv": JobState.UNKNOWN,
    "revoked": JobState.UNKNOWN,
    "se": JobState.UNKNOWN,
    "special_exit": JobState.UNKNOWN,
    "so": JobState.UNKNOWN,
    "stage_out": JobState.UNKNOWN,
    "si": JobState.UNKNOWN,
    "signaling": JobState.UNKNOWN,
    "unknown": JobState.UNKNOWN,
}

# Multipliers to megabytes; sizes are binary as in Slurm.
_MEMORY_UNITS = {
    "": 1.0,
    "k": 1.0 / 1024,
    "m": 1.0,
    "g": 1024.0,
    "t": 1024.0**2,
    "p": 1024.0**3,
}
_MEMORY_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(?:([kmgtp])(?:i?b)?)?$", re.IGNORECASE)

_DURATION_RE = re.compile(r"^(?:(\d+)-)?(\d+)(?::(\d+))?(?::(\d+))?$")

_COUNT_RE = re.compile(r"[0-9]+")
_DECIMAL_RE = re.compile(r"-?[0-9]+(?:\.[0-9]+)?")
_TIMESTAMP_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}T[0-9]{2}:[0-9]{2}:[0-9]{2}")

# Upper bound on host names one hostlist expression may expand to.
MAX_HOSTLIST_SIZE = 65536


def is_unset(token: str) -> bool:
    return token.strip().lower() in UNSET_TOKENS


def parse_node_state(token: str) -> NodeState:
    """Map a sinfo node state (``idle``, ``mix*``, ``IDLE+DRAIN``) to NodeState.

    Raises:
        ValueError: If the token is not a recognized Slurm node state.
    """
    base, *flags = token.strip().lower().split("+")
    base = base.rstrip(_NODE_STATE_FLAGS)
    if base not in _NODE_STATES:
        msg = f"unrecognized node state: {token!r}"
        raise ValueError(msg)
    if any(flag.rstrip(_NODE_STATE_FLAGS) in {"drain", "draining"} for flag in flags):
        return NodeState.DRAINING
    return _NODE_STATES[base]


def parse_partition_state(token: str) -> PartitionState:
    """Map a partition availability token (``up``, ``down``, ``inact``).

    Raises:
        ValueError: If the token is not a recognized availability.
    """
    key = token.strip().lower()
    if key not in _PARTITION_STATES:
        msg = f"unrecognized partition state: {token!r}"
        raise ValueError(msg)
    return _PARTITION_STATES[key]


def parse_job_state(token: str) -> JobState:
    """Map a squeue job state, long (``RUNNING``) or compact (``R``).

    Raises:
        ValueError: If the token is not a recognized Slurm job state.
    """
    key = token.strip().lower()
    if key not in _JOB_STATES:
        msg = f"unrecognized job state: {token!r}"
        raise ValueError(msg)
    return _JOB_STATES[key]


def parse_count(token: str) -> int:
    """Parse a non-negative integer count.

    Raises:
        ValueError: If the token is not a non-negative integer.
    """
    if _COUNT_RE.fullmatch(token.strip()) is None:
        msg = f"not a non-negative integer: {token!r}"
        raise ValueError(msg)
    return int(token.strip())


def parse_memory_mb(token: str) -> int:
    """Parse a memory size and normalize it to whole megabytes.

    A bare number is taken to be megabytes already, as sinfo prints it.
    Examples: ``"64000"`` -> 64000, ``"64G"`` -> 65536, ``"512KiB"`` -> 0.

    Raises:
        ValueError: If the number or its unit suffix is not recognized.
    """
    match = _MEMORY_RE.match(token.strip())
    if match is None:
        msg = f"unrecognized memory size: {token!r}"
        raise ValueError(msg)
    number, unit = match.groups()
    return int(float(number) * _MEMORY_UNITS[(unit or "").lower()])


def parse_load(token: str) -> float | None:
    """Parse a CPU load figure; unset markers give ``None``.

    Raises:
        ValueError: If the token is neither a number nor an unset marker.
    """
    if is_unset(token):
        return None
    if _DECIMAL_RE.fullmatch(token.strip()) is None:
        msg = f"not a finite number: {token!r}"
        raise ValueError(msg)
    value = float(token)
    if value < 0:
        msg = f"negative load: {token!r}"
        raise ValueError(msg)
    return value


def parse_optional_count(token: str) -> int | None:
    """Like ``parse_count``, but unset markers give ``None``."""
    if is_unset(token):
        return None
    return parse_count(token)


def parse_priority(token: str) -> float | None:
    """Parse a job priority, either squeue's integer or normalized form.

    Raises:
        ValueError: If the token is not a non-negative number.
    """
    if is_unset(token):
        return None
    if _DECIMAL_RE.fullmatch(token.strip()) is None or token.strip().startswith("-"):
        msg = f"unrecognized priority: {token!r}"
        raise ValueError(msg)
    return float(token)


def parse_timestamp(token: str) -> datetime | None:
    """Parse squeue's ``YYYY-MM-DDTHH:MM:SS`` start time; unset gives ``None``.

    Raises:
        ValueError: If the token is not an ISO timestamp.
    """
    if is_unset(token):
        return None
    if _TIMESTAMP_RE.fullmatch(token.strip()) is None:
        msg = f"unrecognized timestamp: {token!r}"
        raise ValueError(msg)
    return datetime.fromisoformat(token.strip())


def parse_duration(token: str) -> timedelta | None:
    """Parse a Slurm time string.

    Accepted forms follow Slurm's own: ``minutes``, ``minutes:seconds``,
    ``hours:minutes:seconds``, ``days-hours``, ``days-hours:minutes`` and
    ``days-hours:minutes:seconds``. ``UNLIMITED``, ``N/A`` and similar
    markers give ``None``.

    Raises:
        ValueError: If the token matches none of the accepted forms.
    """
    if is_unset(token):
        return None
    match = _DURATION_RE.match(token.strip())
    if match is None:
        msg = f"unrecognized duration: {token!r}"
        raise ValueError(msg)
    days, first, second, third = match.groups()
    if days is not None:
        # days-hours[:minutes[:seconds]]
        return timedelta(
            days=int(days),
            hours=int(first),
            minutes=int(second or 0),
            seconds=int(third or 0),
        )
    if third is not None:
        return timedelta(hours=int(first), minutes=int(second), seconds=int(third))
    if second is not None:
        return timedelta(minutes=int(first), seconds=int(second))
    return timedelta(minutes=int(first))


def _split_top_level(expression: str) -> list[str]:
    """Split on commas that are not inside brackets."""
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in expression:
        if char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth < 0:
                msg = f"unbalanced brackets in hostlist: {expression!r}"
                raise ValueError(msg)
        if char == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    if depth != 0:
        msg = f"unbalanced brackets in hostlist: {expression!r}"
        raise ValueError(msg)
    parts.append("".join(current))
    return [part for part in parts if part]


def _expand_ranges(body: str) -> list[str]:
    """Expand the inside of one bracket group, e.g. ``01-03,07``."""
    values: list[str] = []
    for item in body.split(","):
        low, sep, high = item.partition("-")
        if not low.isdigit() or (sep and not high.isdigit()):
            msg = f"malformed hostlist range: {item!r}"
            raise ValueError(msg)
        if not sep:
            values.append(low)
            continue
        width = len(low)
        start, stop = int(low), int(high)
        if stop < start:
            msg = f"descending hostlist range: {item!r}"
            raise ValueError(msg)
        if len(values) + stop - start + 1 > MAX_HOSTLIST_SIZE:
            msg = f"hostlist range too large: {item!r}"
            raise ValueError(msg)
        values.extend(str(number).zfill(width) for number in range(start, stop + 1))
    return values


def _expand_host(pattern: str) -> list[str]:
    open_at = pattern.find("[")
    if open_at == -1:
        return [pattern]
    close_at = pattern.find("]", open_at)
    prefix = pattern[:open_at]
    values = _expand_ranges(pattern[open_at + 1 : close_at])
    suffixes = _expand_host(pattern[close_at + 1 :])
    if len(values) * len(suffixes) > MAX_HOSTLIST_SIZE:
        msg = f"hostlist expands to too many hosts: {pattern!r}"
        raise ValueError(msg)
    return [f"{prefix}{value}{suffix}" for value in values for suffix in suffixes]


def expand_hostlist(expression: str) -> tuple[str, ...]:
    """Expand a Slurm hostlist expression into individual host names.

    Examples:
        ``"node01"`` -> ``("node01",)``
        ``"node[01-03],gpu1"`` -> ``("node01", "node02", "node03", "gpu1")``
        ``"rack[1-2]-n[1,3]"`` -> ``("rack1-n1", "rack1-n3", "rack2-n1", "rack2-n3")``

    Raises:
        ValueError: If brackets are unbalanced, a range is malformed, or the
            expression names more than ``MAX_HOSTLIST_SIZE`` hosts.
    """
    if is_unset(expression):
        return ()
    hosts: list[str] = []
    for pattern in _split_top_level(expression.strip()):
        hosts.extend(_expand_host(pattern))
        if len(hosts) > MAX_HOSTLIST_SIZE:
            msg = f"hostlist expands to more than {MAX_HOSTLIST_SIZE} hosts"
            raise ValueError(msg)
    return tuple(hosts)
