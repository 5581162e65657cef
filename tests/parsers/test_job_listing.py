"""Tests for the job listing parser."""

from datetime import datetime, timedelta

import pytest

from slurm_inspector.parsers import jobs
from slurm_inspector.types import JobState


@pytest.fixture
def squeue_output() -> str:
    """Output of squeue with its default-style header."""
    return (
        "JOBID USER ST PARTITION TIME TIME_LEFT NAME NODELIST(REASON)\n"
        "82 willi R batch 2:46 57:14 small_test node01\n"
        "83 alice PD gpu 0:00 1-00:00:00 train (Resources)\n"
        "84 bob CG batch 1:02:03 UNLIMITED post node[02-04],gpu1\n"
        "85 carol F debug 0:10 0:00 broken node05\n"
    )


# ---------------------------------------------------------------------------
# Well-formed input
# ---------------------------------------------------------------------------


def test_parse_all_lines(squeue_output: str):
    """Every well-formed line yields one job and no warnings."""
    result = jobs.parse(squeue_output)

    assert [job.job_id for job in result.jobs] == ["82", "83", "84", "85"]
    assert [job.state for job in result.jobs] == [
        JobState.RUNNING,
        JobState.PENDING,
        JobState.COMPLETING,
        JobState.FAILED,
    ]
    assert result.warnings == 0
    assert result.lines == 4


def test_parse_running_job_fields(squeue_output: str):
    """Identity, timing and placement fields are carried over."""
    job = jobs.parse(squeue_output).jobs[0]

    assert job.user == "willi"
    assert job.partition == "batch"
    assert job.name == "small_test"
    assert job.elapsed == timedelta(minutes=2, seconds=46)
    assert job.time_left == timedelta(minutes=57, seconds=14)
    assert job.nodes == ("node01",)


def test_parse_pending_job_reason(squeue_output: str):
    """A parenthesised reason replaces the node list for pending jobs."""
    job = jobs.parse(squeue_output).jobs[1]

    assert job.nodes == ()
    assert job.reason == "Resources"
    assert job.time_left == timedelta(days=1)


def test_parse_hostlist_is_expanded(squeue_output: str):
    """Compressed node lists are expanded into individual names."""
    job = jobs.parse(squeue_output).jobs[2]

    assert job.nodes == ("node02", "node03", "node04", "gpu1")
    assert job.time_left is None


def test_parse_reason_with_spaces():
    """Multi-word reasons in the last column are kept intact."""
    text = "JOBID ST NODELIST(REASON)\n90 PD (ReqNodeNotAvail, UnavailableNodes:n1)\n"
    (job,) = jobs.parse(text).jobs

    assert job.reason == "ReqNodeNotAvail, UnavailableNodes:n1"
    assert job.nodes == ()


def test_parse_headerless_default_layout():
    """Headerless output follows the default squeue column order."""
    text = (
        "101 dave 1004 RUNNING long 3-04:05:06 UNLIMITED 64 2 4294901 "
        "2026-01-01T08:00:00 sweep node[1-2]\n"
    )
    result = jobs.parse(text)
    (job,) = result.jobs

    assert result.warnings == 0
    assert job.user == "dave"
    assert job.user_id == 1004
    assert job.cpus == 64
    assert job.node_count == 2
    assert job.priority == 4294901
    assert job.start_time == datetime(2026, 1, 1, 8, 0)
    assert job.elapsed == timedelta(days=3, hours=4, minutes=5, seconds=6)
    assert job.nodes == ("node1", "node2")


def test_parse_resource_columns_by_header():
    """CPU, node, priority and start time columns are found by label."""
    text = (
        "JOBID UID CPUS NODES PRIORITY START_TIME\n"
        "7 1001 8 1 0.00011574 N/A\n"
    )
    (job,) = jobs.parse(text).jobs

    assert job.user_id == 1001
    assert job.cpus == 8
    assert job.node_count == 1
    assert job.priority == pytest.approx(0.00011574)
    assert job.start_time is None


def test_parse_empty_input():
    """No jobs is a valid, empty result."""
    result = jobs.parse("")

    assert result.jobs == ()
    assert result.warnings == 0


# ---------------------------------------------------------------------------
# Malformed input
# ---------------------------------------------------------------------------


def test_parse_unknown_state_warns():
    """An unrecognized state becomes unknown and counts one warning."""
    result = jobs.parse("JOBID ST\n7 HOVERING\n")

    assert result.jobs[0].state is JobState.UNKNOWN
    assert result.warnings == 1


def test_parse_bad_durations_warn_once_per_line():
    """Several bad fields on one line still count a single warning."""
    result = jobs.parse("JOBID TIME TIME_LEFT\n7 soon later\n")

    assert result.jobs[0].elapsed is None
    assert result.jobs[0].time_left is None
    assert result.warnings == 1
    assert len(result.problems) == 2


def test_parse_bad_resource_columns_warn_once():
    """Unparseable resource fields are left unset with a single warning."""
    result = jobs.parse("JOBID CPUS PRIORITY START_TIME\n7 many -5 tomorrow\n")
    (job,) = result.jobs

    assert (job.cpus, job.priority, job.start_time) == (None, None, None)
    assert result.warnings == 1
    assert len(result.problems) == 3


def test_parse_bad_hostlist_keeps_raw_value():
    """An unexpandable node list is kept verbatim and flagged."""
    result = jobs.parse("JOBID NODELIST\n7 node[01-\n")

    assert result.jobs[0].nodes == ("node[01-",)
    assert result.warnings == 1


def test_parse_oversized_hostlist_keeps_raw_value():
    """A node list naming millions of hosts is not expanded."""
    result = jobs.parse("JOBID USER ST NODELIST\n1 bob R n[0-2000000]\n")

    assert result.jobs[0].nodes == ("n[0-2000000]",)
    assert result.jobs[0].state is JobState.RUNNING
    assert result.warnings == 1


def test_parse_duplicate_job_first_wins():
    """A repeated job id is dropped and counted."""
    text = "JOBID USER\n7 alice\n7 mallory\n8 bob\n"
    result = jobs.parse(text)

    assert [(j.job_id, j.user) for j in result.jobs] == [("7", "alice"), ("8", "bob")]
    assert result.warnings == 1
    assert result.dropped == 1
    assert len(result.jobs) + result.dropped == result.lines


def test_parse_is_deterministic(squeue_output: str):
    """Identical input always gives an identical result."""
    assert jobs.parse(squeue_output) == jobs.parse(squeue_output)
