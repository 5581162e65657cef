"""Raw listing sources.

A source turns a ``SourceKind`` into raw listing text plus a success flag.
``CommandSource`` runs the resource manager's status tools;
``SyntheticSource`` renders generated data instead. Exactly one of them is
chosen at startup from the run mode.
"""

import random
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

import structlog

from . import synthetic
from .types import RunMode, SourceKind

logger = structlog.get_logger(__name__)

# sinfo/squeue invocations matching the parsers' default column layouts.
DEFAULT_COMMANDS: Mapping[SourceKind, tuple[str, ...]] = {
    SourceKind.NODES: (
        "sinfo",
        "-N",
        "-h",
        "-o",
        "%N %P %T %c %m %a %O %n %X %Y %Z %E",
    ),
    SourceKind.JOBS: ("squeue", "-h", "-o", "%i %u %U %T %P %M %L %C %D %Q %S %j %R"),
}

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one fetch: raw text, whether it can be trusted, and why not."""

    text: str
    succeeded: bool
    error: str = ""
    duration: float = 0.0


class Source(Protocol):
    def run(self, kind: SourceKind) -> FetchResult: ...


class CommandSource:
    """Runs the status commands with a per-invocation timeout.

    Never raises for runtime problems: timeouts, missing executables and
    non-zero exit codes all come back as an unsuccessful ``FetchResult``.
    """

    def __init__(
        self,
        commands: Mapping[SourceKind, Sequence[str]] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize the command source.

        Args:
            commands: argv per source kind; defaults to ``DEFAULT_COMMANDS``.
            timeout: Seconds each invocation may run before it is abandoned.

        Raises:
            ValueError: If the timeout is not positive or a command is empty.
        """
        if timeout <= 0:
            msg = "timeout must be positive"
            raise ValueError(msg)
        resolved = dict(DEFAULT_COMMANDS)
        resolved.update({kind: tuple(argv) for kind, argv in (commands or {}).items()})
        for kind, argv in resolved.items():
            if not argv:
                msg = f"command for {kind.value} cannot be empty"
                raise ValueError(msg)
        self._commands: dict[SourceKind, tuple[str, ...]] = resolved
        self._timeout = timeout

    @property
    def timeout(self) -> float:
        return self._timeout

    def run(self, kind: SourceKind) -> FetchResult:
        argv = self._commands[kind]
        start = time.monotonic()
        try:
            completed = subprocess.run(  # noqa: S603
                argv,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            duration = time.monotonic() - start
            logger.warning(
                "Status command timed out",
                source=kind.value,
                command=argv[0],
                timeout_seconds=self._timeout,
            )
            return FetchResult(
                text="",
                succeeded=False,
                error=f"timed out after {self._timeout}s",
                duration=duration,
            )
        except OSError as exc:
            duration = time.monotonic() - start
            logger.warning(
                "Status command could not be started",
                source=kind.value,
                command=argv[0],
                error=str(exc),
            )
            return FetchResult(text="", succeeded=False, error=str(exc), duration=duration)

        duration = time.monotonic() - start
        if completed.returncode != 0:
            stderr = completed.stderr.strip()
            logger.warning(
                "Status command failed",
                source=kind.value,
                command=argv[0],
                returncode=completed.returncode,
                stderr=stderr,
            )
            return FetchResult(
                text=completed.stdout,
                succeeded=False,
                error=f"exit status {completed.returncode}: {stderr}",
                duration=duration,
            )

        logger.debug(
            "Status command completed",
            source=kind.value,
            duration_seconds=round(duration, 3),
        )
        return FetchResult(text=completed.stdout, succeeded=True, duration=duration)


class SyntheticSource:
    """Serves generated cluster data rendered as listing text.

    A new cluster is generated on every node listing fetch; the following
    job listing fetch renders jobs from that same cluster, so the two
    listings of one refresh cycle agree with each other.
    """

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()
        self._cluster: synthetic.SyntheticCluster | None = None

    def run(self, kind: SourceKind) -> FetchResult:
        if kind is SourceKind.NODES or self._cluster is None:
            self._cluster = synthetic.generate(self._rng)
        if kind is SourceKind.NODES:
            text = synthetic.render_node_listing(self._cluster)
        else:
            text = synthetic.render_job_listing(self._cluster)
        return FetchResult(text=text, succeeded=True)


def build_source(
    run_mode: RunMode,
    commands: Mapping[SourceKind, Sequence[str]] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Source:
    """Pick the source implementation for the run mode."""
    if run_mode is RunMode.SYNTHETIC:
        logger.info("Using synthetic cluster data")
        return SyntheticSource()
    return CommandSource(commands=commands, timeout=timeout)
