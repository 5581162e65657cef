"""Background refresh of the cluster snapshot.

Each cycle walks Idle -> Fetching -> Parsing -> Publishing -> Idle: both
listings are fetched, whatever arrived is parsed, and a complete snapshot
is built before it is handed to the store in one step. Fetch failures and
parse problems never escape a cycle; they show up as counters, warning
counts and the staleness flag.
"""

import enum
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import datetime, timezone

import structlog

from . import parsers
from .sources import FetchResult, Source
from .store import SnapshotStore
from .types import Snapshot, SourceKind

logger = structlog.get_logger(__name__)


class PollerState(enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PARSING = "parsing"
    PUBLISHING = "publishing"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Poller(threading.Thread):
    """Runs refresh cycles on a fixed interval until stopped.

    The first cycle runs immediately on start. Stopping takes effect at the
    next wait point; a cycle already in progress finishes and publishes.
    """

    def __init__(
        self,
        source: Source,
        store: SnapshotStore,
        interval: float,
        layouts: Mapping[SourceKind, parsers.ColumnLayout] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the poller.

        Args:
            source: Where raw listing text comes from.
            store: Store that receives each new snapshot.
            interval: Seconds between the starts of consecutive cycles.
            layouts: Column layouts per source kind for headerless output;
                missing kinds use the parser defaults.
            clock: Returns the capture timestamp for new snapshots.

        Raises:
            ValueError: If the interval is not positive.
        """
        super().__init__(name="slurm-inspector-poller", daemon=True)
        if interval <= 0:
            msg = "interval must be positive"
            raise ValueError(msg)
        self._source = source
        self._store = store
        self._interval = interval
        self._layouts = {
            kind: (layouts or {}).get(kind) or parsers.default_layout(kind)
            for kind in SourceKind
        }
        self._clock = clock
        self._stop_event = threading.Event()
        self._state = PollerState.IDLE
        self._fetch_failures = {kind: 0 for kind in SourceKind}
        self._cycles = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def cycles(self) -> int:
        """Number of refresh cycles completed."""
        return self._cycles

    @property
    def fetch_failures(self) -> dict[SourceKind, int]:
        """Failed fetches per source since start; never reset."""
        return dict(self._fetch_failures)

    def _fetch(self, kind: SourceKind) -> FetchResult:
        try:
            return self._source.run(kind)
        except Exception as exc:
            logger.exception("Source raised while fetching", source=kind.value)
            return FetchResult(text="", succeeded=False, error=str(exc))

    def _publish_stale(self, failed: tuple[SourceKind, ...]) -> Snapshot | None:
        previous = self._store.current()
        if not previous.is_available:
            logger.warning("No data fetched and nothing published yet")
            return None
        snapshot = replace(
            previous,
            captured_at=self._clock(),
            stale=True,
            failed_sources=failed,
        )
        self._store.publish(snapshot)
        logger.warning(
            "All sources failed; republished last snapshot as stale",
            data_from=previous.captured_at.isoformat() if previous.captured_at else None,
        )
        return snapshot

    def refresh(self) -> Snapshot | None:
        """Run one fetch/parse/publish cycle.

        Returns:
            The snapshot that was published, or ``None`` if both sources
            failed before anything had ever been published.
        """
        start = time.monotonic()
        self._state = PollerState.FETCHING
        texts: dict[SourceKind, str] = {}
        failed: list[SourceKind] = []
        for kind in SourceKind:
            result = self._fetch(kind)
            if result.succeeded:
                texts[kind] = result.text
            else:
                failed.append(kind)
                self._fetch_failures[kind] += 1
                logger.warning("Fetch failed", source=kind.value, error=result.error)

        try:
            if not texts:
                self._state = PollerState.PUBLISHING
                return self._publish_stale(tuple(failed))

            self._state = PollerState.PARSING
            results = {
                kind: parsers.parse(kind, text, self._layouts[kind])
                for kind, text in texts.items()
            }
            node_result = results.get(SourceKind.NODES, parsers.ParseResult())
            job_result = results.get(SourceKind.JOBS, parsers.ParseResult())

            self._state = PollerState.PUBLISHING
            snapshot = Snapshot(
                captured_at=self._clock(),
                nodes=node_result.nodes,
                partitions=node_result.partitions,
                jobs=job_result.jobs,
                parse_warnings=node_result.warnings + job_result.warnings,
                stale=False,
                failed_sources=tuple(failed),
            )
            self._store.publish(snapshot)
            logger.info(
                "Refreshed snapshot",
                nodes=len(snapshot.nodes),
                partitions=len(snapshot.partitions),
                jobs=len(snapshot.jobs),
                warnings=snapshot.parse_warnings,
                failed_sources=[kind.value for kind in failed],
                duration_seconds=round(time.monotonic() - start, 3),
            )
            return snapshot
        finally:
            self._state = PollerState.IDLE
            self._cycles += 1

    def run(self) -> None:
        logger.info("Poller started", interval_seconds=self._interval)
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                self.refresh()
            except Exception:
                logger.exception("Refresh cycle failed")
            remaining = self._interval - (time.monotonic() - started)
            if self._stop_event.wait(max(remaining, 0.0)):
                break
        logger.info("Poller stopped")

    def stop(self, timeout: float | None = None) -> None:
        """Ask the loop to exit and wait for it, if it was started."""
        self._stop_event.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join(timeout=timeout)
