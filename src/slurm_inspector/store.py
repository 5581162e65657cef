"""Holder for the most recently published cluster snapshot.

One writer (the poller) publishes whole, already-built snapshots; any
number of readers fetch the current one. Publishing is a single reference
assignment, so readers never lock and never see a partially built value.
"""

from threading import Lock

import structlog

from .types import Snapshot

logger = structlog.get_logger(__name__)


class SnapshotStore:
    """Single-slot, thread-safe snapshot holder.

    Keeps no history: a replaced snapshot lives on only as long as some
    reader still holds a reference to it. Before the first publish,
    ``current`` returns ``Snapshot.pending()``.
    """

    def __init__(self):
        self._publish_lock = Lock()
        self._current: Snapshot = Snapshot.pending()
        self._generation = 0

    def current(self) -> Snapshot:
        """Return the current snapshot without blocking.

        The returned object is immutable and stays valid after later
        publishes.
        """
        return self._current

    def publish(self, snapshot: Snapshot) -> None:
        """Make ``snapshot`` the current value.

        Args:
            snapshot: Fully built snapshot; it must not be modified afterwards.

        Raises:
            TypeError: If ``snapshot`` is not a ``Snapshot``.
        """
        if not isinstance(snapshot, Snapshot):
            msg = f"expected Snapshot, got {type(snapshot).__name__}"
            raise TypeError(msg)
        with self._publish_lock:
            self._current = snapshot
            self._generation += 1
            generation = self._generation
        logger.debug(
            "Published snapshot",
            generation=generation,
            stale=snapshot.stale,
            nodes=len(snapshot.nodes),
            jobs=len(snapshot.jobs),
        )

    @property
    def generation(self) -> int:
        """Number of snapshots published so far."""
        return self._generation
