"""
Publishes the current credential snapshot of every alias.
"""
import logging
import threading
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from ..models.bundle import PemBundle
from ..models.keystore import CredentialSnapshot


class CredentialSnapshotPublisher:
    """
    Holds one immutable ``CredentialSnapshot`` per alias.

    Writers build a new mapping and swap the reference under a lock. Readers
    take the current mapping without locking; whatever snapshot they get
    stays complete and unchanged for as long as they hold it.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._snapshots: Mapping[str, CredentialSnapshot] = {}
        self._write_lock = threading.Lock()
        self._listeners: List[Callable[[CredentialSnapshot], None]] = []

    def add_listener(self, listener: Callable[[CredentialSnapshot], None]) -> None:
        """Call ``listener`` with every snapshot published from now on."""
        with self._write_lock:
            self._listeners = self._listeners + [listener]

    def get(self, alias: str) -> Optional[CredentialSnapshot]:
        return self._snapshots.get(alias)

    def current_bundle(self, alias: str) -> Optional[PemBundle]:
        snapshot = self._snapshots.get(alias)
        return snapshot.bundle if snapshot is not None else None

    def snapshots(self) -> Mapping[str, CredentialSnapshot]:
        """Get a consistent view of every published snapshot."""
        return self._snapshots

    def publish(self, alias: str, bundle: PemBundle,
                observed_mtimes: Sequence[int]) -> CredentialSnapshot:
        """
        Replace the snapshot of ``alias`` in one step.

        Args:
            alias: Alias being updated
            bundle: Newly parsed bundle
            observed_mtimes: Modification times the bundle was read at

        Returns:
            The published snapshot
        """
        with self._write_lock:
            previous = self._snapshots.get(alias)
            snapshot = CredentialSnapshot(
                alias=alias,
                bundle=bundle,
                observed_mtimes=tuple(observed_mtimes),
                generation=previous.generation + 1 if previous else 1
            )
            snapshots: Dict[str, CredentialSnapshot] = dict(self._snapshots)
            snapshots[alias] = snapshot
            self._snapshots = snapshots

        self.logger.debug(f"Published generation {snapshot.generation} for alias '{alias}'")

        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception:
                self.logger.exception(f"Publish listener failed for alias '{alias}'")
        return snapshot

    def withdraw(self, alias: str) -> Optional[CredentialSnapshot]:
        """Stop publishing ``alias``; readers holding its bundle keep it."""
        with self._write_lock:
            snapshots = dict(self._snapshots)
            removed = snapshots.pop(alias, None)
            self._snapshots = snapshots
        return removed
