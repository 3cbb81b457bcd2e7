"""
Reload engine: watches alias source files by modification time and republishes
credentials when they change.
"""
import contextlib
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import schedule

from ..models.errors import KeyStoreError, SourceReadError, UnknownAliasError
from ..models.keystore import AliasEntry, AliasStatus, CredentialSnapshot
from .concat_source import MultiFileConcatSource
from .pem_parser_service import PemParserService
from .snapshot_publisher import CredentialSnapshotPublisher


@dataclass
class _AliasWorker:
    """Timer and bookkeeping owned by one alias."""
    entry: AliasEntry
    status: AliasStatus
    scheduler: schedule.Scheduler = field(default_factory=schedule.Scheduler)
    tick_lock: threading.Lock = field(default_factory=threading.Lock)
    stop_event: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None
    arm_timer: bool = True

    @property
    def wants_timer(self) -> bool:
        return self.arm_timer and self.entry.polling_enabled

    @property
    def timer_running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()


class ReloadService:
    """
    Keeps every registered alias's published bundle in step with its files.

    Each polling alias gets its own scheduler and thread, so a slow read on
    one alias never delays another. Ticks for one alias never overlap: a
    tick that finds the previous one still running is skipped.
    """

    def __init__(self,
                 publisher: CredentialSnapshotPublisher,
                 parser: Optional[PemParserService] = None,
                 logging_service=None,
                 max_wait_seconds: float = 1.0):
        """
        Initialize the reload service.

        Args:
            publisher: Publisher receiving new snapshots
            parser: PEM parser (a default one is created when omitted)
            logging_service: Optional LoggingService for reload metrics and
                failure tracking
            max_wait_seconds: Upper bound on how long a timer thread sleeps
                between scheduler checks; also bounds shutdown latency
        """
        self.publisher = publisher
        self.parser = parser or PemParserService()
        self.logging_service = logging_service
        self.max_wait_seconds = max_wait_seconds
        self.logger = logging.getLogger(__name__)

        self._workers: Dict[str, _AliasWorker] = {}
        self._lock = threading.Lock()
        self._running = False

    def register(self, entry: AliasEntry, arm_timer: bool = True) -> CredentialSnapshot:
        """
        Parse an alias synchronously and start watching it.

        The first parse happens before this returns so a registered alias is
        never without credentials. Its failure propagates and the alias is
        not registered.

        Args:
            entry: Alias to watch
            arm_timer: Whether to poll in the background (ignored when the
                alias has no refresh interval)

        Returns:
            The first published snapshot

        Raises:
            SourceReadError: If a source file cannot be read
            ParseError: If the sources do not parse
        """
        mtimes = self._stat_mtimes(entry.source_paths)
        bundle = self.parser.parse(MultiFileConcatSource(entry.source_paths).build())

        status = AliasStatus(
            alias=entry.alias,
            source_paths=list(entry.source_paths),
            refresh_interval_seconds=entry.refresh_interval_seconds
        )
        worker = _AliasWorker(entry=entry, status=status, arm_timer=arm_timer)

        with self._lock:
            previous = self._workers.get(entry.alias)
            if previous is not None:
                self._stop_worker(previous)
            snapshot = self.publisher.publish(entry.alias, bundle, mtimes)
            now = datetime.now(timezone.utc)
            status.generation = snapshot.generation
            status.reload_count = 1
            status.last_checked_at = now
            status.last_reloaded_at = now
            self._workers[entry.alias] = worker

            if worker.wants_timer and self._running:
                self._start_worker(worker)

        self.logger.info(
            f"Loaded alias '{entry.alias}': {len(bundle.chain)} certificate(s), "
            f"key={'yes' if bundle.has_key() else 'no'}"
        )
        return snapshot

    def unregister(self, alias: str) -> None:
        """Stop watching ``alias`` and withdraw its snapshot."""
        with self._lock:
            worker = self._workers.pop(alias, None)
        if worker is None:
            raise UnknownAliasError(alias)
        self._stop_worker(worker)
        self.publisher.withdraw(alias)
        self.logger.info(f"Unregistered alias '{alias}'")

    def start(self) -> None:
        """Arm background timers for every alias registered with arm_timer set."""
        with self._lock:
            if self._running:
                self.logger.warning("Reload service is already running")
                return
            self._running = True
            for worker in self._workers.values():
                if worker.wants_timer:
                    self._start_worker(worker)
        self.logger.info("Reload service started")

    def stop(self) -> None:
        """
        Cancel every background timer.

        Published snapshots stay readable after stopping.
        """
        with self._lock:
            if not self._running:
                return
            self._running = False
            workers = list(self._workers.values())

        for worker in workers:
            self._stop_worker(worker)
        self.logger.info("Reload service stopped")

    def is_running(self) -> bool:
        return self._running

    def reload_alias(self, alias: str, force: bool = False) -> bool:
        """
        Check an alias now, waiting for a running tick to finish first.

        Args:
            alias: Alias to check
            force: Reparse even if modification times are unchanged

        Returns:
            True if a new bundle was published

        Raises:
            UnknownAliasError: If the alias is not registered
            SourceReadError, ParseError: If the reload fails (the previous
                bundle stays published)
        """
        worker = self._workers.get(alias)
        if worker is None:
            raise UnknownAliasError(alias)

        with worker.tick_lock:
            try:
                return self._check(worker, force)
            except KeyStoreError as e:
                self._record_failure(worker, e)
                raise

    def reload_all(self, force: bool = False) -> Dict[str, Optional[str]]:
        """
        Check every alias; failures are reported, not raised.

        Returns:
            Mapping of alias to None on success or the failure message
        """
        results: Dict[str, Optional[str]] = {}
        for alias in list(self._workers):
            try:
                self.reload_alias(alias, force=force)
                results[alias] = None
            except UnknownAliasError:
                continue
            except KeyStoreError as e:
                results[alias] = str(e)
        return results

    def get_status(self, alias: str) -> Optional[AliasStatus]:
        worker = self._workers.get(alias)
        if worker is None:
            return None
        worker.status.polling = worker.timer_running
        return worker.status

    def get_all_status(self) -> List[AliasStatus]:
        return [s for s in (self.get_status(a) for a in list(self._workers)) if s is not None]

    def get_next_check(self, alias: str) -> Optional[datetime]:
        worker = self._workers.get(alias)
        if worker is None or not worker.timer_running or not worker.scheduler.jobs:
            return None
        return worker.scheduler.next_run

    def _tick(self, alias: str) -> None:
        """Scheduled check; failures stay inside the alias."""
        worker = self._workers.get(alias)
        if worker is None:
            return

        if not worker.tick_lock.acquire(blocking=False):
            self.logger.debug(f"Skipping tick for '{alias}': previous check still running")
            return

        try:
            self._check(worker, force=False)
        except KeyStoreError as e:
            self._record_failure(worker, e)
        except Exception as e:
            self.logger.exception(f"Unexpected error while reloading alias '{alias}'")
            self._record_failure(worker, e)
        finally:
            worker.tick_lock.release()

    def _check(self, worker: _AliasWorker, force: bool) -> bool:
        """Compare modification times and republish on change. Caller holds tick_lock."""
        entry = worker.entry
        status = worker.status
        status.last_checked_at = datetime.now(timezone.utc)

        with self._measure(entry.alias) as outcome:
            mtimes = self._stat_mtimes(entry.source_paths)
            current = self.publisher.get(entry.alias)

            if not force and current is not None and current.observed_mtimes == mtimes:
                return False

            data = MultiFileConcatSource(entry.source_paths).build()
            bundle = self.parser.parse(data)

            # Unregistered or replaced while reading
            if self._workers.get(entry.alias) is not worker:
                return False

            snapshot = self.publisher.publish(entry.alias, bundle, mtimes)
            outcome['published'] = True

        status.generation = snapshot.generation
        status.reload_count += 1
        status.consecutive_failures = 0
        status.last_error = None
        status.last_reloaded_at = snapshot.published_at

        leaf = bundle.leaf_certificate()
        self.logger.info(
            f"Reloaded alias '{entry.alias}' (generation {snapshot.generation})"
            + (f", leaf subject {leaf.subject.rfc4514_string()}" if leaf is not None else "")
        )
        return True

    def _record_failure(self, worker: _AliasWorker, error: Exception) -> None:
        status = worker.status
        status.consecutive_failures += 1
        status.total_failures += 1
        status.last_error = str(error)

        paths = list(worker.entry.source_paths)
        if self.logging_service is not None:
            self.logging_service.track_failure(worker.entry.alias, error, paths)
        else:
            self.logger.error(
                f"Reload of alias '{worker.entry.alias}' failed, keeping generation "
                f"{status.generation}: {error}",
                extra={
                    'extra_data': {
                        'alias': worker.entry.alias,
                        'paths': paths,
                        'error_type': type(error).__name__,
                        'cause': str(error),
                        'consecutive_failures': status.consecutive_failures
                    }
                }
            )

    def _measure(self, alias: str):
        if self.logging_service is not None:
            return self.logging_service.measure_reload(alias)
        return contextlib.nullcontext({'published': False})

    @staticmethod
    def _stat_mtimes(paths: Tuple[str, ...]) -> Tuple[int, ...]:
        mtimes = []
        for index, path in enumerate(paths):
            try:
                mtimes.append(os.stat(path).st_mtime_ns)
            except OSError as e:
                raise SourceReadError(index, path, e) from e
        return tuple(mtimes)

    def _start_worker(self, worker: _AliasWorker) -> None:
        alias = worker.entry.alias
        worker.scheduler.clear()
        worker.scheduler.every(worker.entry.refresh_interval_seconds).seconds.do(self._tick, alias)
        worker.stop_event.clear()
        worker.thread = threading.Thread(
            target=self._run_worker,
            args=(worker,),
            name=f"pem-reload-{alias}",
            daemon=True
        )
        worker.thread.start()
        self.logger.info(
            f"Polling alias '{alias}' every {worker.entry.refresh_interval_seconds}s"
        )

    def _stop_worker(self, worker: _AliasWorker) -> None:
        worker.stop_event.set()
        thread = worker.thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=self.max_wait_seconds + 5)
        worker.scheduler.clear()
        worker.thread = None

    def _run_worker(self, worker: _AliasWorker) -> None:
        """Run the scheduler loop for one alias."""
        while not worker.stop_event.is_set():
            try:
                worker.scheduler.run_pending()
            except Exception as e:
                self.logger.error(f"Error in reload loop for '{worker.entry.alias}': {str(e)}")

            idle = worker.scheduler.idle_seconds
            if idle is None:
                idle = self.max_wait_seconds
            worker.stop_event.wait(min(max(idle, 0.01), self.max_wait_seconds))
