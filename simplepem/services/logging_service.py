"""
Logging and reload monitoring for the key store.

Background reload failures are never raised to the caller, so this module is
the channel operators rely on to notice stale credentials.
"""
import json
import logging
import logging.handlers
import sys
import threading
import time
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence


@dataclass
class LogEntry:
    """Structured log entry for JSON logging."""
    timestamp: str
    level: str
    logger_name: str
    message: str
    module: str
    function: str
    line_number: int
    thread_name: str
    process_id: int
    extra_data: Optional[Dict[str, Any]] = None
    exception_info: Optional[Dict[str, Any]] = None


@dataclass
class ReloadMetric:
    """Timing of one reload check."""
    alias: str
    duration_ms: float
    timestamp: str
    success: bool
    published: bool = False
    error_message: Optional[str] = None


@dataclass
class ReloadFailure:
    """A reload that could not be adopted."""
    alias: str
    error_type: str
    error_message: str
    paths: List[str]
    timestamp: str
    stack_trace: Optional[str] = None


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = LogEntry(
            timestamp=datetime.fromtimestamp(record.created).isoformat(),
            level=record.levelname,
            logger_name=record.name,
            message=record.getMessage(),
            module=record.module,
            function=record.funcName,
            line_number=record.lineno,
            thread_name=record.threadName,
            process_id=record.process,
            extra_data=getattr(record, 'extra_data', None)
        )

        if record.exc_info:
            log_entry.exception_info = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        return json.dumps(asdict(log_entry), default=str)


class ReloadMonitor:
    """Collects reload timings per alias."""

    def __init__(self, max_metrics: int = 1000):
        self.metrics: List[ReloadMetric] = []
        self.max_metrics = max_metrics
        self.lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @contextmanager
    def measure_reload(self, alias: str):
        """
        Time a reload check.

        Yields a dict; set ``outcome['published'] = True`` inside the block
        when a new bundle was published.
        """
        start_time = time.monotonic()
        outcome = {'published': False}
        success = True
        error_message = None

        try:
            yield outcome
        except Exception as e:
            success = False
            error_message = str(e)
            raise
        finally:
            metric = ReloadMetric(
                alias=alias,
                duration_ms=(time.monotonic() - start_time) * 1000,
                timestamp=datetime.now().isoformat(),
                success=success,
                published=outcome['published'],
                error_message=error_message
            )

            with self.lock:
                self.metrics.append(metric)
                if len(self.metrics) > self.max_metrics:
                    self.metrics = self.metrics[-self.max_metrics:]

            self.logger.debug(
                f"Reload check for '{alias}' took {metric.duration_ms:.1f}ms",
                extra={'extra_data': asdict(metric)}
            )

    def get_metrics(self, alias: Optional[str] = None) -> List[ReloadMetric]:
        with self.lock:
            metrics = self.metrics.copy()
        if alias:
            metrics = [m for m in metrics if m.alias == alias]
        return metrics

    def get_alias_stats(self, alias: str) -> Dict[str, Any]:
        """Get statistics for a specific alias."""
        metrics = self.get_metrics(alias=alias)

        if not metrics:
            return {}

        durations = [m.duration_ms for m in metrics]
        success_count = sum(1 for m in metrics if m.success)

        return {
            'alias': alias,
            'total_checks': len(metrics),
            'success_count': success_count,
            'failure_count': len(metrics) - success_count,
            'published_count': sum(1 for m in metrics if m.published),
            'avg_duration_ms': sum(durations) / len(durations),
            'max_duration_ms': max(durations)
        }


class FailureTracker:
    """Reload failure tracking and analysis."""

    def __init__(self, max_failures: int = 1000, max_age_hours: int = 168):
        self.failures: List[ReloadFailure] = []
        self.max_failures = max_failures
        self.max_age_hours = max_age_hours
        self.lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def track_failure(self, alias: str, error: Exception, paths: Sequence[str]):
        """Record a failed reload and log it with alias, paths and cause."""
        failure = ReloadFailure(
            alias=alias,
            error_type=type(error).__name__,
            error_message=str(error),
            paths=list(paths),
            timestamp=datetime.now().isoformat(),
            stack_trace=''.join(traceback.format_exception(type(error), error, error.__traceback__))
        )

        cutoff_iso = (datetime.now() - timedelta(hours=self.max_age_hours)).isoformat()
        with self.lock:
            self.failures.append(failure)
            if self.failures[0].timestamp < cutoff_iso:
                self.failures = [f for f in self.failures if f.timestamp >= cutoff_iso]
            if len(self.failures) > self.max_failures:
                self.failures = self.failures[-self.max_failures:]

        self.logger.error(
            f"Reload failure tracked for '{alias}': {failure.error_type}",
            extra={
                'extra_data': {
                    'alias': alias,
                    'paths': failure.paths,
                    'error_type': failure.error_type,
                    'cause': failure.error_message
                }
            }
        )

    def get_failures(self, alias: Optional[str] = None,
                     since: Optional[datetime] = None) -> List[ReloadFailure]:
        with self.lock:
            failures = self.failures.copy()

        if alias:
            failures = [f for f in failures if f.alias == alias]

        if since:
            since_iso = since.isoformat()
            failures = [f for f in failures if f.timestamp >= since_iso]

        return failures

    def get_failure_summary(self, since: Optional[datetime] = None) -> Dict[str, Any]:
        """Get failure counts by error type and alias."""
        failures = self.get_failures(since=since)

        if not failures:
            return {'total_failures': 0, 'error_types': {}, 'aliases': {}}

        error_types: Dict[str, int] = {}
        aliases: Dict[str, int] = {}
        for failure in failures:
            error_types[failure.error_type] = error_types.get(failure.error_type, 0) + 1
            aliases[failure.alias] = aliases.get(failure.alias, 0) + 1

        return {
            'total_failures': len(failures),
            'error_types': error_types,
            'aliases': aliases
        }

    def cleanup_old_failures(self, max_age_hours: int = 168):
        """Remove failures older than specified hours."""
        cutoff_iso = (datetime.now() - timedelta(hours=max_age_hours)).isoformat()

        with self.lock:
            self.failures = [f for f in self.failures if f.timestamp >= cutoff_iso]


class LoggingService:
    """Configures handlers and owns the reload monitor and failure tracker."""

    def __init__(self, config=None, configure_handlers: bool = True):
        """
        Initialize logging service with configuration.

        Args:
            config: Config providing log_level, log_file_path and json_logs
            configure_handlers: Install root logger handlers (disable in
                embedding applications that configure logging themselves)
        """
        self.config = config
        self.reload_monitor = ReloadMonitor()
        self.failure_tracker = FailureTracker()
        if configure_handlers and config is not None:
            self._setup_logging()
        self.logger = logging.getLogger(__name__)
        self.logger.info("Logging service initialized")

    def _setup_logging(self):
        """Install file, console and errors-only handlers on the root logger."""
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        root_logger.setLevel(log_level)

        console_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        file_formatter = JSONFormatter() if self.config.json_logs else console_formatter

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(console_formatter)
        console_handler.setLevel(log_level)
        root_logger.addHandler(console_handler)

        if not self.config.log_file_path:
            return

        log_path = Path(self.config.log_file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=str(log_path),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setFormatter(file_formatter)
        file_handler.setLevel(log_level)

        error_handler = logging.handlers.RotatingFileHandler(
            filename=str(log_path.with_suffix('.errors.log')),
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
            encoding='utf-8'
        )
        error_handler.setFormatter(file_formatter)
        error_handler.setLevel(logging.ERROR)

        root_logger.addHandler(file_handler)
        root_logger.addHandler(error_handler)

    def measure_reload(self, alias: str):
        """Get reload measurement context manager."""
        return self.reload_monitor.measure_reload(alias)

    def track_failure(self, alias: str, error: Exception, paths: Sequence[str]):
        self.failure_tracker.track_failure(alias, error, paths)

    def get_reload_stats(self, alias: Optional[str] = None) -> Dict[str, Any]:
        if alias:
            return self.reload_monitor.get_alias_stats(alias)
        aliases = set(m.alias for m in self.reload_monitor.get_metrics())
        return {a: self.reload_monitor.get_alias_stats(a) for a in aliases}

    def get_failure_summary(self, since_hours: int = 24) -> Dict[str, Any]:
        since = datetime.now() - timedelta(hours=since_hours)
        return self.failure_tracker.get_failure_summary(since=since)
