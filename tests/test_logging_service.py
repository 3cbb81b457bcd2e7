"""
Tests for structured logging and reload monitoring.
"""
import json
import logging
import os
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta

from simplepem.models.config import Config
from simplepem.models.errors import SourceReadError
from simplepem.services.logging_service import (
    FailureTracker, JSONFormatter, LoggingService, ReloadMonitor
)


class TestJSONFormatter(unittest.TestCase):

    def test_format_includes_extra_data(self):
        record = logging.LogRecord(
            name="simplepem.test", level=logging.ERROR, pathname=__file__, lineno=10,
            msg="Reload of %s failed", args=("server",), exc_info=None
        )
        record.extra_data = {'alias': 'server', 'paths': ['a.pem']}

        data = json.loads(JSONFormatter().format(record))

        self.assertEqual(data['level'], 'ERROR')
        self.assertEqual(data['message'], 'Reload of server failed')
        self.assertEqual(data['extra_data']['alias'], 'server')
        self.assertIsNone(data['exception_info'])

    def test_format_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            import sys
            exc_info = sys.exc_info()

        record = logging.LogRecord(
            name="simplepem.test", level=logging.ERROR, pathname=__file__, lineno=20,
            msg="failed", args=(), exc_info=exc_info
        )

        data = json.loads(JSONFormatter().format(record))

        self.assertEqual(data['exception_info']['type'], 'ValueError')
        self.assertEqual(data['exception_info']['message'], 'boom')


class TestReloadMonitor(unittest.TestCase):

    def test_measure_success_and_failure(self):
        monitor = ReloadMonitor()

        with monitor.measure_reload("server") as outcome:
            outcome['published'] = True
        with monitor.measure_reload("server"):
            pass
        with self.assertRaises(RuntimeError):
            with monitor.measure_reload("server"):
                raise RuntimeError("read failed")

        stats = monitor.get_alias_stats("server")
        self.assertEqual(stats['total_checks'], 3)
        self.assertEqual(stats['success_count'], 2)
        self.assertEqual(stats['failure_count'], 1)
        self.assertEqual(stats['published_count'], 1)
        self.assertEqual(monitor.get_metrics("server")[-1].error_message, "read failed")
        self.assertEqual(monitor.get_alias_stats("other"), {})

    def test_metrics_are_bounded(self):
        monitor = ReloadMonitor(max_metrics=3)

        for _ in range(5):
            with monitor.measure_reload("server"):
                pass

        self.assertEqual(len(monitor.get_metrics()), 3)


class TestFailureTracker(unittest.TestCase):

    def test_track_failure_logs_alias_paths_and_cause(self):
        tracker = FailureTracker()
        error = SourceReadError(1, "/certs/key.pem", FileNotFoundError("gone"))

        with self.assertLogs('simplepem.services.logging_service', level='ERROR') as logs:
            tracker.track_failure("server", error, ["/certs/chain.pem", "/certs/key.pem"])

        extra = logs.records[0].extra_data
        self.assertEqual(extra['alias'], "server")
        self.assertEqual(extra['paths'], ["/certs/chain.pem", "/certs/key.pem"])
        self.assertEqual(extra['error_type'], "SourceReadError")
        self.assertIn("gone", extra['cause'])

    def test_failure_summary(self):
        tracker = FailureTracker()
        self.assertEqual(
            tracker.get_failure_summary(),
            {'total_failures': 0, 'error_types': {}, 'aliases': {}}
        )

        with self.assertLogs('simplepem.services.logging_service', level='ERROR'):
            tracker.track_failure("a", ValueError("x"), ["a.pem"])
            tracker.track_failure("a", ValueError("y"), ["a.pem"])
            tracker.track_failure("b", OSError("z"), ["b.pem"])

        summary = tracker.get_failure_summary()
        self.assertEqual(summary['total_failures'], 3)
        self.assertEqual(summary['error_types'], {'ValueError': 2, 'OSError': 1})
        self.assertEqual(summary['aliases'], {'a': 2, 'b': 1})
        self.assertEqual(len(tracker.get_failures(alias="b")), 1)
        self.assertEqual(tracker.get_failures(since=datetime.now() + timedelta(hours=1)), [])

    def test_cleanup_old_failures(self):
        tracker = FailureTracker()
        with self.assertLogs('simplepem.services.logging_service', level='ERROR'):
            tracker.track_failure("a", ValueError("x"), ["a.pem"])
        tracker.failures[0].timestamp = (datetime.now() - timedelta(days=30)).isoformat()

        tracker.cleanup_old_failures(max_age_hours=24)

        self.assertEqual(tracker.failures, [])

    def test_failures_are_bounded(self):
        tracker = FailureTracker(max_failures=3)
        with self.assertLogs('simplepem.services.logging_service', level='ERROR'):
            for i in range(5):
                tracker.track_failure(f"alias-{i}", ValueError("x"), ["a.pem"])

        self.assertEqual([f.alias for f in tracker.failures], ["alias-2", "alias-3", "alias-4"])

    def test_aged_failures_dropped_when_tracking(self):
        tracker = FailureTracker(max_age_hours=24)
        with self.assertLogs('simplepem.services.logging_service', level='ERROR'):
            tracker.track_failure("old", ValueError("x"), ["a.pem"])
            tracker.failures[0].timestamp = (datetime.now() - timedelta(days=2)).isoformat()
            tracker.track_failure("new", ValueError("y"), ["a.pem"])

        self.assertEqual([f.alias for f in tracker.failures], ["new"])


class TestLoggingService(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.root_logger = logging.getLogger()
        self.saved_handlers = self.root_logger.handlers[:]
        self.saved_level = self.root_logger.level

    def tearDown(self):
        for handler in self.root_logger.handlers[:]:
            self.root_logger.removeHandler(handler)
            if handler not in self.saved_handlers:
                handler.close()
        for handler in self.saved_handlers:
            self.root_logger.addHandler(handler)
        self.root_logger.setLevel(self.saved_level)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_setup_writes_json_log_files(self):
        log_path = os.path.join(self.temp_dir, "logs", "simplepem.log")
        config = Config(log_level="INFO", log_file_path=log_path, json_logs=True)

        LoggingService(config)
        logging.getLogger("simplepem.test").error("reload failed", extra={'extra_data': {'alias': 'server'}})
        for handler in self.root_logger.handlers:
            handler.flush()

        with open(log_path) as f:
            lines = [json.loads(line) for line in f if line.strip()]
        self.assertTrue(any(entry['message'] == "reload failed" for entry in lines))

        error_path = os.path.join(self.temp_dir, "logs", "simplepem.errors.log")
        with open(error_path) as f:
            errors = [json.loads(line) for line in f if line.strip()]
        self.assertEqual([e['message'] for e in errors], ["reload failed"])

    def test_without_handlers(self):
        service = LoggingService(configure_handlers=False)

        with service.measure_reload("server") as outcome:
            outcome['published'] = True
        with self.assertLogs('simplepem.services.logging_service', level='ERROR'):
            service.track_failure("server", ValueError("bad"), ["a.pem"])

        self.assertEqual(service.get_reload_stats()["server"]['published_count'], 1)
        self.assertEqual(service.get_failure_summary(since_hours=1)['total_failures'], 1)
        self.assertEqual(self.root_logger.handlers, self.saved_handlers)


if __name__ == '__main__':
    unittest.main()
