"""
Tests for the ReloadService change detection and background refresh.
"""
import os
import shutil
import tempfile
import time
import unittest
from datetime import datetime

from simplepem.models.errors import ParseError, SourceReadError, UnknownAliasError
from simplepem.models.keystore import AliasEntry
from simplepem.services.logging_service import LoggingService
from simplepem.services.reload_service import ReloadService
from simplepem.services.snapshot_publisher import CredentialSnapshotPublisher

from tests.cert_factory import create_chain_identity, create_self_signed_identity, write_file


RELOAD_LOGGER = 'simplepem.services.reload_service'


class ReloadServiceTestCase(unittest.TestCase):
    """Shared fixtures: an identity written as chain and key files."""

    @classmethod
    def setUpClass(cls):
        cls.first = create_chain_identity("anna.apn2.com")
        cls.second = create_self_signed_identity(
            "self.signed.cert", organization="Radical Research", state="NA", country="IO"
        )

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.chain_path = os.path.join(self.temp_dir, "chain.pem")
        self.key_path = os.path.join(self.temp_dir, "key.pem")
        write_file(self.chain_path, self.first.chain_pem())
        write_file(self.key_path, self.first.key_pem())

        self.publisher = CredentialSnapshotPublisher()
        self.service = ReloadService(self.publisher, max_wait_seconds=0.2)

    def tearDown(self):
        self.service.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def entry(self, interval=0, alias="server"):
        return AliasEntry(alias, (self.chain_path, self.key_path), interval)

    def swap_to_second_identity(self):
        write_file(self.chain_path, self.second.chain_pem(), bump_seconds=2)
        write_file(self.key_path, self.second.key_pem(), bump_seconds=2)

    def leaf_subject(self, alias="server"):
        return self.publisher.current_bundle(alias).leaf_certificate().subject.rfc4514_string()


class TestReloadServiceRegistration(ReloadServiceTestCase):

    def test_register_publishes_synchronously(self):
        snapshot = self.service.register(self.entry())

        self.assertEqual(snapshot.generation, 1)
        self.assertEqual(len(snapshot.observed_mtimes), 2)
        self.assertEqual(self.leaf_subject(), "CN=anna.apn2.com")

        status = self.service.get_status("server")
        self.assertEqual(status.generation, 1)
        self.assertEqual(status.reload_count, 1)
        self.assertFalse(status.polling)

    def test_first_parse_failure_propagates(self):
        missing = AliasEntry("missing", (os.path.join(self.temp_dir, "nope.pem"),), 0)
        with self.assertRaises(SourceReadError):
            self.service.register(missing)

        garbage_path = os.path.join(self.temp_dir, "garbage.pem")
        write_file(garbage_path, b"-----BEGIN CERTIFICATE-----\n###\n-----END CERTIFICATE-----\n")
        with self.assertRaises(ParseError):
            self.service.register(AliasEntry("garbage", (garbage_path,), 0))

        self.assertIsNone(self.publisher.get("missing"))
        self.assertIsNone(self.publisher.get("garbage"))
        self.assertIsNone(self.service.get_status("garbage"))

    def test_unregister(self):
        self.service.register(self.entry())

        self.service.unregister("server")

        self.assertIsNone(self.publisher.get("server"))
        with self.assertRaises(UnknownAliasError):
            self.service.unregister("server")

    def test_reload_unknown_alias(self):
        with self.assertRaises(UnknownAliasError):
            self.service.reload_alias("nope")


class TestReloadServiceChangeDetection(ReloadServiceTestCase):

    def setUp(self):
        super().setUp()
        self.service.register(self.entry())
        self.original = self.publisher.current_bundle("server")

    def test_unchanged_files_keep_bundle_identity(self):
        self.assertFalse(self.service.reload_alias("server"))
        self.assertFalse(self.service.reload_alias("server"))

        self.assertIs(self.publisher.current_bundle("server"), self.original)
        self.assertEqual(self.publisher.get("server").generation, 1)

    def test_changed_files_are_republished(self):
        self.swap_to_second_identity()

        self.assertTrue(self.service.reload_alias("server"))

        self.assertEqual(
            self.leaf_subject(),
            "CN=self.signed.cert,O=Radical Research,ST=NA,C=IO"
        )
        bundle = self.publisher.current_bundle("server")
        self.assertEqual(len(bundle.chain), 1)
        self.assertTrue(bundle.key_matches_leaf())
        self.assertEqual(self.service.get_status("server").generation, 2)

    def test_change_to_any_source_triggers_reload(self):
        write_file(self.key_path, self.first.key_pem(), bump_seconds=2)

        self.assertTrue(self.service.reload_alias("server"))
        self.assertIsNot(self.publisher.current_bundle("server"), self.original)

    def test_force_reparses_unchanged_files(self):
        self.assertTrue(self.service.reload_alias("server", force=True))

        self.assertIsNot(self.publisher.current_bundle("server"), self.original)
        self.assertEqual(self.publisher.get("server").generation, 2)

    def test_failed_reload_keeps_previous_bundle(self):
        write_file(self.chain_path, b"-----BEGIN CERTIFICATE-----\nbroken", bump_seconds=2)

        with self.assertLogs(RELOAD_LOGGER, level='ERROR') as logs:
            with self.assertRaises(ParseError):
                self.service.reload_alias("server")

        self.assertIs(self.publisher.current_bundle("server"), self.original)
        self.assertIn("server", logs.output[0])

        status = self.service.get_status("server")
        self.assertEqual(status.consecutive_failures, 1)
        self.assertEqual(status.total_failures, 1)
        self.assertTrue(status.is_stale)
        self.assertIn("PEM block #0", status.last_error)

    def test_failure_is_retried_until_fixed(self):
        write_file(self.chain_path, b"-----END CERTIFICATE-----\n", bump_seconds=2)

        for _ in range(2):
            with self.assertLogs(RELOAD_LOGGER, level='ERROR'):
                with self.assertRaises(ParseError):
                    self.service.reload_alias("server")
        self.assertEqual(self.service.get_status("server").consecutive_failures, 2)

        self.swap_to_second_identity()

        self.assertTrue(self.service.reload_alias("server"))
        status = self.service.get_status("server")
        self.assertEqual(status.consecutive_failures, 0)
        self.assertEqual(status.total_failures, 2)
        self.assertIsNone(status.last_error)
        self.assertFalse(status.is_stale)

    def test_deleted_source_keeps_previous_bundle(self):
        os.remove(self.key_path)

        with self.assertLogs(RELOAD_LOGGER, level='ERROR'):
            with self.assertRaises(SourceReadError) as ctx:
                self.service.reload_alias("server")

        self.assertEqual(ctx.exception.index, 1)
        self.assertIs(self.publisher.current_bundle("server"), self.original)

    def test_tick_swallows_failures(self):
        os.remove(self.chain_path)

        with self.assertLogs(RELOAD_LOGGER, level='ERROR'):
            self.service._tick("server")

        self.assertIs(self.publisher.current_bundle("server"), self.original)
        self.assertEqual(self.service.get_status("server").consecutive_failures, 1)

    def test_tick_skipped_while_previous_check_runs(self):
        self.swap_to_second_identity()
        worker = self.service._workers["server"]

        worker.tick_lock.acquire()
        try:
            with self.assertLogs(RELOAD_LOGGER, level='DEBUG') as logs:
                self.service._tick("server")
        finally:
            worker.tick_lock.release()

        self.assertIs(self.publisher.current_bundle("server"), self.original)
        self.assertTrue(any("Skipping tick" in line for line in logs.output))

        self.service._tick("server")
        self.assertIsNot(self.publisher.current_bundle("server"), self.original)

    def test_reload_all_reports_failures(self):
        other_path = os.path.join(self.temp_dir, "other.pem")
        write_file(other_path, self.second.chain_pem() + self.second.key_pem())
        self.service.register(AliasEntry("other", (other_path,), 0))
        os.remove(other_path)

        with self.assertLogs(RELOAD_LOGGER, level='ERROR'):
            results = self.service.reload_all(force=True)

        self.assertIsNone(results["server"])
        self.assertIn("other.pem", results["other"])
        self.assertIsNotNone(self.publisher.current_bundle("other"))

    def test_logging_service_receives_metrics_and_failures(self):
        logging_service = LoggingService(configure_handlers=False)
        self.service.logging_service = logging_service

        self.service.reload_alias("server", force=True)
        os.remove(self.key_path)
        with self.assertRaises(SourceReadError):
            self.service.reload_alias("server")

        stats = logging_service.get_reload_stats("server")
        self.assertEqual(stats['total_checks'], 2)
        self.assertEqual(stats['published_count'], 1)
        self.assertEqual(stats['failure_count'], 1)

        failures = logging_service.failure_tracker.get_failures(alias="server")
        self.assertEqual(len(failures), 1)
        self.assertEqual(failures[0].error_type, "SourceReadError")
        self.assertEqual(failures[0].paths, [self.chain_path, self.key_path])


class TestReloadServiceBackgroundRefresh(ReloadServiceTestCase):

    def wait_for(self, predicate, timeout=6.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.05)
        return predicate()

    def test_timer_picks_up_changes(self):
        self.service.register(self.entry(interval=1))
        self.service.start()

        self.assertTrue(self.service.get_status("server").polling)
        self.assertIsInstance(self.service.get_next_check("server"), datetime)

        self.swap_to_second_identity()

        self.assertTrue(self.wait_for(
            lambda: self.leaf_subject() == "CN=self.signed.cert,O=Radical Research,ST=NA,C=IO"
        ))

    def test_zero_interval_is_not_polled(self):
        self.service.register(self.entry(interval=0))
        self.service.start()

        self.assertFalse(self.service.get_status("server").polling)
        self.assertIsNone(self.service.get_next_check("server"))

    def test_register_while_running_arms_timer(self):
        self.service.start()
        self.service.register(self.entry(interval=1))

        self.assertTrue(self.service.get_status("server").polling)

    def test_arm_timer_false_never_polls(self):
        self.service.start()
        self.service.register(self.entry(interval=1), arm_timer=False)

        self.assertFalse(self.service.get_status("server").polling)

    def test_arm_timer_false_stays_unpolled_after_start(self):
        self.service.register(self.entry(interval=1), arm_timer=False)
        original = self.publisher.current_bundle("server")
        self.service.start()

        self.assertFalse(self.service.get_status("server").polling)
        self.assertIsNone(self.service.get_next_check("server"))

        self.swap_to_second_identity()
        time.sleep(1.5)
        self.assertIs(self.publisher.current_bundle("server"), original)

    def test_changes_are_not_visible_before_next_tick(self):
        self.service.register(self.entry(interval=60))
        self.service.start()
        original = self.publisher.current_bundle("server")

        self.swap_to_second_identity()
        time.sleep(0.5)

        self.assertTrue(self.service.get_status("server").polling)
        self.assertIs(self.publisher.current_bundle("server"), original)
        self.assertEqual(self.leaf_subject(), "CN=anna.apn2.com")
        self.assertEqual(self.publisher.get("server").generation, 1)

        self.assertTrue(self.service.reload_alias("server"))
        self.assertEqual(
            self.leaf_subject(),
            "CN=self.signed.cert,O=Radical Research,ST=NA,C=IO"
        )

    def test_stop_keeps_snapshots_readable(self):
        self.service.register(self.entry(interval=1))
        self.service.start()
        bundle = self.publisher.current_bundle("server")

        self.service.stop()

        self.assertFalse(self.service.is_running())
        self.assertFalse(self.service.get_status("server").polling)
        self.assertIs(self.publisher.current_bundle("server"), bundle)

        self.swap_to_second_identity()
        time.sleep(1.5)
        self.assertIs(self.publisher.current_bundle("server"), bundle)

    def test_replacing_alias_stops_previous_timer(self):
        self.service.start()
        self.service.register(self.entry(interval=1))
        old_thread = self.service._workers["server"].thread

        self.service.register(self.entry(interval=2))

        self.assertFalse(old_thread.is_alive())
        self.assertTrue(self.service.get_status("server").polling)
        self.assertEqual(self.publisher.get("server").generation, 2)


if __name__ == '__main__':
    unittest.main()
