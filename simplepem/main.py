"""
Main application entry point for the PEM key store.
Handles initialization, background refresh and graceful shutdown.
"""

import os
import sys
import signal
import logging
import threading
from typing import Optional
from datetime import datetime

from .services.config_service import ConfigService
from .services.logging_service import LoggingService
from .services.providers import get_provider
from .services.keystore_service import PemKeyStore
from .app import ManagementApp


class KeyStoreApplication:
    """Main application class for the PEM key store."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the key store application.

        Args:
            config_path: Path to configuration file (optional)
        """
        self.config_path = config_path or self._get_default_config_path()
        self.logger = logging.getLogger(__name__)
        self.config_service = None
        self.config = None
        self.logging_service = None
        self.keystore: Optional[PemKeyStore] = None
        self.management_app = None

        self._shutdown_event = threading.Event()
        self._is_running = False
        self._started_at = None

        self._setup_signal_handlers()

    def _get_default_config_path(self) -> str:
        """Get the default configuration file path."""
        possible_paths = [
            "config/simplepem.properties",
            "simplepem.properties",
            os.path.expanduser("~/.simplepem/simplepem.properties"),
            "/etc/simplepem/simplepem.properties"
        ]

        for path in possible_paths:
            if os.path.exists(path):
                return path

        return possible_paths[0]

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown and forced reload."""
        if threading.current_thread() is not threading.main_thread():
            return

        def signal_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            self.logger.info(f"Received {signal_name} signal, initiating graceful shutdown...")
            self.shutdown()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        # SIGHUP forces every alias to be reparsed (Unix only)
        if hasattr(signal, 'SIGHUP'):
            def reload_handler(signum, frame):
                self.logger.info("Received SIGHUP signal, reloading all aliases...")
                self.reload_all()

            signal.signal(signal.SIGHUP, reload_handler)

    def initialize(self) -> bool:
        """
        Initialize all application components.

        Returns:
            True if initialization successful, False otherwise
        """
        try:
            if not self._load_configuration():
                return False

            self.logging_service = LoggingService(self.config)
            self.logger.info("Starting key store initialization...")

            if not self._initialize_keystore():
                return False

            if self.config.enable_api and not self._initialize_management_app():
                return False

            self.keystore.start()
            self._is_running = True
            self._started_at = datetime.now()
            self.logger.info("Key store initialized successfully")
            return True

        except Exception as e:
            self.logger.error(f"Failed to initialize application: {str(e)}")
            return False

    def _load_configuration(self) -> bool:
        """Load application configuration."""
        try:
            self.logger.info(f"Loading configuration from: {self.config_path}")
            self.config_service = ConfigService()

            if not os.path.exists(self.config_path):
                self.logger.warning(f"Configuration file not found: {self.config_path}")
                self.config_service.create_default_config_file(self.config_path)
                self.logger.info(f"Default configuration created at: {self.config_path}")
                self.logger.info("Please edit the configuration file and restart the application")
                return False

            self.config = self.config_service.load_config(self.config_path)
            return True

        except Exception as e:
            self.logger.error(f"Failed to load configuration: {str(e)}")
            return False

    def _initialize_keystore(self) -> bool:
        """Create the configured provider and parse every alias once."""
        try:
            self.keystore = get_provider(
                self.config.provider,
                config=self.config,
                logging_service=self.logging_service
            )
            self.logger.info(
                f"Key store '{self.config.provider}' loaded {self.keystore.size()} alias(es)"
            )
            return True

        except Exception as e:
            self.logger.error(f"Failed to initialize key store: {str(e)}")
            return False

    def _initialize_management_app(self) -> bool:
        """Initialize Flask management application."""
        try:
            self.management_app = ManagementApp(self.keystore, self.config, self.logging_service)
            self.logger.info("Management API initialized")
            return True

        except Exception as e:
            self.logger.error(f"Failed to initialize management API: {str(e)}")
            return False

    def run(self, host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
        """
        Run until shutdown is requested.

        Serves the management API when enabled, otherwise just keeps the
        refresh timers alive.
        """
        if not self._is_running:
            self.logger.error("Application not initialized. Call initialize() first.")
            return

        try:
            if self.management_app is not None:
                self.management_app.run(host=host, port=port, debug=debug)
            else:
                self.logger.info("Key store running; waiting for shutdown signal")
                self._shutdown_event.wait()
        except KeyboardInterrupt:
            self.logger.info("Received keyboard interrupt")
        finally:
            self.shutdown()

    def reload_all(self):
        """Reparse every alias; failures keep the previous bundle."""
        if self.keystore is None:
            return {}
        results = self.keystore.reload_all(force=True)
        for alias, error in results.items():
            if error:
                self.logger.warning(f"Alias '{alias}' kept previous bundle: {error}")
        return results

    def shutdown(self):
        """Perform graceful shutdown of the application."""
        if not self._is_running:
            return

        self.logger.info("Initiating graceful shutdown...")
        self._is_running = False
        self._shutdown_event.set()

        try:
            self.keystore.shutdown()
        except Exception as e:
            self.logger.error(f"Error during shutdown: {str(e)}")

        self.logger.info("Graceful shutdown completed")

    def is_running(self) -> bool:
        """Check if the application is running."""
        return self._is_running

    def get_status(self) -> dict:
        """Get application status information."""
        status = {
            'running': self._is_running,
            'config_path': self.config_path,
            'provider': self.config.provider if self.config else None,
            'api_enabled': self.config.enable_api if self.config else False,
            'started_at': self._started_at.isoformat() if self._started_at else None,
            'aliases': {}
        }

        if self.keystore:
            for alias in self.keystore.aliases():
                leaf = self.keystore.leaf_certificate(alias)
                alias_status = self.keystore.get_status(alias)
                status['aliases'][alias] = {
                    'leaf_subject': leaf.subject.rfc4514_string() if leaf is not None else None,
                    'has_key': self.keystore.has_key(alias),
                    'status': alias_status.to_dict() if alias_status else None
                }

        return status


def check_configuration(config_path: str) -> int:
    """Load the configuration, parse every alias once and print a summary."""
    try:
        config = ConfigService().load_config(config_path)
        keystore = get_provider(config.provider, config=config)
    except Exception as e:
        print(f"Configuration check failed: {e}")
        return 1

    print("Configuration check passed")
    print(f"Config path: {config_path}")
    print(f"Provider: {config.provider}")
    for alias in keystore.aliases():
        leaf = keystore.leaf_certificate(alias)
        subject = leaf.subject.rfc4514_string() if leaf is not None else "(no certificate)"
        chain_length = len(keystore.certificate_chain(alias))
        key = keystore.get_bundle(alias).key_algorithm or "none"
        print(f"  {alias}: {subject} (chain {chain_length}, key {key})")
    return 0


def main():
    """Main entry point for the application."""
    import argparse

    parser = argparse.ArgumentParser(description='PEM key store with automatic certificate reload')
    parser.add_argument('--config', '-c', help='Configuration file path')
    parser.add_argument('--host', help='Management API host (uses config if not specified)')
    parser.add_argument('--port', type=int, help='Management API port (uses config if not specified)')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')
    parser.add_argument('--check-config', action='store_true', help='Check configuration and exit')

    args = parser.parse_args()

    app = KeyStoreApplication(config_path=args.config)

    if args.check_config:
        sys.exit(check_configuration(app.config_path))

    if not app.initialize():
        print("Failed to initialize application")
        sys.exit(1)

    try:
        app.run(host=args.host, port=args.port, debug=args.debug)
    except Exception as e:
        print(f"Application error: {str(e)}")
        sys.exit(1)


if __name__ == '__main__':
    main()
