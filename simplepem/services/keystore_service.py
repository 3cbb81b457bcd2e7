"""
PEM key store: registry, reload engine, publisher and selector behind one
object with an explicit lifecycle.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from cryptography import x509

from ..models.bundle import PemBundle
from ..models.config import Config, RELOADABLE_PROVIDER, STATIC_PROVIDER
from ..models.errors import UnknownProviderError
from ..models.keystore import AliasStatus, CredentialSelection, CredentialSnapshot
from .alias_registry import AliasRegistry
from .credential_selector import CredentialSelector, IssuerHint
from .pem_parser_service import PemParserService
from .reload_service import ReloadService
from .snapshot_publisher import CredentialSnapshotPublisher


class PemKeyStore:
    """
    Credential store backed by PEM files.

    Lifecycle: construct, register aliases, ``start()`` background refresh,
    serve ``select()`` calls, ``shutdown()``. After shutdown the last
    published bundles remain readable.

    The static provider parses each alias once at registration; the
    reloadable provider additionally polls aliases with a refresh interval.
    """

    def __init__(self, provider_name: str = RELOADABLE_PROVIDER, logging_service=None):
        if provider_name not in (STATIC_PROVIDER, RELOADABLE_PROVIDER):
            raise UnknownProviderError(provider_name)

        self.provider_name = provider_name
        self.logger = logging.getLogger(__name__)
        self.registry = AliasRegistry()
        self.publisher = CredentialSnapshotPublisher()
        self.reload_service = ReloadService(
            self.publisher,
            parser=PemParserService(),
            logging_service=logging_service
        )
        self.selector = CredentialSelector(self.publisher)

    @property
    def reloadable(self) -> bool:
        return self.provider_name == RELOADABLE_PROVIDER

    # Lifecycle

    def load_config(self, config: Config) -> 'PemKeyStore':
        """Register every alias in ``config``; returns self for chaining."""
        for alias_config in config.aliases:
            self.register_alias(
                alias_config.alias,
                alias_config.source_paths,
                alias_config.effective_refresh_interval(config.refresh_interval_seconds)
            )
        return self

    def register_alias(self, alias: str, source_paths: Sequence[str],
                       refresh_interval_seconds: int = 0) -> CredentialSnapshot:
        """
        Register (or replace) an alias and parse it immediately.

        Raises:
            ConfigurationError: If the definition is invalid; nothing is read
            SourceReadError, ParseError: If the first parse fails; the alias
                is not registered
        """
        entry = AliasRegistry.build_entry(alias, source_paths, refresh_interval_seconds)
        snapshot = self.reload_service.register(entry, arm_timer=self.reloadable)
        self.registry.add(entry)
        return snapshot

    def unregister_alias(self, alias: str) -> None:
        self.reload_service.unregister(alias)
        self.registry.remove(alias)

    def start(self) -> 'PemKeyStore':
        """Arm background refresh (only the reloadable provider polls)."""
        self.reload_service.start()
        return self

    def shutdown(self) -> None:
        self.reload_service.stop()
        self.logger.info(f"Key store '{self.provider_name}' shut down")

    def is_running(self) -> bool:
        return self.reload_service.is_running()

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False

    # Reload

    def reload(self, alias: str, force: bool = False) -> bool:
        """Check ``alias`` now; True if a new bundle was published."""
        return self.reload_service.reload_alias(alias, force=force)

    def reload_all(self, force: bool = False):
        return self.reload_service.reload_all(force=force)

    # Handshake-time selection

    def select(self, alias: str) -> CredentialSelection:
        return self.selector.select(alias)

    def select_by_issuer(self, acceptable_issuers: Optional[Iterable[IssuerHint]],
                         key_type: Optional[str] = None) -> CredentialSelection:
        return self.selector.select_by_issuer(acceptable_issuers, key_type=key_type)

    # Introspection

    def aliases(self) -> List[str]:
        return self.registry.aliases()

    def contains_alias(self, alias: str) -> bool:
        return alias in self.registry

    def size(self) -> int:
        return len(self.registry)

    def get_bundle(self, alias: str) -> Optional[PemBundle]:
        return self.publisher.current_bundle(alias)

    def get_snapshot(self, alias: str) -> Optional[CredentialSnapshot]:
        return self.publisher.get(alias)

    def get_status(self, alias: str) -> Optional[AliasStatus]:
        return self.reload_service.get_status(alias)

    def has_certificate(self, alias: str) -> bool:
        bundle = self.get_bundle(alias)
        return bundle is not None and bundle.has_certificate()

    def has_key(self, alias: str) -> bool:
        bundle = self.get_bundle(alias)
        return bundle is not None and bundle.has_key()

    def certificate_chain(self, alias: str) -> List[x509.Certificate]:
        bundle = self.get_bundle(alias)
        return bundle.certificate_chain() if bundle is not None else []

    def leaf_certificate(self, alias: str) -> Optional[x509.Certificate]:
        bundle = self.get_bundle(alias)
        return bundle.leaf_certificate() if bundle is not None else None

    get_certificate = leaf_certificate

    def matches_certificate(self, alias: str, candidate: Optional[x509.Certificate]) -> bool:
        bundle = self.get_bundle(alias)
        return bundle is not None and bundle.matches_certificate(candidate)

    def get_private_key(self, alias: str):
        bundle = self.get_bundle(alias)
        return bundle.get_private_key() if bundle is not None else None

    def get_creation_date(self, alias: str) -> Optional[datetime]:
        bundle = self.get_bundle(alias)
        return bundle.get_creation_date() if bundle is not None else None

    def get_certificate_alias(self, candidate: x509.Certificate) -> Optional[str]:
        """Find the alias whose leaf certificate is ``candidate``."""
        for alias, snapshot in self.publisher.snapshots().items():
            if snapshot.bundle.matches_certificate(candidate):
                return alias
        return None
