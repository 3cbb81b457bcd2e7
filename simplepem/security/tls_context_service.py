"""
SSL context adapter: serves key store credentials to Python's ssl module.
"""
import logging
import os
import ssl
import tempfile
import threading
from typing import Dict, Mapping, Optional, Tuple

from ..models.bundle import PemBundle
from ..models.errors import CredentialUnavailableError
from ..models.keystore import CredentialSnapshot
from ..services.keystore_service import PemKeyStore


DEFAULT_CIPHERS = 'ECDHE+AESGCM:ECDHE+CHACHA20:DHE+AESGCM:DHE+CHACHA20:!aNULL:!MD5:!DSS'


class TLSContextService:
    """
    Builds server ``ssl.SSLContext`` objects from published bundles.

    Contexts are cached per bundle. When the key store publishes new
    material for an alias that already has a context, the replacement is
    built right away on the publishing thread, so handshakes only read the
    cache. A server context created by
    ``create_server_context`` switches to the current context of the
    requested alias on every handshake; established connections keep the
    credentials they negotiated with.
    """

    def __init__(self, keystore: PemKeyStore,
                 client_ca_path: Optional[str] = None,
                 client_cert_required: bool = False,
                 ciphers: str = DEFAULT_CIPHERS):
        """
        Args:
            keystore: Key store providing credentials
            client_ca_path: CA file for verifying client certificates (mTLS)
            client_cert_required: Require a client certificate when
                ``client_ca_path`` is set
            ciphers: OpenSSL cipher string for TLS 1.2
        """
        self.keystore = keystore
        self.client_ca_path = client_ca_path
        self.client_cert_required = client_cert_required
        self.ciphers = ciphers
        self.logger = logging.getLogger(__name__)

        self._contexts: Dict[str, Tuple[PemBundle, ssl.SSLContext]] = {}
        self._build_lock = threading.Lock()
        keystore.publisher.add_listener(self._rebuild_on_publish)

    def context_for(self, alias: str) -> ssl.SSLContext:
        """
        Get an SSL context holding the current credentials of ``alias``.

        Raises:
            CredentialUnavailableError: If the alias has nothing usable
        """
        selection = self.keystore.select(alias)
        if not selection.found:
            raise CredentialUnavailableError(alias, "no credentials published")

        bundle = selection.bundle
        cached = self._contexts.get(alias)
        if cached is not None and cached[0] is bundle:
            return cached[1]

        with self._build_lock:
            cached = self._contexts.get(alias)
            if cached is not None and cached[0] is bundle:
                return cached[1]

            context = self._build_context(alias, bundle)
            self._contexts[alias] = (bundle, context)

        self.logger.info(f"Built SSL context for alias '{alias}'")
        return context

    def create_server_context(self, default_alias: str,
                              sni_aliases: Optional[Mapping[str, str]] = None) -> ssl.SSLContext:
        """
        Create a server context that picks credentials at handshake time.

        Args:
            default_alias: Alias used when the client sends no server name or
                one that is not in ``sni_aliases``
            sni_aliases: Server name to alias mapping

        Returns:
            SSLContext to pass to ``wrap_socket`` or a server framework
        """
        sni_aliases = dict(sni_aliases or {})
        base_context = self._build_context(
            default_alias,
            self._require_bundle(default_alias)
        )
        self.context_for(default_alias)
        for alias in set(sni_aliases.values()) - {default_alias}:
            try:
                self.context_for(alias)
            except CredentialUnavailableError as e:
                self.logger.warning(f"No SSL context yet for SNI alias '{alias}': {e}")

        def select_context(ssl_object, server_name, _context):
            alias = self.alias_for_server_name(server_name, default_alias, sni_aliases)
            try:
                ssl_object.context = self.context_for(alias)
            except CredentialUnavailableError as e:
                self.logger.error(f"Rejecting handshake for '{server_name}': {e}")
                return ssl.ALERT_DESCRIPTION_HANDSHAKE_FAILURE
            except Exception:
                self.logger.exception(f"Unexpected error selecting credentials for '{server_name}'")
                return ssl.ALERT_DESCRIPTION_HANDSHAKE_FAILURE
            return None

        base_context.sni_callback = select_context
        return base_context

    def _rebuild_on_publish(self, snapshot: CredentialSnapshot) -> None:
        if snapshot.alias not in self._contexts:
            return
        try:
            self.context_for(snapshot.alias)
        except CredentialUnavailableError as e:
            self.logger.warning(f"Cannot build SSL context for new credentials of '{snapshot.alias}': {e}")

    @staticmethod
    def alias_for_server_name(server_name: Optional[str], default_alias: str,
                              sni_aliases: Mapping[str, str]) -> str:
        if server_name:
            return sni_aliases.get(server_name.lower(), sni_aliases.get(server_name, default_alias))
        return default_alias

    def _require_bundle(self, alias: str) -> PemBundle:
        selection = self.keystore.select(alias)
        if not selection.found:
            raise CredentialUnavailableError(alias, "no credentials published")
        return selection.bundle

    def _build_context(self, alias: str, bundle: PemBundle) -> ssl.SSLContext:
        """Create SSL context configured with the bundle's chain and key."""
        if not bundle.has_certificate():
            raise CredentialUnavailableError(alias, "bundle has no certificate")
        if not bundle.has_key():
            raise CredentialUnavailableError(alias, "bundle has no private key")
        if not bundle.key_matches_leaf():
            raise CredentialUnavailableError(alias, "private key does not match the leaf certificate")

        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        context.set_ciphers(self.ciphers)

        # load_cert_chain only reads from files
        fd, pem_path = tempfile.mkstemp(prefix='simplepem-', suffix='.pem')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(bundle.to_pem())
            context.load_cert_chain(certfile=pem_path)
        except ssl.SSLError as e:
            raise CredentialUnavailableError(alias, f"SSL rejected credentials: {e}") from e
        finally:
            os.unlink(pem_path)

        if self.client_ca_path:
            try:
                context.load_verify_locations(cafile=self.client_ca_path)
            except (OSError, ssl.SSLError) as e:
                raise CredentialUnavailableError(alias, f"cannot load client CA file: {e}") from e
            context.verify_mode = ssl.CERT_REQUIRED if self.client_cert_required else ssl.CERT_OPTIONAL

        return context
