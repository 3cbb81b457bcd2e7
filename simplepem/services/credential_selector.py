"""
Handshake-time credential lookup over the published snapshots.
"""
import logging
from typing import Iterable, Optional, Union

from cryptography import x509

from ..models.keystore import CredentialSelection
from .snapshot_publisher import CredentialSnapshotPublisher


IssuerHint = Union[x509.Name, str]


class CredentialSelector:
    """
    Returns the chain and key an alias currently points to.

    Lookups never block and never touch the file system: each one reads a
    single snapshot reference from the publisher.
    """

    def __init__(self, publisher: CredentialSnapshotPublisher):
        self.publisher = publisher
        self.logger = logging.getLogger(__name__)

    def select(self, alias: str) -> CredentialSelection:
        """
        Get the credentials of ``alias`` as of this call.

        Returns:
            A found selection, or ``CredentialSelection.not_found`` when the
            alias is unknown or has nothing published
        """
        bundle = self.publisher.current_bundle(alias)
        if bundle is None:
            self.logger.debug(f"No credentials published for alias '{alias}'")
            return CredentialSelection.not_found(alias)
        return CredentialSelection.from_bundle(alias, bundle)

    def select_by_issuer(self, acceptable_issuers: Optional[Iterable[IssuerHint]],
                         key_type: Optional[str] = None) -> CredentialSelection:
        """
        Find the first alias whose leaf certificate was issued by one of
        ``acceptable_issuers``.

        Args:
            acceptable_issuers: Issuer names (``x509.Name`` or RFC 4514
                strings). None or empty accepts any issuer.
            key_type: Optional key algorithm the peer can use ("RSA", "EC", ...)

        Returns:
            Selection for the first matching alias in registration order
        """
        issuers = self._normalize_issuers(acceptable_issuers)

        # One consistent mapping; each snapshot is independently current
        for alias, snapshot in self.publisher.snapshots().items():
            bundle = snapshot.bundle
            leaf = bundle.leaf_certificate()
            if leaf is None or not bundle.has_key():
                continue
            if key_type and (bundle.key_algorithm or "").upper() != key_type.upper():
                continue
            if issuers is not None and leaf.issuer.rfc4514_string() not in issuers:
                continue
            return CredentialSelection.from_bundle(alias, bundle)

        return CredentialSelection.not_found()

    def _normalize_issuers(self, acceptable_issuers: Optional[Iterable[IssuerHint]]) -> Optional[set]:
        """Canonical issuer strings, or None when any issuer is acceptable."""
        if not acceptable_issuers:
            return None
        names = set()
        seen = False
        for issuer in acceptable_issuers:
            seen = True
            if isinstance(issuer, x509.Name):
                names.add(issuer.rfc4514_string())
                continue
            try:
                names.add(x509.Name.from_rfc4514_string(str(issuer)).rfc4514_string())
            except ValueError:
                self.logger.debug(f"Ignoring unparsable issuer hint: {issuer!r}")
        return names if seen else None
