"""
Immutable certificate chain and private key bundle produced by one parse.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization


@dataclass(frozen=True)
class CertificateInfo:
    """Information about a certificate."""
    subject: str
    issuer: str
    serial_number: str
    not_before: datetime
    not_after: datetime
    is_valid: bool
    fingerprint: str

    @classmethod
    def from_certificate(cls, cert: x509.Certificate) -> 'CertificateInfo':
        """Extract information from a certificate."""
        now = datetime.now(timezone.utc)
        not_before = cert.not_valid_before_utc
        not_after = cert.not_valid_after_utc

        return cls(
            subject=cert.subject.rfc4514_string(),
            issuer=cert.issuer.rfc4514_string(),
            serial_number=str(cert.serial_number),
            not_before=not_before,
            not_after=not_after,
            is_valid=not_before <= now <= not_after,
            fingerprint=cert.fingerprint(hashes.SHA256()).hex()
        )


@dataclass(frozen=True, eq=False)
class PemBundle:
    """
    Parsed credential material: an ordered chain (leaf first) and at most one
    private key.

    Bundles are never mutated. A newer parse produces a new bundle which
    replaces the old one in the publisher. Bundles compare by identity.
    """
    chain: Tuple[x509.Certificate, ...] = ()
    key: Optional[Any] = None
    key_format: Optional[str] = None
    key_algorithm: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    leaf_key_match: bool = field(init=False, repr=False, default=False)

    def __post_init__(self):
        # Computed once here so selection never does key arithmetic
        object.__setattr__(self, 'leaf_key_match', self._compute_leaf_key_match())

    def has_certificate(self) -> bool:
        return len(self.chain) > 0

    def has_key(self) -> bool:
        return self.key is not None

    def certificate_chain(self) -> List[x509.Certificate]:
        return list(self.chain)

    def leaf_certificate(self) -> Optional[x509.Certificate]:
        return self.chain[0] if self.chain else None

    # Kept for callers used to the single-certificate accessor
    get_certificate = leaf_certificate

    def get_private_key(self):
        return self.key

    def get_creation_date(self) -> datetime:
        return self.created_at

    def matches_certificate(self, candidate: Optional[x509.Certificate]) -> bool:
        """
        Check whether ``candidate`` is this bundle's leaf certificate.

        Only the leaf is considered; intermediates never match. Comparison is
        on the full DER encoding.
        """
        leaf = self.leaf_certificate()
        if candidate is None or leaf is None:
            return False
        try:
            candidate_der = candidate.public_bytes(serialization.Encoding.DER)
        except AttributeError:
            return False
        return candidate_der == leaf.public_bytes(serialization.Encoding.DER)

    def key_matches_leaf(self) -> bool:
        """Check that the private key is the counterpart of the leaf's public key."""
        return self.leaf_key_match

    def _compute_leaf_key_match(self) -> bool:
        leaf = self.leaf_certificate()
        if leaf is None or self.key is None:
            return False

        spki = serialization.PublicFormat.SubjectPublicKeyInfo
        der = serialization.Encoding.DER
        return (
            self.key.public_key().public_bytes(der, spki)
            == leaf.public_key().public_bytes(der, spki)
        )

    def certificate_info(self) -> List[CertificateInfo]:
        """Get details for every certificate in the chain, leaf first."""
        return [CertificateInfo.from_certificate(cert) for cert in self.chain]

    def to_pem(self) -> bytes:
        """Re-encode the chain followed by the key as PEM."""
        parts = [cert.public_bytes(serialization.Encoding.PEM) for cert in self.chain]
        if self.key is not None:
            parts.append(self.key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption()
            ))
        return b"".join(parts)
