"""
Key store data models: registered aliases, published snapshots and
handshake-time selection results.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from cryptography import x509

from .bundle import PemBundle


@dataclass(frozen=True)
class AliasEntry:
    """One registered credential source."""
    alias: str
    source_paths: Tuple[str, ...]
    refresh_interval_seconds: int = 0

    @property
    def polling_enabled(self) -> bool:
        return self.refresh_interval_seconds > 0


@dataclass(frozen=True)
class CredentialSnapshot:
    """
    The published view of one alias.

    The bundle and the modification times it was parsed from travel together,
    so replacing the snapshot reference updates both in one step.
    """
    alias: str
    bundle: PemBundle
    observed_mtimes: Tuple[int, ...]
    generation: int = 1
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class CredentialSelection:
    """Result of a handshake-time credential lookup."""
    alias: Optional[str]
    found: bool
    chain: List[x509.Certificate] = field(default_factory=list)
    key: Optional[Any] = None
    bundle: Optional[PemBundle] = None
    key_matches_leaf: bool = False

    @classmethod
    def from_bundle(cls, alias: str, bundle: PemBundle) -> 'CredentialSelection':
        """Create a successful selection from a published bundle."""
        return cls(
            alias=alias,
            found=True,
            chain=bundle.certificate_chain(),
            key=bundle.get_private_key(),
            bundle=bundle,
            key_matches_leaf=bundle.key_matches_leaf()
        )

    @classmethod
    def not_found(cls, alias: Optional[str] = None) -> 'CredentialSelection':
        """Create a selection meaning no credentials can be offered."""
        return cls(alias=alias, found=False)

    def __bool__(self):
        return self.found


@dataclass
class AliasStatus:
    """Reload bookkeeping for one alias, reported to operators."""
    alias: str
    source_paths: List[str]
    refresh_interval_seconds: int
    polling: bool = False
    generation: int = 0
    reload_count: int = 0
    consecutive_failures: int = 0
    total_failures: int = 0
    last_error: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    last_reloaded_at: Optional[datetime] = None

    @property
    def is_stale(self) -> bool:
        """True while the latest change on disk could not be adopted."""
        return self.consecutive_failures > 0

    def to_dict(self) -> dict:
        return {
            'alias': self.alias,
            'source_paths': list(self.source_paths),
            'refresh_interval_seconds': self.refresh_interval_seconds,
            'polling': self.polling,
            'generation': self.generation,
            'reload_count': self.reload_count,
            'consecutive_failures': self.consecutive_failures,
            'total_failures': self.total_failures,
            'last_error': self.last_error,
            'last_checked_at': self.last_checked_at.isoformat() if self.last_checked_at else None,
            'last_reloaded_at': self.last_reloaded_at.isoformat() if self.last_reloaded_at else None,
            'stale': self.is_stale,
        }
