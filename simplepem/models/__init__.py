"""
Models package for the PEM key store.
"""

from .bundle import PemBundle, CertificateInfo
from .config import (
    Config, AliasConfig, ConfigValidationError, ConfigValidationResult,
    STATIC_PROVIDER, RELOADABLE_PROVIDER, PROVIDER_NAMES
)
from .errors import (
    KeyStoreError, ConfigurationError, UnknownProviderError, UnknownAliasError,
    SourceReadError, ParseError, CredentialUnavailableError
)
from .keystore import AliasEntry, CredentialSnapshot, CredentialSelection, AliasStatus

__all__ = [
    'PemBundle',
    'CertificateInfo',
    'Config',
    'AliasConfig',
    'ConfigValidationError',
    'ConfigValidationResult',
    'STATIC_PROVIDER',
    'RELOADABLE_PROVIDER',
    'PROVIDER_NAMES',
    'KeyStoreError',
    'ConfigurationError',
    'UnknownProviderError',
    'UnknownAliasError',
    'SourceReadError',
    'ParseError',
    'CredentialUnavailableError',
    'AliasEntry',
    'CredentialSnapshot',
    'CredentialSelection',
    'AliasStatus',
]
