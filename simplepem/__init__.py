"""
PEM key store with automatic, zero-downtime certificate reload.
"""
from .models import (
    PemBundle, Config, AliasConfig, CredentialSelection,
    KeyStoreError, ConfigurationError, SourceReadError, ParseError,
    STATIC_PROVIDER, RELOADABLE_PROVIDER
)
from .services import (
    PemKeyStore, MultiFileConcatSource, parse_pem_stream,
    get_provider, available_providers
)

__version__ = "0.1.0"

__all__ = [
    'PemBundle',
    'Config',
    'AliasConfig',
    'CredentialSelection',
    'KeyStoreError',
    'ConfigurationError',
    'SourceReadError',
    'ParseError',
    'STATIC_PROVIDER',
    'RELOADABLE_PROVIDER',
    'PemKeyStore',
    'MultiFileConcatSource',
    'parse_pem_stream',
    'get_provider',
    'available_providers',
]
