"""
Services package for the PEM key store.
"""

from .alias_registry import AliasRegistry
from .concat_source import MultiFileConcatSource
from .config_service import ConfigService
from .credential_selector import CredentialSelector
from .keystore_service import PemKeyStore
from .logging_service import LoggingService
from .pem_parser_service import PemParserService, parse_pem_stream
from .providers import available_providers, get_provider, register_provider
from .reload_service import ReloadService
from .snapshot_publisher import CredentialSnapshotPublisher

__all__ = [
    'AliasRegistry',
    'MultiFileConcatSource',
    'ConfigService',
    'CredentialSelector',
    'PemKeyStore',
    'LoggingService',
    'PemParserService',
    'parse_pem_stream',
    'available_providers',
    'get_provider',
    'register_provider',
    'ReloadService',
    'CredentialSnapshotPublisher',
]
