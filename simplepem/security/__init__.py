"""
Security package: TLS integration for key store credentials.
"""
from .tls_context_service import TLSContextService, DEFAULT_CIPHERS

__all__ = [
    'TLSContextService',
    'DEFAULT_CIPHERS'
]
