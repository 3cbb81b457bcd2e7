"""
Exception hierarchy for the PEM key store.
"""
from typing import Optional


class KeyStoreError(Exception):
    """Base class for all key store errors."""


class ConfigurationError(KeyStoreError):
    """Raised when an alias or provider is configured incorrectly."""


class UnknownProviderError(ConfigurationError):
    """Raised when a provider name is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown key store provider: {name}")


class UnknownAliasError(KeyStoreError, KeyError):
    """Raised by management operations that name an unregistered alias."""

    def __init__(self, alias: str):
        self.alias = alias
        super().__init__(f"Alias is not registered: {alias}")

    def __str__(self):
        return self.args[0]


class SourceReadError(KeyStoreError):
    """A configured source file could not be opened or read."""

    def __init__(self, index: int, path: str, cause: Exception):
        self.index = index
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to read source #{index} ({path}): {cause}")


class ParseError(KeyStoreError):
    """Stream content did not decode as a valid PEM certificate or key."""

    def __init__(self, block_index: int, cause: str, label: Optional[str] = None):
        self.block_index = block_index
        self.cause = cause
        self.label = label
        where = f"PEM block #{block_index}"
        if label:
            where += f" ({label})"
        super().__init__(f"{where}: {cause}")


class CredentialUnavailableError(KeyStoreError):
    """An alias has no usable certificate and key to offer in a handshake."""

    def __init__(self, alias: str, reason: str):
        self.alias = alias
        self.reason = reason
        super().__init__(f"No usable credentials for alias '{alias}': {reason}")
