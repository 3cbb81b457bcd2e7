"""
Named key store providers.

Hosts look providers up by name: ``simplepem`` parses each alias once,
``simplepemreload`` also polls the files and republishes on change.
"""
import logging
import threading
from typing import Callable, Dict, List, Optional

from ..models.config import Config, RELOADABLE_PROVIDER, STATIC_PROVIDER
from ..models.errors import ConfigurationError, UnknownProviderError
from .keystore_service import PemKeyStore


ProviderFactory = Callable[..., PemKeyStore]

logger = logging.getLogger(__name__)

_providers: Dict[str, ProviderFactory] = {}
_providers_lock = threading.Lock()


def register_provider(name: str, factory: ProviderFactory, replace: bool = False) -> None:
    """
    Make a key store factory discoverable under ``name``.

    The factory is called with ``logging_service`` as a keyword argument and
    must return a PemKeyStore.
    """
    if not name:
        raise ConfigurationError("Provider name must be a non-empty string")
    with _providers_lock:
        if name in _providers and not replace:
            raise ConfigurationError(f"Provider already registered: {name}")
        _providers[name] = factory
    logger.debug(f"Registered key store provider '{name}'")


def unregister_provider(name: str) -> None:
    with _providers_lock:
        if _providers.pop(name, None) is None:
            raise UnknownProviderError(name)


def available_providers() -> List[str]:
    return sorted(_providers)


def get_provider(name: str, config: Optional[Config] = None, logging_service=None) -> PemKeyStore:
    """
    Instantiate the provider registered as ``name``.

    Args:
        name: Provider name
        config: When given, its aliases are registered (and parsed) before
            the store is returned
        logging_service: Optional LoggingService passed to the store

    Raises:
        UnknownProviderError: If no provider has that name
    """
    factory = _providers.get(name)
    if factory is None:
        raise UnknownProviderError(name)

    keystore = factory(logging_service=logging_service)
    if config is not None:
        keystore.load_config(config)
    return keystore


def _static_keystore(logging_service=None) -> PemKeyStore:
    return PemKeyStore(STATIC_PROVIDER, logging_service=logging_service)


def _reloadable_keystore(logging_service=None) -> PemKeyStore:
    return PemKeyStore(RELOADABLE_PROVIDER, logging_service=logging_service)


register_provider(STATIC_PROVIDER, _static_keystore)
register_provider(RELOADABLE_PROVIDER, _reloadable_keystore)
