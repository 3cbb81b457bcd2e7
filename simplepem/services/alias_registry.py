"""
Registry of aliases and the files backing them.
"""
import logging
import os
import threading
from typing import Dict, List, Optional, Sequence

from ..models.errors import ConfigurationError
from ..models.keystore import AliasEntry


class AliasRegistry:
    """Maps alias names to their source paths and refresh interval."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._entries: Dict[str, AliasEntry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def validate(alias: str, source_paths: Sequence[str], refresh_interval_seconds: int) -> None:
        """
        Validate an alias definition.

        Raises:
            ConfigurationError: For an empty alias name, no source paths or a
                negative refresh interval
        """
        if not alias or not isinstance(alias, str):
            raise ConfigurationError("Alias name must be a non-empty string")

        if isinstance(source_paths, (str, bytes)):
            raise ConfigurationError(f"Source paths for alias '{alias}' must be a list, not a single string")

        if not source_paths:
            raise ConfigurationError(f"Alias '{alias}' must have at least one source path")

        for path in source_paths:
            if not path:
                raise ConfigurationError(f"Alias '{alias}' has an empty source path")

        if (isinstance(refresh_interval_seconds, bool)
                or not isinstance(refresh_interval_seconds, int)
                or refresh_interval_seconds < 0):
            raise ConfigurationError(
                f"Refresh interval for alias '{alias}' must be a non-negative integer, "
                f"got {refresh_interval_seconds!r}"
            )

    @classmethod
    def build_entry(cls, alias: str, source_paths: Sequence[str],
                    refresh_interval_seconds: int = 0) -> AliasEntry:
        """Validate an alias definition and build its entry without storing it."""
        cls.validate(alias, source_paths, refresh_interval_seconds)
        return AliasEntry(
            alias=alias,
            source_paths=tuple(os.fspath(p) for p in source_paths),
            refresh_interval_seconds=refresh_interval_seconds
        )

    def register(self, alias: str, source_paths: Sequence[str],
                 refresh_interval_seconds: int = 0) -> AliasEntry:
        """
        Register or replace an alias.

        Args:
            alias: Unique alias name
            source_paths: Files concatenated in order before parsing
            refresh_interval_seconds: Poll period; 0 disables polling

        Returns:
            The stored AliasEntry
        """
        return self.add(self.build_entry(alias, source_paths, refresh_interval_seconds))

    def add(self, entry: AliasEntry) -> AliasEntry:
        """Store a validated entry, replacing any entry with the same alias."""
        alias = entry.alias
        with self._lock:
            entries = dict(self._entries)
            replaced = alias in entries
            entries[alias] = entry
            self._entries = entries

        self.logger.info(
            f"{'Replaced' if replaced else 'Registered'} alias '{alias}' "
            f"({len(entry.source_paths)} source(s), refresh every {entry.refresh_interval_seconds}s)"
        )
        return entry

    def remove(self, alias: str) -> Optional[AliasEntry]:
        with self._lock:
            entries = dict(self._entries)
            entry = entries.pop(alias, None)
            self._entries = entries
        return entry

    def get(self, alias: str) -> Optional[AliasEntry]:
        return self._entries.get(alias)

    def aliases(self) -> List[str]:
        return list(self._entries)

    def entries(self) -> List[AliasEntry]:
        return list(self._entries.values())

    def __contains__(self, alias):
        return alias in self._entries

    def __len__(self):
        return len(self._entries)
