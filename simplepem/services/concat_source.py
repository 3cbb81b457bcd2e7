"""
Concatenates several PEM files into the single stream the parser consumes.
"""
import os
from typing import List, Sequence

from ..models.errors import SourceReadError


class MultiFileConcatSource:
    """
    Ordered list of source files read back-to-back.

    Typically the certificate chain file followed by the key file. No
    separator is inserted between sources and nothing is cached: every
    ``build()`` reads the files again.
    """

    def __init__(self, paths: Sequence[str] = ()):
        self._paths: List[str] = [os.fspath(p) for p in paths]

    @classmethod
    def from_files(cls, *paths: str) -> 'MultiFileConcatSource':
        return cls(paths)

    def add(self, path: str) -> 'MultiFileConcatSource':
        """Append a source file; returns self for chaining."""
        self._paths.append(os.fspath(path))
        return self

    @property
    def paths(self) -> List[str]:
        return list(self._paths)

    def __len__(self):
        return len(self._paths)

    def build(self) -> bytes:
        """
        Read every source in order and join the contents.

        Raises:
            SourceReadError: If a source cannot be opened or read; identifies
                the failing source index and path
        """
        chunks = []
        for index, path in enumerate(self._paths):
            try:
                with open(path, 'rb') as f:
                    chunks.append(f.read())
            except OSError as e:
                raise SourceReadError(index, path, e) from e
        return b"".join(chunks)
