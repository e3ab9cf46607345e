# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.04
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/core/checksum.py

"""
Content checksums and the per-entity checksum authority.

Content, source and link attributes can all change what is on disk. They
share one ChecksumCoordinator per entity, so after a write every one of them
agrees the entity is in sync without each recomputing a checksum.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Callable, Optional, Union

import xxhash
from loguru import logger

from fsconverge.core.stat_cache import FileKind

if TYPE_CHECKING:
    from fsconverge.core.entity import FileEntity

LITE_BYTES = 512  # md5lite only hashes the head of the file
CHUNK_SIZE = 8192

_HASHERS: dict[str, Callable] = {
    "md5": hashlib.md5,
    "md5lite": hashlib.md5,
    "sha256": hashlib.sha256,
    "xxh3": xxhash.xxh3_64,
}


def _new_hasher(algorithm: str):
    try:
        return _HASHERS[algorithm]()
    except KeyError:
        raise ValueError(f"Unsupported checksum type {algorithm!r}")


def format_checksum(algorithm: str, digest: str) -> str:
    return "{%s}%s" % (algorithm, digest)


def hash_stream(stream: BinaryIO, algorithm: str = "md5") -> str:
    """Checksum an open binary stream, formatted as '{algorithm}hexdigest'."""
    h = _new_hasher(algorithm)
    if algorithm == "md5lite":
        h.update(stream.read(LITE_BYTES))
    else:
        for chunk in iter(lambda: stream.read(CHUNK_SIZE), b''):
            h.update(chunk)
    return format_checksum(algorithm, h.hexdigest())


def hash_file(path: Union[str, Path], algorithm: str = "md5") -> str:
    with open(path, 'rb') as f:
        return hash_stream(f, algorithm)


def hash_bytes(content: Union[str, bytes], algorithm: str = "md5") -> str:
    if isinstance(content, str):
        content = content.encode("utf-8")
    h = _new_hasher(algorithm)
    h.update(content[:LITE_BYTES] if algorithm == "md5lite" else content)
    return format_checksum(algorithm, h.hexdigest())


class ChecksumCoordinator:
    """Single authority for "the content checksum we compare and record"."""

    def __init__(self, entity: "FileEntity", algorithm: str = "md5"):
        self.entity = entity
        self.algorithm = algorithm
        self._value: Optional[str] = None

    @property
    def value(self) -> Optional[str]:
        return self._value

    def compute_content(self, content: Union[str, bytes]) -> str:
        return hash_bytes(content, self.algorithm)

    def compute_file(self, path: Union[str, Path]) -> str:
        return hash_file(path, self.algorithm)

    def retrieve(self) -> Optional[str]:
        """Observe the checksum currently on disk (None unless a regular file)."""
        result = self.entity.stat(refresh=False)
        if result.kind is not FileKind.FILE:
            return None
        return self.compute_file(self.entity.path)

    def set_checksum(self, value: Optional[str] = None) -> Optional[str]:
        """Record a checksum; with no value, re-read the file and record that."""
        if value is None:
            value = self.retrieve()
        self._value = value
        logger.debug(f"{self.entity.path}: checksum recorded as {value}")
        return value

    def in_sync(self, desired: Optional[str]) -> bool:
        return desired is not None and self._value == desired


# done.
