# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.06
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/storage/fileserver.py

"""
Serving side of the source protocol: listings, descriptions and content.

A listing is newline-delimited records of 'entryPath<TAB>kind'. The first
record is '/' for the listed root itself; other paths are relative to it
and start with '/'. Kinds are 'file', 'directory' and 'link'.

The same FileServer runs over the local filesystem (file:// sources) and
over SFTP (fsc:// sources, see ssh_client.py); only the filesystem adapter
differs.
"""

from __future__ import annotations

import fnmatch
import math
import os
import posixpath
import stat as stat_module
from typing import Any, BinaryIO, Iterable, Optional, Protocol, Union

from loguru import logger
from pydantic import BaseModel

from fsconverge.core.checksum import hash_stream
from fsconverge.system.exceptions import SourceResolutionError

LOCAL_MOUNT = "localhost"


class SourceDescription(BaseModel):
    """What a source path currently is on the serving side."""
    kind: str  # file | directory | link
    mode: int
    size: int = 0
    checksum: Optional[str] = None
    target: Optional[str] = None  # link target, for kind == "link"


class FileClient(Protocol):
    """Listing and content-fetch RPCs a source handle is bound to."""

    def list(self, path: str, links: str = "ignore", recurse: Union[bool, int, float] = False,
             ignore: Iterable[str] = ()) -> str:
        ...

    def describe(self, path: str, links: str = "ignore", checksum_type: str = "md5") -> Optional[SourceDescription]:
        ...

    def retrieve(self, path: str, links: str = "ignore") -> bytes:
        ...


class LocalFS:
    """Filesystem adapter over the os module."""

    def stat(self, path: str) -> os.stat_result:
        return os.stat(path)

    def lstat(self, path: str) -> os.stat_result:
        return os.lstat(path)

    def listdir(self, path: str) -> list[str]:
        return os.listdir(path)

    def readlink(self, path: str) -> str:
        return os.readlink(path)

    def open(self, path: str) -> BinaryIO:
        return open(path, 'rb')


def _kind(st_mode: int) -> Optional[str]:
    if stat_module.S_ISLNK(st_mode):
        return "link"
    if stat_module.S_ISDIR(st_mode):
        return "directory"
    if stat_module.S_ISREG(st_mode):
        return "file"
    return None


def _depth(recurse: Union[bool, int, float, None]) -> Union[int, float]:
    if recurse is True:
        return math.inf
    if not recurse:
        return 0
    return recurse


def is_ignored(name: str, ignore: Iterable[str]) -> bool:
    return name in (".", "..") or any(fnmatch.fnmatchcase(name, pattern) for pattern in ignore)


class FileServer:
    """Answers list/describe/retrieve requests for paths of the form /mount/rest."""

    def __init__(self, fs: Any = None, mounts: Optional[dict[str, str]] = None):
        self.fs = fs or LocalFS()
        self.mounts = {LOCAL_MOUNT: "/"} if mounts is None else dict(mounts)

    def mount(self, name: str, root: str) -> None:
        self.mounts[name] = root

    def mount_root(self, mount: str, path: str) -> str:
        if mount not in self.mounts:
            raise SourceResolutionError(f"Unknown mount {mount!r} in {path}", path=path)
        return str(self.mounts[mount])

    def resolve_path(self, path: str) -> str:
        """Map '/mount/rest' onto the mount's root."""
        parts = path.lstrip("/").split("/", 1)
        mount = parts[0]
        rest = parts[1] if len(parts) > 1 else ""
        root = posixpath.normpath(self.mount_root(mount, path))
        resolved = posixpath.normpath(posixpath.join(root, rest))
        if resolved != root and not resolved.startswith(root.rstrip("/") + "/"):
            raise SourceResolutionError(f"Path {path} escapes mount {mount}", path=path)
        return resolved

    def _stat(self, path: str, links: str):
        return self.fs.stat(path) if links == "follow" else self.fs.lstat(path)

    def list(self, path: str, links: str = "ignore", recurse: Union[bool, int, float] = False,
             ignore: Iterable[str] = ()) -> str:
        root = self.resolve_path(path)
        ignore = tuple(ignore or ())
        try:
            st = self._stat(root, links)
        except FileNotFoundError:
            logger.debug(f"Listing {path}: does not exist")
            return ""

        kind = _kind(st.st_mode)
        if kind is None:
            return ""
        records = [f"/\t{kind}"]
        if kind == "directory":
            self._walk(root, "", _depth(recurse), links, ignore, records)
        return "\n".join(records)

    def _walk(self, directory: str, relative: str, depth, links: str, ignore: tuple, records: list[str]) -> None:
        if depth <= 0:
            return
        try:
            names = sorted(self.fs.listdir(directory))
        except PermissionError:
            logger.warning(f"Cannot list {directory}: permission denied")
            return

        for name in names:
            if is_ignored(name, ignore):
                continue
            full = posixpath.join(directory, name)
            try:
                st = self._stat(full, links)
            except FileNotFoundError:
                # dangling link under links=follow, or removed while listing
                continue
            kind = _kind(st.st_mode)
            if kind is None or (kind == "link" and links == "ignore"):
                continue
            entry = f"{relative}/{name}"
            records.append(f"{entry}\t{kind}")
            if kind == "directory":
                self._walk(full, entry, depth - 1, links, ignore, records)

    def describe(self, path: str, links: str = "ignore", checksum_type: str = "md5") -> Optional[SourceDescription]:
        real = self.resolve_path(path)
        try:
            st = self._stat(real, links)
        except FileNotFoundError:
            return None
        kind = _kind(st.st_mode)
        if kind is None:
            return None

        description = SourceDescription(kind=kind, mode=stat_module.S_IMODE(st.st_mode), size=st.st_size or 0)
        if kind == "file":
            with self.fs.open(real) as f:
                description.checksum = hash_stream(f, checksum_type)
        elif kind == "link":
            description.target = self.fs.readlink(real)
        return description

    def retrieve(self, path: str, links: str = "ignore") -> bytes:
        real = self.resolve_path(path)
        with self.fs.open(real) as f:
            return f.read()


# done.
