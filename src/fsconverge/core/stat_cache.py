# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.03
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/core/stat_cache.py

"""Lazily queried, explicitly invalidated filesystem metadata for one path."""

from __future__ import annotations

import errno
import os
import stat as stat_module
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from loguru import logger


class FileKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"
    LINK = "link"
    OTHER = "other"
    ABSENT = "absent"
    PERMISSION_DENIED = "permission-denied"


@dataclass(frozen=True)
class StatResult:
    """Metadata for a path as last observed."""
    kind: FileKind
    mode: Optional[int] = None  # permission bits only
    uid: Optional[int] = None
    gid: Optional[int] = None
    size: Optional[int] = None
    mtime: Optional[float] = None
    link_target: Optional[str] = None
    file_type: Optional[str] = None  # e.g. "socket", "fifo" for OTHER

    @property
    def exists(self) -> bool:
        return self.kind not in (FileKind.ABSENT, FileKind.PERMISSION_DENIED)

    @classmethod
    def absent(cls) -> "StatResult":
        return cls(FileKind.ABSENT)


def _describe_other(st_mode: int) -> str:
    if stat_module.S_ISSOCK(st_mode):
        return "socket"
    if stat_module.S_ISFIFO(st_mode):
        return "fifo"
    if stat_module.S_ISCHR(st_mode):
        return "characterSpecial"
    if stat_module.S_ISBLK(st_mode):
        return "blockSpecial"
    return "unknown"


def stat_path(path: str, follow_links: bool = False) -> StatResult:
    """Stat a path without caching.

    Nonexistence and EACCES are typed results; other OS errors propagate.
    """
    try:
        st = os.stat(path) if follow_links else os.lstat(path)
    except FileNotFoundError:
        return StatResult.absent()
    except NotADirectoryError:
        return StatResult.absent()
    except OSError as e:
        if e.errno in (errno.EACCES, errno.EPERM):
            logger.warning(f"Could not stat {path}; permission denied")
            return StatResult(FileKind.PERMISSION_DENIED)
        raise

    link_target = None
    file_type = None
    if stat_module.S_ISLNK(st.st_mode):
        kind = FileKind.LINK
        link_target = os.readlink(path)
    elif stat_module.S_ISDIR(st.st_mode):
        kind = FileKind.DIRECTORY
    elif stat_module.S_ISREG(st.st_mode):
        kind = FileKind.FILE
    else:
        kind = FileKind.OTHER
        file_type = _describe_other(st.st_mode)

    return StatResult(
        kind=kind,
        mode=stat_module.S_IMODE(st.st_mode),
        uid=st.st_uid,
        gid=st.st_gid,
        size=st.st_size,
        mtime=st.st_mtime,
        link_target=link_target,
        file_type=file_type,
    )


class StatCache:
    """Entity-scoped cache of the last stat result."""

    def __init__(self, path: str):
        self.path = path
        self._result: Optional[StatResult] = None
        self._followed: Optional[bool] = None

    def stat(self, follow_links: bool = False, refresh: bool = False) -> StatResult:
        if refresh or self._result is None or self._followed != follow_links:
            self._result = stat_path(self.path, follow_links)
            self._followed = follow_links
        return self._result

    def invalidate(self) -> None:
        self._result = None
        self._followed = None

    @property
    def cached(self) -> Optional[StatResult]:
        return self._result


# done.
