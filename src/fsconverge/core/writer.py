# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.09
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/core/writer.py

"""
Replacing the contents of a managed file.

    backup -> write <path><temp suffix> with mode and owner -> rename over <path>

The rename is atomic, so readers see either the old or the new contents.
Whatever happens, no temp file is left behind.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Optional, Union

from loguru import logger

from fsconverge.config.manager import EngineConfig
from fsconverge.core.ownership import (
    as_user, owner_can_write, resolve_gid, resolve_uid, running_as_root, with_umask
)
from fsconverge.core.stat_cache import FileKind
from fsconverge.system.exceptions import StaleArtifactError, WriteError

if TYPE_CHECKING:
    from fsconverge.core.entity import FileEntity

WRITE_FLAGS = os.O_CREAT | os.O_WRONLY | os.O_TRUNC
DEFAULT_FILE_MODE = 0o666  # before umask


class Writer:
    """Writes entity contents with backup, temp file and atomic rename."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def write(self, entity: "FileEntity", content: Union[str, bytes], use_temp: bool = True) -> Optional[str]:
        """Replace the entity's file contents and return the new checksum.

        Raises:
            BackupError: the requested backup could not be produced
            StaleArtifactError: the backup reported failure or an old temp file is in the way
            WriteError: the temp file could not be renamed into place
        """
        if isinstance(content, str):
            content = content.encode("utf-8")
        path = entity.path
        current = entity.stat(refresh=True)

        if current.exists:
            if not entity.backup.handle_backup(path):
                raise StaleArtifactError(f"Could not back up {path}; not writing", path=path)

        dest = path
        if os.path.islink(path):
            if entity.params.links == "follow":
                dest = os.path.realpath(path)
            else:
                os.unlink(path)
                current = entity.stat(refresh=True)

        write_path = dest + self.config.temp_suffix if use_temp else dest
        if use_temp and os.path.lexists(write_path):
            try:
                os.unlink(write_path)
            except OSError as e:
                raise StaleArtifactError(f"Could not remove stale temp file {write_path}: {e}", path=path) from e

        mode = entity.desired.mode
        preserved_mode = current.mode if mode is None and current.kind is FileKind.FILE else None
        uid = resolve_uid(entity.desired.owner)
        gid = resolve_gid(entity.desired.group)
        if uid is None and gid is None and current.kind is FileKind.FILE and running_as_root():
            uid, gid = current.uid, current.gid

        try:
            self._write_file(write_path, content, mode, preserved_mode, uid, gid)
            if use_temp:
                try:
                    os.replace(write_path, dest)
                except OSError as e:
                    logger.error(f"Could not rename {write_path} to {dest}: {e}")
                    raise WriteError(f"Could not rename temp file into place: {e}", path=path) from e
        finally:
            if use_temp and os.path.lexists(write_path):
                try:
                    os.unlink(write_path)
                except OSError as e:
                    logger.warning(f"Could not remove temp file {write_path}: {e}")

        logger.info(f"Wrote {len(content)} bytes to {path}")
        entity.stat_cache.invalidate()
        return entity.checksum.set_checksum()

    def _write_file(self, write_path: str, content: bytes, mode: Optional[int], preserved_mode: Optional[int],
                    uid: Optional[int], gid: Optional[int]) -> None:
        parent_dir = os.path.dirname(write_path) or "/"
        impersonate = running_as_root() and uid is not None and owner_can_write(uid, parent_dir)

        with as_user(uid if impersonate else None, gid if impersonate else None):
            if mode is not None:
                with with_umask(0):
                    fd = os.open(write_path, WRITE_FLAGS, mode)
            else:
                fd = os.open(write_path, WRITE_FLAGS, DEFAULT_FILE_MODE)
            with os.fdopen(fd, "wb") as f:
                f.write(content)

            # O_CREAT ignores the mode for a file that already existed
            if mode is not None:
                os.chmod(write_path, mode)
            elif preserved_mode is not None:
                os.chmod(write_path, preserved_mode)

        if not impersonate and running_as_root() and (uid is not None or gid is not None):
            os.chown(write_path, -1 if uid is None else uid, -1 if gid is None else gid)


# done.
