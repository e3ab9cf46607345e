# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.05
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/storage/backup.py

"""
Pre-modification backups.

A file about to be replaced is either copied next to itself with a suffix
or uploaded to a content-addressed bucket. A requested backup that cannot be
produced is an error: nothing gets modified without the backup it was
promised.
"""

from __future__ import annotations

import os
import shutil
import threading
from pathlib import Path
from typing import Optional, Protocol, Union

import xxhash
from loguru import logger

from fsconverge.config.manager import EngineConfig
from fsconverge.core.parameters import BackupKind, BackupPolicy
from fsconverge.core.stat_cache import FileKind, stat_path
from fsconverge.system.exceptions import (
    BackupError, BucketResolutionError, StaleArtifactError
)


class ContentStore(Protocol):
    """Backup store interface: upload a file, get back its content checksum."""

    name: str

    def upload(self, local_path: Union[str, Path]) -> str:
        ...


class FileBucket:
    """Content-addressed backup store on a local (or mounted) directory.

    Layout: <root>/<s0>/<s1>/<sum>/contents, with a 'paths' file listing
    every original path that was stored under that sum.
    """

    def __init__(self, name: str, root: Path):
        self.name = name
        self.root = Path(root)

    def _sum_dir(self, checksum: str) -> Path:
        return self.root / checksum[0] / checksum[1] / checksum

    def upload(self, local_path: Union[str, Path]) -> str:
        h = xxhash.xxh3_64()
        with open(local_path, 'rb') as f:
            for chunk in iter(lambda: f.read(8192), b''):
                h.update(chunk)
        checksum = h.hexdigest()

        sum_dir = self._sum_dir(checksum)
        contents = sum_dir / "contents"
        sum_dir.mkdir(parents=True, exist_ok=True)
        if not contents.exists():
            staged = sum_dir / "contents.partial"
            shutil.copyfile(local_path, staged)
            os.replace(staged, contents)

        paths_file = sum_dir / "paths"
        known = paths_file.read_text().splitlines() if paths_file.exists() else []
        if str(local_path) not in known:
            with paths_file.open("a", encoding="utf-8") as f:
                f.write(f"{local_path}\n")
        return checksum

    def retrieve(self, checksum: str) -> bytes:
        contents = self._sum_dir(checksum) / "contents"
        if not contents.exists():
            raise BackupError(f"No content with sum {checksum} in bucket {self.name}")
        return contents.read_bytes()

    def restore(self, checksum: str, dest: Union[str, Path]) -> None:
        """Write a stored version back to dest."""
        Path(dest).write_bytes(self.retrieve(checksum))
        logger.info(f"Restored {dest} from bucket {self.name} ({checksum})")


class BucketRegistry:
    """Run-scoped cache of resolved buckets, keyed by name.

    Resolution happens once per name under a lock; a failed resolution is
    remembered so every later request in the same run fails the same way.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self._buckets: dict[str, ContentStore] = {}
        self._failures: dict[str, BucketResolutionError] = {}
        self._lock = threading.RLock()

    def register(self, name: str, store: ContentStore) -> None:
        with self._lock:
            self._buckets[name] = store
            self._failures.pop(name, None)

    def resolve(self, name: str) -> ContentStore:
        with self._lock:
            if name in self._buckets:
                return self._buckets[name]
            if name in self._failures:
                raise self._failures[name]

            bucket_config = self.config.buckets.get(name)
            if bucket_config is None:
                error = BucketResolutionError(f"Could not find filebucket {name}")
                self._failures[name] = error
                raise error

            store = FileBucket(name, bucket_config.path)
            self._buckets[name] = store
            logger.debug(f"Resolved bucket {name} at {bucket_config.path}")
            return store


class BackupManager:
    """Backs up one entity's path before it is modified."""

    def __init__(self, policy: BackupPolicy, buckets: BucketRegistry, recurse_enabled: bool = False):
        self.policy = policy
        self.buckets = buckets
        self.recurse_enabled = recurse_enabled
        self._store: Optional[ContentStore] = None

    def resolve_target(self) -> Union[str, ContentStore, None]:
        """Suffix string or bucket store for the declared policy, resolved once."""
        if self.policy.kind is BackupKind.NONE:
            return None
        if self.policy.kind is BackupKind.SUFFIX:
            return self.policy.value
        if self._store is None:
            self._store = self.buckets.resolve(self.policy.value)
        return self._store

    def handle_backup(self, path: str) -> bool:
        """Back up path if it exists and backups are on.

        Returns:
            True when no backup was needed or the backup was made, False
            when a stale artifact could not be removed or the file type
            cannot be backed up.

        Raises:
            BackupError: a requested backup could not be produced
        """
        if not self.policy.enabled:
            return True

        current = stat_path(path, follow_links=False)
        if not current.exists:
            return True

        target = self.resolve_target()

        if current.kind is FileKind.DIRECTORY:
            return self._backup_directory(path, target)
        if current.kind in (FileKind.FILE, FileKind.LINK):
            return self._backup_file(path, target)

        logger.warning(f"Cannot backup files of type {current.file_type or current.kind.value}: {path}")
        return False

    def _backup_directory(self, path: str, target: Union[str, ContentStore]) -> bool:
        if self.recurse_enabled:
            # children are backed up individually
            return True

        if isinstance(target, str):
            artifact = path + target
            existing = stat_path(artifact)
            if existing.kind is FileKind.DIRECTORY:
                raise BackupError(f"Will not replace directory backup {artifact}; use a filebucket", path=path)
            if existing.exists:
                try:
                    os.unlink(artifact)
                except OSError as e:
                    raise StaleArtifactError(f"Could not remove old backup {artifact}: {e}", path=path) from e
            raise BackupError(f"Directory backups require a filebucket, not suffix {target}", path=path)

        logger.info(f"Recursively backing up {path} to filebucket {target.name}")
        for dirpath, _dirnames, filenames in os.walk(path):
            for filename in filenames:
                file_path = os.path.join(dirpath, filename)
                if not os.path.isfile(file_path) or os.path.islink(file_path):
                    continue
                try:
                    checksum = target.upload(file_path)
                except OSError as e:
                    raise BackupError(f"Could not back {file_path} up: {e}", path=path) from e
                logger.info(f"Filebucketed {file_path} to {target.name} with sum {checksum}")

        shutil.rmtree(path)
        return True

    def _backup_file(self, path: str, target: Union[str, ContentStore]) -> bool:
        if not isinstance(target, str):
            try:
                checksum = target.upload(path)
            except OSError as e:
                raise BackupError(f"Could not back {path} up: {e}", path=path) from e
            logger.info(f"Filebucketed {path} to {target.name} with sum {checksum}")
            return True

        artifact = path + target
        if os.path.lexists(artifact):
            try:
                os.unlink(artifact)
            except OSError as e:
                logger.error(f"Could not remove old backup {artifact}: {e}")
                return False

        try:
            shutil.copy2(path, artifact, follow_symlinks=False)
            if os.geteuid() == 0:
                st = os.lstat(path)
                os.lchown(artifact, st.st_uid, st.st_gid)
        except OSError as e:
            raise BackupError(f"Could not back {path} up: {e}", path=path) from e
        logger.debug(f"Backed up {path} to {artifact}")
        return True


# done.
